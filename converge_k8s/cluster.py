"""Kubernetes client management."""

import base64
import logging
import tempfile
from pathlib import Path
from typing import Optional

from kubernetes import config
from kubernetes.client import ApiClient, VersionApi
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.resource import Resource
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from urllib3.exceptions import HTTPError

from .config import Settings, get_settings
from .models import ClusterConfig, GroupVersionKind

logger = logging.getLogger(__name__)


class ClusterConnection:
    """Represents a connection to a single Kubernetes cluster."""

    def __init__(self, cluster_config: Optional[ClusterConfig] = None):
        """
        Initialize cluster connection.

        Args:
            cluster_config: Cluster configuration (in-cluster config if omitted)

        Raises:
            ValueError: If kubeconfig is invalid
        """
        self.config = cluster_config or ClusterConfig()
        self._api_client: Optional[ApiClient] = None
        self._dynamic: Optional[DynamicClient] = None
        self._temp_kubeconfig: Optional[Path] = None

        self._initialize_client()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ClusterConnection":
        """Create a connection from CONVERGE_* settings."""
        settings = settings or get_settings()
        return cls(
            ClusterConfig(
                kubeconfig_path=settings.kubeconfig_path,
                context=settings.kube_context,
            )
        )

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            client_config = None
            if self.config.kubeconfig_data:
                # Decode base64 kubeconfig and write to temp file
                kubeconfig_content = base64.b64decode(self.config.kubeconfig_data)
                with tempfile.NamedTemporaryFile(mode="wb", delete=False) as f:
                    f.write(kubeconfig_content)
                    self._temp_kubeconfig = Path(f.name)
                client_config = config.new_client_from_config(
                    config_file=str(self._temp_kubeconfig),
                    context=self.config.context,
                )
            elif self.config.kubeconfig_path:
                client_config = config.new_client_from_config(
                    config_file=self.config.kubeconfig_path,
                    context=self.config.context,
                )
            else:
                # Running inside the cluster
                config.load_incluster_config()
                client_config = ApiClient()

            self._api_client = client_config
        except Exception as e:
            self._remove_temp_kubeconfig()
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

        logger.info(f"Initialized connection to cluster {self.config.name}")

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    @property
    def dynamic(self) -> DynamicClient:
        """
        Get DynamicClient instance.

        Created on first use because construction performs API discovery.
        """
        if self._dynamic is None:
            self._dynamic = DynamicClient(self.api_client)
        return self._dynamic

    def resolve(self, gvk: GroupVersionKind) -> Resource:
        """
        Resolve a GVK to an API resource.

        Raises:
            kubernetes.dynamic.exceptions.ResourceNotFoundError: If the kind is not served
        """
        return self.dynamic.resources.get(api_version=gvk.api_version, kind=gvk.kind)

    def is_healthy(self) -> bool:
        """
        Check if cluster connection is healthy.

        Returns:
            True if cluster is reachable
        """
        try:
            VersionApi(self.api_client).get_code()
            return True
        except (ApiException, HTTPError):
            return False

    @retry(
        retry=retry_if_exception_type((ApiException, HTTPError)),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def wait_until_ready(self) -> dict:
        """
        Wait for the API server to answer, then return its version.

        Returns:
            Version info dict

        Raises:
            ApiException: If the API server is still unreachable after retries
        """
        version_info = VersionApi(self.api_client).get_code()
        return {
            "major": version_info.major,
            "minor": version_info.minor,
            "git_version": version_info.git_version,
            "platform": version_info.platform,
        }

    def _remove_temp_kubeconfig(self):
        if self._temp_kubeconfig and self._temp_kubeconfig.exists():
            self._temp_kubeconfig.unlink()
        self._temp_kubeconfig = None

    def close(self):
        """Close the cluster connection and clean up resources."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None
        self._dynamic = None

        # Clean up temporary kubeconfig file
        self._remove_temp_kubeconfig()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
