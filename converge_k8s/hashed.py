"""
ConfigMaps with content-based hash suffixes.

The ConfigMap name changes whenever its content changes, so pods mounting it by
name are rolled when the content changes, the same way kustomize handles
generated ConfigMaps. Superseded generations are deleted after each apply.
"""

import hashlib
import logging
import re
from typing import Any, Optional, Union

from kubernetes.client import V1ConfigMap, V1ObjectMeta
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from urllib3.exceptions import HTTPError

from .cluster import ClusterConnection
from .config import HASH_SUFFIX_LENGTH, Settings, get_settings
from .errors import is_not_found
from .models import GroupVersionKind, HashedConfigMapResult
from .objects import as_dict, set_controller_reference, to_manifest
from .tracking import TrackingClient

logger = logging.getLogger(__name__)

CONFIG_MAP_GVK = GroupVersionKind(version="v1", kind="ConfigMap")


def generate_hash_suffix(content: str, length: int = HASH_SUFFIX_LENGTH) -> str:
    """
    Generate a short hash suffix from content.

    Args:
        content: ConfigMap content
        length: Number of hex characters to keep

    Returns:
        First `length` lowercase hex characters of the SHA-256 of content
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:length]


def build_config_map_name(
    base_name: str, content: str, length: int = HASH_SUFFIX_LENGTH
) -> str:
    """Return the full ConfigMap name for a base name and content."""
    return f"{base_name}-{generate_hash_suffix(content, length)}"


class HashedConfigMap:
    """
    Manages ConfigMaps named after a hash of their content.

    Each apply creates (or updates) `<base_name>-<hash>` and deletes older
    generations of the same base name carrying the managed label.
    """

    def __init__(
        self,
        client: Union[TrackingClient, DynamicClient, ClusterConnection],
        base_name: str,
        namespace: str,
        data_key: str,
        label: str,
        field_manager: str,
        hash_length: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize hashed ConfigMap handler.

        Args:
            client: Client to write through; a TrackingClient also tracks the ConfigMap
            base_name: Base name for the ConfigMap (hash is appended as a suffix)
            namespace: Namespace where the ConfigMaps live
            data_key: Key in the ConfigMap data holding the content
            label: Label key marking managed ConfigMaps (value is "true")
            field_manager: Field manager for server-side apply
            hash_length: Number of hex characters in the suffix
                (defaults to settings.hash_suffix_length)
            settings: Settings (defaults to get_settings())
        """
        if not isinstance(client, TrackingClient):
            client = TrackingClient(client)
        self.client = client
        self.base_name = base_name
        self.namespace = namespace
        self.data_key = data_key
        self.label = label
        self.field_manager = field_manager
        if hash_length is None:
            hash_length = (settings or get_settings()).hash_suffix_length
        self.hash_length = hash_length
        # Exactly one generation suffix, so "base-extra-<hash>" is never matched
        self._generation_pattern = re.compile(
            rf"^{re.escape(base_name)}-[0-9a-f]{{{hash_length}}}$"
        )

    def name_for(self, content: str) -> str:
        """Return the ConfigMap name that apply(content) would use."""
        return build_config_map_name(self.base_name, content, self.hash_length)

    def is_generation(self, name: str) -> bool:
        """Return True if name is a generation of this base name."""
        return bool(self._generation_pattern.match(name))

    def apply(self, content: str, owner: Any) -> HashedConfigMapResult:
        """
        Apply the ConfigMap for content and delete older generations.

        Args:
            content: ConfigMap content stored under data_key
            owner: Owning object for the controller reference

        Returns:
            HashedConfigMapResult with the full name and applied ConfigMap

        Raises:
            OwnershipError: If the owner reference cannot be set
            ApplyError: If the apply fails
        """
        name = self.name_for(content)
        logger.info(f"Applying hashed ConfigMap {self.namespace}/{name}")

        config_map = V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=V1ObjectMeta(
                name=name,
                namespace=self.namespace,
                labels={self.label: "true"},
            ),
            data={self.data_key: content},
        )
        manifest = to_manifest(config_map)
        set_controller_reference(owner, manifest)

        self.client.apply_object(manifest, self.field_manager)

        try:
            self.cleanup_old(name)
        except (ApiException, HTTPError) as e:
            # Retried on the next apply
            logger.error(f"Failed to cleanup old ConfigMaps for {self.base_name}: {e}", exc_info=True)

        return HashedConfigMapResult(name=name, config_map=manifest)

    def cleanup_old(self, current_name: str) -> list[str]:
        """
        Delete managed generations of this base name other than current_name.

        Per-object delete failures are logged and skipped.

        Args:
            current_name: Name of the generation to keep

        Returns:
            Names of deleted ConfigMaps

        Raises:
            ApiException: If listing ConfigMaps fails
        """
        resource = self.client.resolve(CONFIG_MAP_GVK)
        listing = self.client.client.get(
            resource,
            namespace=self.namespace,
            label_selector=f"{self.label}=true",
            **self.client.request_kwargs,
        )

        deleted: list[str] = []
        for item in (as_dict(listing) or {}).get("items") or []:
            name = (item.get("metadata") or {}).get("name", "")
            if name == current_name or not self.is_generation(name):
                continue

            logger.info(f"Deleting old hashed ConfigMap {self.namespace}/{name}")
            try:
                self.client.client.delete(
                    resource,
                    name=name,
                    namespace=self.namespace,
                    **self.client.request_kwargs,
                )
            except (ApiException, HTTPError) as e:
                if not is_not_found(e):
                    logger.error(f"Failed to delete old ConfigMap {self.namespace}/{name}: {e}")
                    continue
            deleted.append(name)

        return deleted
