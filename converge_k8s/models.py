"""Kubernetes resource models for converge-k8s."""

from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class OperationResult(str, Enum):
    """Outcome of a create-or-update call."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class PatchType(str, Enum):
    """Patch content types accepted by the Kubernetes API."""

    MERGE = "application/merge-patch+json"
    STRATEGIC = "application/strategic-merge-patch+json"
    JSON = "application/json-patch+json"
    APPLY = "application/apply-patch+yaml"


class GroupVersionKind(BaseModel):
    """Identifies a Kubernetes object type."""

    model_config = ConfigDict(frozen=True)

    group: str = ""
    version: str
    kind: str

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        """
        Build a GVK from an apiVersion string.

        Args:
            api_version: apiVersion as found in a manifest (e.g., "apps/v1" or "v1")
            kind: Object kind

        Returns:
            GroupVersionKind
        """
        if "/" in api_version:
            group, version = api_version.split("/", 1)
        else:
            group, version = "", api_version
        return cls(group=group, version=version, kind=kind)

    @property
    def api_version(self) -> str:
        """apiVersion string for this GVK."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


class ResourceKey(BaseModel):
    """Uniquely identifies a Kubernetes object."""

    model_config = ConfigDict(frozen=True)

    gvk: GroupVersionKind
    namespace: str = ""  # Empty for cluster-scoped objects
    name: str

    @property
    def cluster_scoped(self) -> bool:
        return self.namespace == ""

    def __str__(self) -> str:
        if self.cluster_scoped:
            return f"{self.gvk.kind}/{self.name}"
        return f"{self.gvk.kind}/{self.namespace}/{self.name}"


class OwnershipConfig(BaseModel):
    """
    Ownership settings for a tracking client.

    Determines the labels stamped on every applied object and the field manager
    used for server-side apply conflict resolution.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    owner: Any  # Owning object (manifest dict or kubernetes.client model)
    owner_label_key: str
    component_label_key: str
    component: str
    field_manager: str


class ClusterScopedAllowList:
    """
    Cluster-scoped kinds that orphan cleanup may delete.

    Each GVK maps to either None (any object of that kind may be deleted) or a
    set of names (only those objects may be deleted). Kinds missing from the
    list are never deleted when cluster-scoped. Namespaced objects are not
    affected by the allow list.

    Example:
        allow_list = ClusterScopedAllowList({
            GroupVersionKind(group="cert-manager.io", version="v1", kind="ClusterIssuer"): {
                "self-signed-cluster-issuer",
                "ca-issuer",
            },
            GroupVersionKind(version="v1", kind="Namespace"): None,
        })
    """

    def __init__(
        self,
        entries: Optional[Mapping[GroupVersionKind, Optional[Iterable[str]]]] = None,
    ):
        self._entries: dict[GroupVersionKind, Optional[frozenset[str]]] = {}
        for gvk, names in (entries or {}).items():
            self._entries[gvk] = None if names is None else frozenset(names)

    def is_allowed(self, gvk: GroupVersionKind, namespace: str, name: str) -> bool:
        """
        Check whether an object may be deleted by orphan cleanup.

        Args:
            gvk: Object GVK
            namespace: Object namespace ("" for cluster-scoped)
            name: Object name

        Returns:
            True if the object is namespaced or explicitly allowed
        """
        if namespace:
            return True

        if gvk not in self._entries:
            return False

        names = self._entries[gvk]
        return names is None or name in names

    def __contains__(self, gvk: GroupVersionKind) -> bool:
        return gvk in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ClusterScopedAllowList({self._entries!r})"


class CleanupResult(BaseModel):
    """Outcome of an orphan cleanup run."""

    deleted: list[ResourceKey] = Field(default_factory=list)
    skipped: list[ResourceKey] = Field(default_factory=list)
    failed: list[ResourceKey] = Field(default_factory=list)
    skipped_kinds: list[GroupVersionKind] = Field(default_factory=list)


class HashedConfigMapResult(BaseModel):
    """Result of a hashed ConfigMap apply."""

    name: str  # Base name plus hash suffix
    config_map: dict[str, Any]


class ClusterConfig(BaseModel):
    """Cluster connection configuration."""

    name: str = "default"
    kubeconfig_path: Optional[str] = None
    kubeconfig_data: Optional[str] = None  # Base64 encoded kubeconfig
    context: Optional[str] = None  # Specific context to use
    labels: dict[str, str] = Field(default_factory=dict)
