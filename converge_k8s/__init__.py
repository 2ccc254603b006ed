"""converge-k8s - Tracked apply and orphan cleanup for Kubernetes reconcilers."""

from .cleanup import cleanup_orphans
from .cluster import ClusterConnection
from .config import COMPONENT_LABEL, OWNER_LABEL, Settings, configure_logging, get_settings
from .errors import (
    ApplyError,
    ConvergeError,
    KindNotRegisteredError,
    OwnershipError,
    OwnershipNotConfiguredError,
    is_already_exists,
    is_kind_not_registered,
    is_not_found,
)
from .hashed import HashedConfigMap, build_config_map_name, generate_hash_suffix
from .models import (
    CleanupResult,
    ClusterConfig,
    ClusterScopedAllowList,
    GroupVersionKind,
    HashedConfigMapResult,
    OperationResult,
    OwnershipConfig,
    PatchType,
    ResourceKey,
)
from .tracking import TrackingClient

__version__ = "0.1.0"

__all__ = [
    # Cluster connection
    "ClusterConnection",
    # Tracking and cleanup
    "TrackingClient",
    "cleanup_orphans",
    # Hashed ConfigMaps
    "HashedConfigMap",
    "generate_hash_suffix",
    "build_config_map_name",
    # Configuration
    "Settings",
    "get_settings",
    "configure_logging",
    "OWNER_LABEL",
    "COMPONENT_LABEL",
    # Errors
    "ConvergeError",
    "ApplyError",
    "KindNotRegisteredError",
    "OwnershipError",
    "OwnershipNotConfiguredError",
    "is_already_exists",
    "is_kind_not_registered",
    "is_not_found",
    # Models
    "ClusterConfig",
    "ClusterScopedAllowList",
    "CleanupResult",
    "GroupVersionKind",
    "HashedConfigMapResult",
    "OperationResult",
    "OwnershipConfig",
    "PatchType",
    "ResourceKey",
]
