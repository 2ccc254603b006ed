"""Helpers for working with Kubernetes object manifests."""

from functools import lru_cache
from typing import Any, Optional

from kubernetes.client import ApiClient

from .errors import OwnershipError
from .models import GroupVersionKind, ResourceKey

CRD_GVK = GroupVersionKind(
    group="apiextensions.k8s.io", version="v1", kind="CustomResourceDefinition"
)


@lru_cache
def _serializer() -> ApiClient:
    return ApiClient()


def to_manifest(obj: Any) -> dict[str, Any]:
    """
    Normalize an object to a manifest dict.

    Manifest dicts are returned as-is so that callers observe in-place changes.
    Typed kubernetes.client models are serialized to a new dict.

    Args:
        obj: Manifest dict or kubernetes.client model

    Returns:
        Manifest dict with camelCase keys
    """
    if isinstance(obj, dict):
        return obj
    if hasattr(type(obj), "openapi_types"):
        return _serializer().sanitize_for_serialization(obj)
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        # kubernetes.dynamic ResourceInstance
        return obj.to_dict()
    raise TypeError(f"Unsupported object type: {type(obj).__name__}")


def as_dict(result: Any) -> Optional[dict[str, Any]]:
    """Convert an API response (dict or ResourceInstance) to a dict, if possible."""
    if isinstance(result, dict):
        return result
    to_dict = getattr(result, "to_dict", None)
    if callable(to_dict):
        value = to_dict()
        if isinstance(value, dict):
            return value
    return None


def metadata(manifest: dict[str, Any]) -> dict[str, Any]:
    """Return the metadata mapping of a manifest, creating it if missing."""
    meta = manifest.get("metadata")
    if meta is None:
        meta = {}
        manifest["metadata"] = meta
    return meta


def gvk_of(manifest: dict[str, Any]) -> GroupVersionKind:
    """
    Get the GVK of a manifest.

    Raises:
        ValueError: If apiVersion or kind is missing
    """
    api_version = manifest.get("apiVersion")
    kind = manifest.get("kind")
    if not api_version or not kind:
        raise ValueError("Object is missing apiVersion or kind")
    return GroupVersionKind.from_api_version(api_version, kind)


def key_of(
    manifest: dict[str, Any], gvk: Optional[GroupVersionKind] = None
) -> ResourceKey:
    """Build the resource key of a manifest."""
    meta = manifest.get("metadata") or {}
    return ResourceKey(
        gvk=gvk or gvk_of(manifest),
        namespace=meta.get("namespace") or "",
        name=meta.get("name") or "",
    )


def is_custom_resource_definition(manifest: dict[str, Any]) -> bool:
    """Return True if the manifest is a CustomResourceDefinition."""
    try:
        gvk = gvk_of(manifest)
    except ValueError:
        return False
    return gvk.group == CRD_GVK.group and gvk.kind == CRD_GVK.kind


def set_labels(manifest: dict[str, Any], labels: dict[str, str]) -> None:
    meta = metadata(manifest)
    current = meta.get("labels") or {}
    current.update(labels)
    meta["labels"] = current


def _controller_of(manifest: dict[str, Any]) -> Optional[dict[str, Any]]:
    refs = (manifest.get("metadata") or {}).get("ownerReferences") or []
    for ref in refs:
        if ref.get("controller"):
            return ref
    return None


def _group_of(api_version: str) -> str:
    return api_version.split("/", 1)[0] if "/" in api_version else ""


def _same_owner(ref: dict[str, Any], other: dict[str, Any]) -> bool:
    return (
        _group_of(ref.get("apiVersion", "")) == _group_of(other.get("apiVersion", ""))
        and ref.get("kind") == other.get("kind")
        and ref.get("name") == other.get("name")
    )


def set_controller_reference(owner: Any, obj: dict[str, Any]) -> None:
    """
    Set a controller owner reference on obj pointing at owner.

    A namespaced owner may only own objects in its own namespace. An object
    already controlled by a different owner is rejected.

    Args:
        owner: Owning object (manifest dict or kubernetes.client model)
        obj: Manifest to modify in place

    Raises:
        OwnershipError: If the reference cannot be set
    """
    owner_manifest = to_manifest(owner)
    owner_meta = owner_manifest.get("metadata") or {}
    obj_meta = metadata(obj)

    if not owner_meta.get("uid"):
        raise OwnershipError(f"owner {owner_meta.get('name')} has no uid")

    owner_ns = owner_meta.get("namespace") or ""
    if owner_ns:
        obj_ns = obj_meta.get("namespace") or ""
        if not obj_ns:
            raise OwnershipError(
                f"cluster-scoped resource must not have a namespace-scoped owner, "
                f"owner's namespace {owner_ns}"
            )
        if obj_ns != owner_ns:
            raise OwnershipError(
                f"cross-namespace owner references are disallowed, owner's namespace "
                f"{owner_ns}, obj's namespace {obj_ns}"
            )

    ref = {
        "apiVersion": owner_manifest.get("apiVersion"),
        "kind": owner_manifest.get("kind"),
        "name": owner_meta.get("name"),
        "uid": owner_meta.get("uid"),
        "controller": True,
        "blockOwnerDeletion": True,
    }

    existing = _controller_of(obj)
    if existing is not None and not _same_owner(existing, ref):
        raise OwnershipError(
            f"Object {obj_meta.get('namespace', '')}/{obj_meta.get('name')} is already "
            f"owned by another {existing.get('kind')} controller {existing.get('name')}"
        )

    refs = list(obj_meta.get("ownerReferences") or [])
    for i, current in enumerate(refs):
        if _same_owner(current, ref):
            refs[i] = ref
            break
    else:
        refs.append(ref)
    obj_meta["ownerReferences"] = refs


def is_controlled_by(obj: dict[str, Any], owner: Any) -> bool:
    """Return True if obj's controller reference points at owner (uid and name)."""
    ref = _controller_of(obj)
    if ref is None:
        return False
    owner_meta = to_manifest(owner).get("metadata") or {}
    return ref.get("uid") == owner_meta.get("uid") and ref.get("name") == owner_meta.get(
        "name"
    )
