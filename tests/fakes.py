"""In-memory Kubernetes API doubles and manifest builders for tests."""

import copy
import json
from typing import Any, Optional

from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ConflictError, NotFoundError, ResourceNotFoundError

from converge_k8s import GroupVersionKind

OWNER_LABEL = "test.example.com/owner"
COMPONENT_LABEL = "test.example.com/component"
FIELD_MANAGER = "test-manager"

CONFIG_MAP = GroupVersionKind(version="v1", kind="ConfigMap")
SECRET = GroupVersionKind(version="v1", kind="Secret")
DEPLOYMENT = GroupVersionKind(group="apps", version="v1", kind="Deployment")
NAMESPACE = GroupVersionKind(version="v1", kind="Namespace")
CLUSTER_ROLE = GroupVersionKind(
    group="rbac.authorization.k8s.io", version="v1", kind="ClusterRole"
)
CRD = GroupVersionKind(
    group="apiextensions.k8s.io", version="v1", kind="CustomResourceDefinition"
)
CERTIFICATE = GroupVersionKind(group="cert-manager.io", version="v1", kind="Certificate")


def _api_error(cls, status: int, reason: str, message: str):
    exc = ApiException(status=status, reason=reason)
    exc.body = json.dumps(
        {"kind": "Status", "status": "Failure", "reason": reason, "message": message}
    )
    return cls(exc)


def _merge(target: dict, patch: dict) -> None:
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeResource:
    """Stand-in for kubernetes.dynamic.resource.Resource."""

    def __init__(self, gvk: GroupVersionKind, namespaced: bool):
        self.gvk = gvk
        self.api_version = gvk.api_version
        self.kind = gvk.kind
        self.namespaced = namespaced


class FakeInstance:
    """Stand-in for kubernetes.dynamic.resource.ResourceInstance."""

    def __init__(self, data: dict[str, Any]):
        self._data = copy.deepcopy(data)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class FakeResources:
    def __init__(self, registered: dict[GroupVersionKind, FakeResource]):
        self._registered = registered

    def get(self, api_version: str, kind: str) -> FakeResource:
        gvk = GroupVersionKind.from_api_version(api_version, kind)
        if gvk not in self._registered:
            raise ResourceNotFoundError(f"No matches found for {api_version} {kind}")
        return self._registered[gvk]


class FakeDynamicClient:
    """
    In-memory stand-in for kubernetes.dynamic.DynamicClient.

    Supports server-side apply (as a replace of the applied fields), create,
    replace with resourceVersion checks, merge patch, get, label-selector list
    and delete. Errors use kubernetes.dynamic exception types.
    """

    def __init__(self):
        registered = {
            CONFIG_MAP: True,
            SECRET: True,
            DEPLOYMENT: True,
            NAMESPACE: False,
            CLUSTER_ROLE: False,
            CRD: False,
        }
        self.resources = FakeResources(
            {gvk: FakeResource(gvk, namespaced) for gvk, namespaced in registered.items()}
        )
        self.objects: dict[tuple, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_delete: set[str] = set()
        self.fail_list: set[str] = set()
        self.fail_apply: Optional[ApiException] = None
        self._uid = 0
        self._version = 0

    # Helpers used by tests

    def _key(self, resource: FakeResource, name: str, namespace: Optional[str]) -> tuple:
        return (resource.gvk, (namespace or "") if resource.namespaced else "", name)

    def seed(self, manifest: dict[str, Any]) -> dict[str, Any]:
        """Store an object directly, bypassing tracking."""
        gvk = GroupVersionKind.from_api_version(manifest["apiVersion"], manifest["kind"])
        resource = self.resources.get(gvk.api_version, gvk.kind)
        meta = manifest["metadata"]
        return self._store(self._key(resource, meta["name"], meta.get("namespace")), manifest)

    def exists(self, gvk: GroupVersionKind, namespace: str, name: str) -> bool:
        return (gvk, namespace, name) in self.objects

    def stored(self, gvk: GroupVersionKind, namespace: str, name: str) -> dict[str, Any]:
        return self.objects[(gvk, namespace, name)]

    def _store(self, key: tuple, manifest: dict[str, Any]) -> dict[str, Any]:
        data = copy.deepcopy(manifest)
        meta = data.setdefault("metadata", {})
        previous = self.objects.get(key)
        if previous is not None:
            meta["uid"] = previous["metadata"]["uid"]
        else:
            self._uid += 1
            meta.setdefault("uid", f"uid-{self._uid}")
        self._version += 1
        meta["resourceVersion"] = str(self._version)
        self.objects[key] = data
        return data

    # DynamicClient API

    def server_side_apply(self, resource, body=None, name=None, namespace=None, **kwargs):
        self.calls.append(("apply", {"name": name, "namespace": namespace, **kwargs}))
        if self.fail_apply is not None:
            raise self.fail_apply
        key = self._key(resource, name, namespace)
        return FakeInstance(self._store(key, body))

    def create(self, resource, body=None, namespace=None, **kwargs):
        name = body["metadata"]["name"]
        namespace = namespace or body["metadata"].get("namespace")
        self.calls.append(("create", {"name": name, "namespace": namespace, **kwargs}))
        key = self._key(resource, name, namespace)
        if key in self.objects:
            raise _api_error(ConflictError, 409, "AlreadyExists", f'"{name}" already exists')
        return FakeInstance(self._store(key, body))

    def replace(self, resource, body=None, name=None, namespace=None, **kwargs):
        self.calls.append(("replace", {"name": name, "namespace": namespace, **kwargs}))
        key = self._key(resource, name, namespace)
        if key not in self.objects:
            raise _api_error(NotFoundError, 404, "NotFound", f'"{name}" not found')
        version = (body.get("metadata") or {}).get("resourceVersion")
        if version and version != self.objects[key]["metadata"]["resourceVersion"]:
            raise _api_error(ConflictError, 409, "Conflict", "the object has been modified")
        return FakeInstance(self._store(key, body))

    def patch(self, resource, body=None, name=None, namespace=None, **kwargs):
        self.calls.append(("patch", {"name": name, "namespace": namespace, **kwargs}))
        key = self._key(resource, name, namespace)
        if key not in self.objects:
            raise _api_error(NotFoundError, 404, "NotFound", f'"{name}" not found')
        merged = copy.deepcopy(self.objects[key])
        _merge(merged, body)
        return FakeInstance(self._store(key, merged))

    def get(self, resource, name=None, namespace=None, label_selector=None, **kwargs):
        self.calls.append(
            ("get", {"name": name, "namespace": namespace, "label_selector": label_selector, **kwargs})
        )
        if name is not None:
            key = self._key(resource, name, namespace)
            if key not in self.objects:
                raise _api_error(NotFoundError, 404, "NotFound", f'"{name}" not found')
            return FakeInstance(self.objects[key])

        if resource.kind in self.fail_list:
            raise ApiException(status=500, reason="Internal Server Error")

        selector = dict(
            term.split("=", 1) for term in (label_selector or "").split(",") if term
        )
        items = []
        for (gvk, obj_ns, _), obj in sorted(self.objects.items(), key=lambda kv: kv[0][1:]):
            if gvk != resource.gvk:
                continue
            if namespace and obj_ns != namespace:
                continue
            labels = obj["metadata"].get("labels") or {}
            if all(labels.get(k) == v for k, v in selector.items()):
                items.append(obj)
        return FakeInstance({"kind": f"{resource.kind}List", "items": items})

    def delete(self, resource, name=None, namespace=None, **kwargs):
        self.calls.append(("delete", {"name": name, "namespace": namespace, **kwargs}))
        if name in self.fail_delete:
            raise ApiException(status=500, reason="Internal Server Error")
        key = self._key(resource, name, namespace)
        if key not in self.objects:
            raise _api_error(NotFoundError, 404, "NotFound", f'"{name}" not found')
        del self.objects[key]
        return FakeInstance({"kind": "Status", "status": "Success"})


def config_map(name: str, namespace: str = "default", data: Optional[dict] = None) -> dict:
    """Build a ConfigMap manifest."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": data or {"key": "value"},
    }


def deployment(name: str, namespace: str = "default", replicas: int = 1) -> dict:
    """Build a Deployment manifest."""
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {"containers": [{"name": name, "image": "nginx:latest"}]},
            },
        },
    }


def cluster_role(name: str, labels: Optional[dict] = None) -> dict:
    """Build a ClusterRole manifest."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRole",
        "metadata": {"name": name, "labels": labels or {}},
        "rules": [],
    }
