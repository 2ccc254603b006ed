"""
Tracking client for declarative reconciliation.

A TrackingClient wraps a Kubernetes DynamicClient and records every object it
writes during one reconcile pass. The desired state is implicitly defined by
the objects applied during the pass: anything carrying the owner label that was
not applied is an orphan and can be removed with cleanup_orphans().

Usage:

    tc = TrackingClient(connection, OwnershipConfig(
        owner=my_cr,
        owner_label_key="example.com/owner",
        component_label_key="example.com/component",
        component="my-component",
        field_manager="my-controller",
    ))

    for obj in desired_objects:
        tc.apply_owned(obj)

    # Only reached if all applies succeeded
    tc.cleanup_orphans("example.com/owner", my_cr_name, cleanup_gvks)

Create a new client for every pass; tracked state is never carried over.
"""

import copy
import logging
import threading
from typing import Any, Callable, Optional, Union

from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from kubernetes.dynamic.resource import Resource
from urllib3.exceptions import HTTPError

from .cleanup import cleanup_orphans
from .cluster import ClusterConnection
from .config import Settings, get_settings
from .errors import (
    ApplyError,
    KindNotRegisteredError,
    OwnershipNotConfiguredError,
    is_already_exists,
    is_not_found,
)
from .models import (
    CleanupResult,
    ClusterScopedAllowList,
    GroupVersionKind,
    OperationResult,
    OwnershipConfig,
    PatchType,
    ResourceKey,
)
from .objects import (
    as_dict,
    gvk_of,
    is_custom_resource_definition,
    key_of,
    set_controller_reference,
    set_labels,
    to_manifest,
)

logger = logging.getLogger(__name__)

MutateFn = Callable[[dict[str, Any]], None]


def _sync(manifest: dict[str, Any], result: Any) -> None:
    """Replace manifest contents with the object returned by the API server."""
    live = as_dict(result)
    if live is None or live is manifest:
        return
    manifest.clear()
    manifest.update(live)


class TrackingClient:
    """
    Kubernetes client that tracks the objects written during a reconcile pass.

    Every successful apply, create, update, patch and create-or-update records
    the object's ResourceKey. A create that fails with AlreadyExists also
    records the key, since the object is desired even though this call did not
    create it.
    """

    def __init__(
        self,
        client: Union[DynamicClient, ClusterConnection],
        ownership: Optional[OwnershipConfig] = None,
        request_timeout: Optional[float] = None,
    ):
        """
        Initialize tracking client.

        Args:
            client: DynamicClient or ClusterConnection to write through
            ownership: Ownership config for apply_owned / set_ownership
            request_timeout: Timeout in seconds passed to every API call
        """
        if isinstance(client, ClusterConnection):
            client = client.dynamic
        self.client = client
        self.ownership = ownership
        self.request_timeout = request_timeout
        self._tracked: set[ResourceKey] = set()
        self._lock = threading.Lock()

    @classmethod
    def for_owner(
        cls,
        client: Union[DynamicClient, ClusterConnection],
        owner: Any,
        component: str,
        field_manager: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> "TrackingClient":
        """
        Create a tracking client using the configured label domain.

        Args:
            client: DynamicClient or ClusterConnection to write through
            owner: Owning object
            component: Component label value
            field_manager: Field manager (defaults to settings.field_manager)
            settings: Settings (defaults to get_settings())
        """
        settings = settings or get_settings()
        ownership = OwnershipConfig(
            owner=owner,
            owner_label_key=settings.owner_label,
            component_label_key=settings.component_label,
            component=component,
            field_manager=field_manager or settings.field_manager,
        )
        return cls(client, ownership, request_timeout=settings.request_timeout_seconds)

    @property
    def request_kwargs(self) -> dict[str, Any]:
        """Extra keyword arguments for DynamicClient calls."""
        if self.request_timeout is None:
            return {}
        return {"_request_timeout": self.request_timeout}

    def resolve(
        self, gvk: GroupVersionKind, key: Optional[ResourceKey] = None
    ) -> Resource:
        """
        Resolve a GVK to an API resource.

        Raises:
            KindNotRegisteredError: If the cluster does not serve the kind
        """
        try:
            return self.client.resources.get(api_version=gvk.api_version, kind=gvk.kind)
        except ResourceNotFoundError as e:
            raise KindNotRegisteredError(key, e) from e

    def set_ownership(self, obj: Any) -> dict[str, Any]:
        """
        Set ownership labels and controller reference on an object.

        CustomResourceDefinitions get labels only so they are not cascade-deleted
        when the owner is removed.

        Args:
            obj: Manifest dict (modified in place) or kubernetes.client model

        Returns:
            The manifest carrying ownership

        Raises:
            OwnershipNotConfiguredError: If the client has no ownership config
            OwnershipError: If the controller reference cannot be set
        """
        if self.ownership is None:
            raise OwnershipNotConfiguredError(
                "set_ownership called but client was not created with an ownership config"
            )

        manifest = to_manifest(obj)
        owner_name = (to_manifest(self.ownership.owner).get("metadata") or {}).get("name")
        set_labels(
            manifest,
            {
                self.ownership.owner_label_key: owner_name,
                self.ownership.component_label_key: self.ownership.component,
            },
        )

        if is_custom_resource_definition(manifest):
            return manifest

        set_controller_reference(self.ownership.owner, manifest)
        return manifest

    def apply_object(self, obj: Any, field_manager: str) -> Any:
        """
        Server-side apply an object, forcing field ownership, and track it.

        Args:
            obj: Manifest dict or kubernetes.client model
            field_manager: Field manager identity

        Returns:
            Object returned by the API server

        Raises:
            KindNotRegisteredError: If the cluster does not serve the kind
            ApplyError: If the apply fails
        """
        manifest = to_manifest(obj)
        gvk = gvk_of(manifest)
        key = key_of(manifest, gvk)
        resource = self.resolve(gvk, key)

        try:
            result = self.client.server_side_apply(
                resource,
                body=manifest,
                name=key.name,
                namespace=key.namespace or None,
                field_manager=field_manager,
                force_conflicts=True,
                **self.request_kwargs,
            )
        except (ApiException, HTTPError) as e:
            raise ApplyError(key, e) from e

        self._track(key)
        return result

    def apply_owned(self, obj: Any) -> Any:
        """
        Set ownership on an object and server-side apply it.

        Args:
            obj: Manifest dict or kubernetes.client model

        Returns:
            Object returned by the API server

        Raises:
            OwnershipNotConfiguredError: If the client has no ownership config
            KindNotRegisteredError: If the cluster does not serve the kind
            ApplyError: If the apply fails
        """
        manifest = self.set_ownership(obj)
        return self.apply_object(manifest, self.ownership.field_manager)

    def create(self, obj: Any) -> Any:
        """
        Create an object and track it.

        The key is tracked on success and when the object already exists; the
        AlreadyExists error is still raised.

        Raises:
            ApiException: If the create fails
        """
        manifest = to_manifest(obj)
        gvk = gvk_of(manifest)
        key = key_of(manifest, gvk)
        resource = self.resolve(gvk, key)

        try:
            result = self.client.create(
                resource,
                body=manifest,
                namespace=key.namespace or None,
                **self.request_kwargs,
            )
        except ApiException as e:
            if is_already_exists(e):
                self._track(key)
            raise

        _sync(manifest, result)
        # generateName objects only get their name from the server
        self._track(key_of(manifest, gvk) if not key.name else key)
        return result

    def update(self, obj: Any) -> Any:
        """
        Replace an object and track it.

        metadata.resourceVersion must be set for optimistic concurrency.

        Raises:
            ApiException: If the update fails (409 on resourceVersion conflict)
        """
        manifest = to_manifest(obj)
        gvk = gvk_of(manifest)
        key = key_of(manifest, gvk)
        resource = self.resolve(gvk, key)

        result = self.client.replace(
            resource,
            body=manifest,
            name=key.name,
            namespace=key.namespace or None,
            **self.request_kwargs,
        )
        _sync(manifest, result)
        self._track(key)
        return result

    def patch(
        self,
        obj: Any,
        patch: Optional[Any] = None,
        patch_type: PatchType = PatchType.MERGE,
        field_manager: Optional[str] = None,
        force: Optional[bool] = None,
    ) -> Any:
        """
        Patch an object and track it.

        Args:
            obj: Object identifying the target (apiVersion, kind, name, namespace)
            patch: Patch body; defaults to the object itself
            patch_type: Patch content type
            field_manager: Field manager (defaults to the ownership field manager)
            force: Force field ownership for apply patches

        Returns:
            Object returned by the API server

        Raises:
            ApiException: If the patch fails
        """
        manifest = to_manifest(obj)
        gvk = gvk_of(manifest)
        key = key_of(manifest, gvk)
        resource = self.resolve(gvk, key)
        body = manifest if patch is None else patch

        if field_manager is None and self.ownership is not None:
            field_manager = self.ownership.field_manager

        kwargs = dict(self.request_kwargs)
        if field_manager is not None:
            kwargs["field_manager"] = field_manager

        if patch_type == PatchType.APPLY:
            result = self.client.server_side_apply(
                resource,
                body=body,
                name=key.name,
                namespace=key.namespace or None,
                force_conflicts=force,
                **kwargs,
            )
        else:
            result = self.client.patch(
                resource,
                body=body,
                name=key.name,
                namespace=key.namespace or None,
                content_type=patch_type.value,
                **kwargs,
            )

        if patch is None:
            _sync(manifest, result)
        self._track(key)
        return result

    def create_or_update(self, obj: dict[str, Any], mutate: MutateFn) -> OperationResult:
        """
        Create or update an object so that it matches mutate's changes.

        The live object (if any) is loaded into obj, mutate(obj) is called, and
        the result is created, replaced, or left alone when nothing changed.
        The key is tracked in all three cases. Nothing is tracked if mutate
        raises.

        Args:
            obj: Manifest dict identifying the object; updated in place
            mutate: Callback bringing obj to the desired state

        Returns:
            OperationResult

        Raises:
            ValueError: If mutate changes the object's name or namespace
            ApiException: If reading or writing the object fails
        """
        gvk = gvk_of(obj)
        key = key_of(obj, gvk)
        resource = self.resolve(gvk, key)

        try:
            live = self.client.get(
                resource,
                name=key.name,
                namespace=key.namespace or None,
                **self.request_kwargs,
            )
        except ApiException as e:
            if not is_not_found(e):
                raise
            self._mutate(obj, mutate, key)
            result = self.client.create(
                resource,
                body=obj,
                namespace=key.namespace or None,
                **self.request_kwargs,
            )
            _sync(obj, result)
            self._track(key)
            return OperationResult.CREATED

        existing = as_dict(live) or {}
        obj.clear()
        obj.update(copy.deepcopy(existing))
        self._mutate(obj, mutate, key)

        if obj == existing:
            self._track(key)
            return OperationResult.UNCHANGED

        result = self.client.replace(
            resource,
            body=obj,
            name=key.name,
            namespace=key.namespace or None,
            **self.request_kwargs,
        )
        _sync(obj, result)
        self._track(key)
        return OperationResult.UPDATED

    @staticmethod
    def _mutate(obj: dict[str, Any], mutate: MutateFn, key: ResourceKey) -> None:
        mutate(obj)
        if key_of(obj, key.gvk) != key:
            raise ValueError("mutate cannot change the object name or namespace")

    def _track(self, key: ResourceKey) -> None:
        with self._lock:
            self._tracked.add(key)
        logger.debug(f"Tracking {key}")

    def is_tracked(self, gvk: GroupVersionKind, namespace: str, name: str) -> bool:
        """Return True if the object was written during this pass."""
        key = ResourceKey(gvk=gvk, namespace=namespace, name=name)
        with self._lock:
            return key in self._tracked

    def is_key_tracked(self, key: ResourceKey) -> bool:
        with self._lock:
            return key in self._tracked

    def tracked_resources(self) -> list[ResourceKey]:
        """Return a snapshot of all tracked keys."""
        with self._lock:
            return list(self._tracked)

    def cleanup_orphans(
        self,
        owner_label_key: str,
        owner_label_value: str,
        gvks: list[GroupVersionKind],
        allow_list: Optional[ClusterScopedAllowList] = None,
    ) -> CleanupResult:
        """Delete owner-labeled objects of the given kinds not written this pass."""
        return cleanup_orphans(
            self, owner_label_key, owner_label_value, gvks, allow_list=allow_list
        )
