"""Error types for converge-k8s."""

import json
from typing import Optional

from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from .models import ResourceKey


class ConvergeError(Exception):
    """Base class for converge-k8s errors."""


class ApplyError(ConvergeError):
    """A write against the cluster API failed."""

    def __init__(
        self,
        key: Optional[ResourceKey],
        cause: Exception,
        source: Optional[str] = None,
    ):
        """
        Initialize apply error.

        Args:
            key: Key of the object that failed to apply
            cause: Underlying exception
            source: Originating collection (e.g., component manifests)
        """
        self.key = key
        self.cause = cause
        self.source = source
        super().__init__(self._format())

    def _format(self) -> str:
        if self.key is None:
            target = "object"
        else:
            name = self.key.name
            if self.key.namespace:
                name = f"{self.key.namespace}/{name}"
            target = f"object {name} ({self.key.gvk.kind})"
        message = f"failed to apply {target}"
        if self.source:
            message += f" from {self.source}"
        return f"{message}: {self.cause}"

    def with_source(self, source: str) -> "ApplyError":
        """Return a copy of this error attributed to an originating collection."""
        err = type(self)(self.key, self.cause, source=source)
        err.__cause__ = self.__cause__
        return err


class KindNotRegisteredError(ApplyError):
    """The object's kind is not served by the cluster (e.g., CRD not installed)."""


class OwnershipError(ConvergeError):
    """An owner reference could not be set on an object."""


class OwnershipNotConfiguredError(OwnershipError):
    """An ownership operation was used on a client without an ownership config."""


def _status_reason(exc: ApiException) -> Optional[str]:
    body = getattr(exc, "body", None)
    if not body:
        return None
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    try:
        status = json.loads(body)
    except (TypeError, ValueError):
        return None
    if isinstance(status, dict):
        return status.get("reason")
    return None


def is_not_found(exc: BaseException) -> bool:
    """Return True if exc is a 404 from the API server."""
    return isinstance(exc, ApiException) and exc.status == 404


def is_already_exists(exc: BaseException) -> bool:
    """Return True if exc reports that the object already exists."""
    if not isinstance(exc, ApiException) or exc.status != 409:
        return False
    # 409 is also returned for resourceVersion conflicts on update
    reason = _status_reason(exc)
    return reason is None or reason == "AlreadyExists"


def is_kind_not_registered(exc: BaseException) -> bool:
    """Return True if exc means the kind is not served by the cluster."""
    return isinstance(exc, (KindNotRegisteredError, ResourceNotFoundError))
