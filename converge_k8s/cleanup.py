"""
Orphan cleanup.

Deletes objects carrying an owner label that were not written during the
current reconcile pass. Only the kinds passed by the caller are considered.
Cluster-scoped objects are only deleted when an allow list permits them: an
object of any kind can be given the owner label by whoever can edit it, and
that alone must not make it deletable.
"""

import logging
import time
from typing import TYPE_CHECKING, Optional

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from .errors import KindNotRegisteredError, is_not_found
from .models import CleanupResult, ClusterScopedAllowList, GroupVersionKind, ResourceKey
from .objects import as_dict, is_controlled_by

if TYPE_CHECKING:
    from .tracking import TrackingClient

logger = logging.getLogger(__name__)


def cleanup_orphans(
    client: "TrackingClient",
    owner_label_key: str,
    owner_label_value: str,
    gvks: list[GroupVersionKind],
    allow_list: Optional[ClusterScopedAllowList] = None,
) -> CleanupResult:
    """
    Delete owner-labeled objects that were not tracked during this pass.

    Must run after every apply of the pass has completed. Failures are logged
    and never raised: anything left behind is retried on the next pass.

    Args:
        client: Tracking client used for the pass
        owner_label_key: Owner label key (e.g., "converge.k8s.io/owner")
        owner_label_value: Owner label value to match
        gvks: Kinds to check for orphans
        allow_list: Cluster-scoped kinds (and names) that may be deleted;
            when None no cluster-scoped object is deleted

    Returns:
        CleanupResult with deleted, skipped and failed keys
    """
    start = time.monotonic()
    result = CleanupResult()

    for gvk in gvks:
        _cleanup_kind(client, owner_label_key, owner_label_value, gvk, allow_list, result)

    logger.info(
        f"Orphan cleanup for {owner_label_key}={owner_label_value} completed in "
        f"{time.monotonic() - start:.2f}s: {len(gvks)} kinds, "
        f"{len(result.deleted)} deleted, {len(result.skipped)} skipped, "
        f"{len(result.failed)} failed"
    )
    return result


def _cleanup_kind(
    client: "TrackingClient",
    owner_label_key: str,
    owner_label_value: str,
    gvk: GroupVersionKind,
    allow_list: Optional[ClusterScopedAllowList],
    result: CleanupResult,
) -> None:
    try:
        resource = client.resolve(gvk)
    except KindNotRegisteredError:
        # Optional CRD not installed
        logger.debug(f"Skipping cleanup for {gvk} (kind not registered)")
        result.skipped_kinds.append(gvk)
        return

    try:
        listing = client.client.get(
            resource,
            label_selector=f"{owner_label_key}={owner_label_value}",
            **client.request_kwargs,
        )
    except (ApiException, HTTPError) as e:
        logger.error(f"Failed to list {gvk} for orphan cleanup: {e}", exc_info=True)
        result.skipped_kinds.append(gvk)
        return

    items = (as_dict(listing) or {}).get("items") or []
    for item in items:
        meta = item.get("metadata") or {}
        key = ResourceKey(
            gvk=gvk,
            namespace=meta.get("namespace") or "",
            name=meta.get("name") or "",
        )

        if client.is_key_tracked(key):
            continue

        # The label alone is not proof of ownership; require our controller reference
        if client.ownership is not None and not is_controlled_by(
            item, client.ownership.owner
        ):
            logger.debug(f"Skipping {key}: controller reference does not match owner")
            result.skipped.append(key)
            continue

        cluster_scoped = not key.namespace or not getattr(resource, "namespaced", True)
        if cluster_scoped and (
            allow_list is None or not allow_list.is_allowed(gvk, "", key.name)
        ):
            logger.info(f"Skipping cluster-scoped {key}: not in allow list")
            result.skipped.append(key)
            continue

        logger.info(f"Deleting orphaned resource {key}")
        try:
            client.client.delete(
                resource,
                name=key.name,
                namespace=key.namespace or None,
                **client.request_kwargs,
            )
        except (ApiException, HTTPError) as e:
            if is_not_found(e):
                # Already gone
                result.deleted.append(key)
                continue
            logger.error(f"Failed to delete orphaned resource {key}: {e}", exc_info=True)
            result.failed.append(key)
            continue

        result.deleted.append(key)
