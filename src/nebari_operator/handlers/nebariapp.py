"""
NebariApp handlers - Dispatches kopf events into the reconciler.

Every event kind (create, resume, update, the periodic timer and delete) ends
in the same ``reconcile(name, namespace)`` call: the reconciler re-derives the
whole state each time, so it does not need to know which event fired. Retry is
driven by kopf redelivery; a failed pass raises ``kopf.TemporaryError`` with
the delay the reconciler chose.
"""

import asyncio
import logging
from typing import Any

import kopf

from nebari_operator.constants import (
    NEBARIAPP_GROUP,
    NEBARIAPP_PLURAL,
    NEBARIAPP_VERSION,
)
from nebari_operator.observability.logging import (
    generate_correlation_id,
    set_correlation_id,
)
from nebari_operator.services import NebariAppReconciler, ReconcileResult
from nebari_operator.settings import settings as operator_settings

logger = logging.getLogger(__name__)

# One lock per object; kopf may run a timer and an update handler at once
_locks: dict[tuple[str, str], asyncio.Lock] = {}


def _lock_for(namespace: str, name: str) -> asyncio.Lock:
    key = (namespace, name)
    lock = _locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _locks[key] = lock
    return lock


def _get_reconciler(memo: kopf.Memo) -> NebariAppReconciler:
    reconciler = getattr(memo, "reconciler", None)
    if reconciler is None:
        raise kopf.PermanentError("NebariApp reconciler was not initialized at startup")
    return reconciler


async def run_reconcile(memo: kopf.Memo, name: str, namespace: str) -> ReconcileResult:
    """
    Run one serialized reconcile pass and translate failures for kopf.

    Raises:
        kopf.TemporaryError: The pass failed and should be redelivered
    """
    reconciler = _get_reconciler(memo)
    set_correlation_id(generate_correlation_id())
    async with _lock_for(namespace, name):
        result = await reconciler.reconcile(name, namespace)

    if result.error is not None:
        delay = result.requeue_after or operator_settings.requeue_transient_error_seconds
        raise kopf.TemporaryError(
            f"NebariApp {namespace}/{name}: {result.error.message}", delay=delay
        )
    return result


@kopf.on.create(NEBARIAPP_PLURAL, group=NEBARIAPP_GROUP, version=NEBARIAPP_VERSION)
@kopf.on.resume(NEBARIAPP_PLURAL, group=NEBARIAPP_GROUP, version=NEBARIAPP_VERSION)
async def ensure_nebariapp(
    name: str, namespace: str, memo: kopf.Memo, **kwargs: Any
) -> None:
    """Reconcile a NebariApp that was created or found at operator start."""
    logger.info(f"Ensuring NebariApp {name} in namespace {namespace}")
    await run_reconcile(memo, name, namespace)


@kopf.on.update(NEBARIAPP_PLURAL, group=NEBARIAPP_GROUP, version=NEBARIAPP_VERSION)
async def update_nebariapp(
    name: str, namespace: str, diff: kopf.Diff, memo: kopf.Memo, **kwargs: Any
) -> None:
    """Reconcile a NebariApp whose spec, labels or annotations changed."""
    changed = ", ".join(".".join(str(p) for p in field) for _, field, _, _ in diff)
    logger.info(f"NebariApp {namespace}/{name} changed: {changed or 'metadata'}")
    await run_reconcile(memo, name, namespace)


@kopf.timer(
    NEBARIAPP_PLURAL,
    group=NEBARIAPP_GROUP,
    version=NEBARIAPP_VERSION,
    interval=float(operator_settings.requeue_interval_seconds),
    initial_delay=float(operator_settings.requeue_interval_seconds),
)
async def reverify_nebariapp(
    name: str, namespace: str, memo: kopf.Memo, **kwargs: Any
) -> None:
    """
    Periodic re-verification.

    Repairs drift in the derived HTTPRoute, SecurityPolicy and credential
    secret, and picks up dependencies (gateways, secrets) that appeared
    since the last pass.
    """
    logger.debug(f"Re-verifying NebariApp {namespace}/{name}")
    await run_reconcile(memo, name, namespace)


@kopf.on.delete(NEBARIAPP_PLURAL, group=NEBARIAPP_GROUP, version=NEBARIAPP_VERSION)
async def delete_nebariapp(
    name: str, namespace: str, memo: kopf.Memo, **kwargs: Any
) -> None:
    """
    Handle NebariApp deletion.

    The reconciler sees the deletion timestamp, cleans up and releases the
    finalizer. Raising keeps the object terminating until cleanup succeeds.
    """
    logger.info(f"Starting deletion of NebariApp {name} in namespace {namespace}")
    await run_reconcile(memo, name, namespace)
    _locks.pop((namespace, name), None)
    logger.info(f"Successfully deleted NebariApp {name}")
