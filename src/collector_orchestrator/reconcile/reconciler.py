"""Reconciler — turns desired vs. observed identities into cluster calls.

``plan()`` is plain set arithmetic::

    to_create = desired - observed
    to_delete = observed - desired

Identities in both sets are left alone. There is no update path: an
identity already encodes every field, so a changed source shows up as one
delete plus one create.

Every operation is idempotent, so a pass that fails halfway is simply
finished by the next tick. Each pass ends by removing managed secrets
that belong to neither a desired identity nor a failed one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from collector_orchestrator.cluster.client import ClusterError
from collector_orchestrator.cluster.lifecycle import ResourceLifecycleManager
from collector_orchestrator.labels import LABEL_DIGEST
from collector_orchestrator.models import ReconcilePlan, ReconcileResult, WorkloadSpec

logger = logging.getLogger(__name__)


def plan(desired: Iterable[str], observed: Iterable[str]) -> ReconcilePlan:
    """Compute which identities to create, delete, and leave untouched."""
    desired_set = frozenset(desired)
    observed_set = frozenset(observed)
    return ReconcilePlan(
        to_create=desired_set - observed_set,
        to_delete=observed_set - desired_set,
        unchanged=desired_set & observed_set,
    )


class Reconciler:
    """Drives the lifecycle manager toward the desired identity set."""

    def __init__(self, lifecycle: ResourceLifecycleManager) -> None:
        self._lifecycle = lifecycle

    def reconcile(
        self,
        desired: Mapping[str, WorkloadSpec],
        observed: Iterable[str],
    ) -> ReconcileResult:
        """Delete what is no longer wanted, then create what is missing.

        A ``ClusterError`` for one identity is logged and recorded in
        ``failed``; the remaining identities are still processed.
        A ``ClusterError`` while listing secrets propagates.
        """
        todo = plan(desired.keys(), observed)
        result = ReconcileResult(observed=len(todo.to_delete) + len(todo.unchanged))
        if todo.is_empty:
            logger.debug("Nothing to do (%d workload(s) in sync)", len(todo.unchanged))
        else:
            self._apply(todo, desired, result)

        # Leftovers of a half-finished delete or an out-of-band removal
        removed, failed = self._lifecycle.remove_stray_secrets(
            LABEL_DIGEST, keep=set(desired) | set(result.failed),
        )
        result.deleted.extend(removed)
        result.failed.extend(failed)
        return result

    def _apply(
        self,
        todo: ReconcilePlan,
        desired: Mapping[str, WorkloadSpec],
        result: ReconcileResult,
    ) -> None:
        logger.info(
            "Reconciling: %d to create, %d to delete, %d unchanged",
            len(todo.to_create),
            len(todo.to_delete),
            len(todo.unchanged),
        )

        # Deletes first: a rotated credential frees its old objects before
        # the new ones are created.
        for identity in sorted(todo.to_delete):
            try:
                self._lifecycle.delete(identity)
            except ClusterError as exc:
                logger.error("Failed to delete objects for digest %s: %s", identity, exc)
                result.failed.append(identity)
            else:
                result.deleted.append(identity)

        for identity in sorted(todo.to_create):
            try:
                self._lifecycle.create(identity, desired[identity])
            except ClusterError as exc:
                logger.error("Failed to create objects for digest %s: %s", identity, exc)
                result.failed.append(identity)
            else:
                result.created.append(identity)
