"""Grouped pairing — several same-type sources share one workload.

Enabled with ``sources_per_collector``. Each grouping is a config map
(member list), a secret (member credentials) and one workload, all
labeled with the grouping's uid. The uid is random, assigned once, and
survives membership changes.

Per tick:

1. Rebuild the observed groupings from their config maps.
2. Drop members whose identity is no longer desired.
3. Place new identities into groupings of their type that have room,
   then open new groupings for the rest.
4. Delete groupings left empty; rewrite the ones whose membership
   changed; create missing workloads; patch workloads whose image is
   out of date; delete grouped workloads that lost their config map.
5. Remove grouping secrets whose grouping no longer exists.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping

from collector_orchestrator.cluster import objects
from collector_orchestrator.cluster.client import ClusterError
from collector_orchestrator.cluster.lifecycle import MissingGroupingError, ResourceLifecycleManager
from collector_orchestrator.cluster.reader import ClusterStateReader
from collector_orchestrator.config import CollectorDefinitions
from collector_orchestrator.labels import LABEL_GROUPING
from collector_orchestrator.models import (
    Grouping,
    ObservedWorkload,
    ReconcileResult,
    WorkloadSpec,
)

logger = logging.getLogger(__name__)

UID_LENGTH = 10


def new_grouping_uid() -> str:
    return uuid.uuid4().hex[:UID_LENGTH]


def assign_members(
    groupings: Iterable[Grouping],
    desired: Mapping[str, WorkloadSpec],
    capacity: Callable[[str], int],
    uid_factory: Callable[[], str] = new_grouping_uid,
) -> list[tuple[Grouping, bool]]:
    """Work out the next membership of every grouping.

    Returns ``(grouping, changed)`` pairs covering every existing grouping
    (possibly now empty) plus any newly opened ones.
    """
    placed: set[str] = set()
    updated: list[Grouping] = []
    changed: dict[str, bool] = {}

    for grouping in sorted(groupings, key=lambda g: g.uid):
        kept = [
            m for m in grouping.members
            if m in desired and m not in placed
            and desired[m].source_type == grouping.source_type
        ]
        placed.update(kept)
        updated.append(Grouping(uid=grouping.uid, source_type=grouping.source_type, members=kept))
        changed[grouping.uid] = kept != grouping.members

    pending: dict[str, list[str]] = defaultdict(list)
    for ident, spec in sorted(desired.items(), key=lambda kv: (kv[1].source_id, kv[0])):
        if ident not in placed:
            pending[spec.source_type].append(ident)

    for source_type, idents in sorted(pending.items()):
        limit = capacity(source_type)
        for grouping in updated:
            if not idents:
                break
            if grouping.source_type != source_type:
                continue
            room = limit - len(grouping.members)
            if room > 0:
                grouping.members.extend(idents[:room])
                del idents[:room]
                changed[grouping.uid] = True
        while idents:
            grouping = Grouping(uid=uid_factory(), source_type=source_type, members=idents[:limit])
            del idents[:limit]
            updated.append(grouping)
            changed[grouping.uid] = True

    return [(g, changed[g.uid]) for g in updated]


class GroupingReconciler:
    """Converges groupings, their config/secrets, and their shared workloads."""

    def __init__(
        self,
        lifecycle: ResourceLifecycleManager,
        reader: ClusterStateReader,
        definitions: CollectorDefinitions,
        sources_per_collector: int,
        image_registry: str | None = None,
        uid_factory: Callable[[], str] = new_grouping_uid,
    ) -> None:
        self._lifecycle = lifecycle
        self._reader = reader
        self._definitions = definitions
        self._default_capacity = sources_per_collector
        self._image_registry = image_registry
        self._uid_factory = uid_factory

    def capacity(self, source_type: str) -> int:
        definition = self._definitions.get(source_type)
        if definition is not None and definition.sources_per_collector:
            return definition.sources_per_collector
        return self._default_capacity

    def reconcile(self, desired: Mapping[str, WorkloadSpec]) -> ReconcileResult:
        """One grouped pass. Raises ClusterError only if listing fails."""
        config_maps = self._reader.list_grouping_config_maps()
        workloads = self._reader.list_grouped_workloads()

        observed: list[Grouping] = []
        for cm in config_maps.values():
            grouping = objects.grouping_from_config_map(cm)
            if grouping is None:
                logger.warning("Config map %s is unreadable, leaving it alone", cm.name)
                continue
            observed.append(grouping)

        result = ReconcileResult(observed=len(config_maps))
        assignments = assign_members(observed, desired, self.capacity, self._uid_factory)
        for grouping, changed in assignments:
            try:
                self._converge(grouping, changed, desired, workloads, result)
            except ClusterError as exc:
                logger.error("Failed to reconcile grouping %s: %s", grouping.uid, exc)
                result.failed.append(grouping.uid)

        for uid, workload in sorted(workloads.items()):
            if uid in config_maps:
                continue
            try:
                self._lifecycle.delete_grouped_workload(workload)
            except ClusterError as exc:
                logger.error("Failed to remove orphaned workload %s: %s", workload.name, exc)
                result.failed.append(uid)
            else:
                result.deleted.append(uid)

        removed, failed = self._lifecycle.remove_stray_secrets(
            LABEL_GROUPING, keep=set(config_maps) | {g.uid for g, _ in assignments},
        )
        result.deleted.extend(uid for uid in removed if uid not in result.deleted)
        result.failed.extend(failed)
        return result

    def _converge(
        self,
        grouping: Grouping,
        changed: bool,
        desired: Mapping[str, WorkloadSpec],
        workloads: Mapping[str, ObservedWorkload],
        result: ReconcileResult,
    ) -> None:
        if grouping.is_empty:
            self._lifecycle.delete_grouping(grouping)
            result.deleted.append(grouping.uid)
            return

        if changed:
            self._lifecycle.apply_grouping(
                grouping, {m: desired[m] for m in grouping.members},
            )

        spec = desired[grouping.members[0]]
        image = objects.image_reference(spec.image, spec.image_namespace, self._image_registry)
        workload = workloads.get(grouping.uid)

        if workload is None:
            try:
                self._lifecycle.create_grouped_workload(grouping, image)
            except MissingGroupingError as exc:
                logger.warning("Failed to create grouped workload: %s", exc)
                return
            result.created.append(grouping.uid)
        elif workload.image != image:
            self._lifecycle.update_image(workload, image)
            result.updated.append(grouping.uid)
        elif changed:
            result.updated.append(grouping.uid)
