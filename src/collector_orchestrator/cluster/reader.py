"""Cluster state reader — what is actually running.

Lists the objects carrying the orchestrator's marker label and pulls the
identity out of each one. Objects without an identity label are ignored.
"""

from __future__ import annotations

import logging

from collector_orchestrator.cluster.client import ClusterClient
from collector_orchestrator.labels import GROUPING_SELECTOR, LABEL_GROUPING, MARKER_SELECTOR
from collector_orchestrator.models import ObservedConfigMap, ObservedWorkload

logger = logging.getLogger(__name__)


class ClusterStateReader:
    """Read-only view of managed cluster objects."""

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    def list_observed(self, selector: str = MARKER_SELECTOR) -> set[str]:
        """Return the identities of every managed single-source workload.

        Raises:
            ClusterError: If the cluster cannot be listed.
        """
        observed: set[str] = set()
        for workload in self._cluster.list_deployments(selector):
            if workload.identity is None:
                if workload.grouping_uid is None:
                    logger.debug("Ignoring %s: no identity label", workload.name)
                continue
            observed.add(workload.identity)
        return observed

    def list_grouping_config_maps(self) -> dict[str, ObservedConfigMap]:
        """Grouping config maps keyed by grouping uid."""
        return _by_grouping_uid(self._cluster.list_config_maps(GROUPING_SELECTOR))

    def list_grouped_workloads(self) -> dict[str, ObservedWorkload]:
        """Grouped workloads keyed by the uid of the grouping they belong to."""
        workloads: dict[str, ObservedWorkload] = {}
        for workload in self._cluster.list_deployments(GROUPING_SELECTOR):
            if workload.grouping_uid:
                workloads[workload.grouping_uid] = workload
        return workloads


def _by_grouping_uid(config_maps: list[ObservedConfigMap]) -> dict[str, ObservedConfigMap]:
    result: dict[str, ObservedConfigMap] = {}
    for cm in config_maps:
        uid = cm.labels.get(LABEL_GROUPING)
        if uid:
            result[uid] = cm
        else:
            logger.debug("Ignoring config map %s: no grouping label", cm.name)
    return result
