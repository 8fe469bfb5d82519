"""Cluster side: API client, object builders, state reader, lifecycle manager."""

from collector_orchestrator.cluster.client import ClusterClient, ClusterError
from collector_orchestrator.cluster.lifecycle import (
    LifecycleError,
    MissingGroupingError,
    ResourceLifecycleManager,
)
from collector_orchestrator.cluster.reader import ClusterStateReader

__all__ = [
    "ClusterClient",
    "ClusterError",
    "ClusterStateReader",
    "LifecycleError",
    "MissingGroupingError",
    "ResourceLifecycleManager",
]
