"""collector-orchestrator: keeps collector workloads in sync with a source registry."""

__version__ = "1.0.0"

from collector_orchestrator.cluster.client import ClusterClient, ClusterError
from collector_orchestrator.cluster.lifecycle import (
    LifecycleError,
    MissingGroupingError,
    ResourceLifecycleManager,
)
from collector_orchestrator.cluster.reader import ClusterStateReader
from collector_orchestrator.config import (
    CollectorDefinitions,
    ConfigError,
    OrchestratorSettings,
    load_collector_definitions,
)
from collector_orchestrator.credentials.resolver import CredentialResolver
from collector_orchestrator.identity import identity
from collector_orchestrator.models import (
    CollectorDefinition,
    Credential,
    Endpoint,
    Grouping,
    ObservedWorkload,
    ReconcilePlan,
    ReconcileResult,
    RegisteredSource,
    WorkloadSpec,
    WorkloadState,
)
from collector_orchestrator.reconcile.grouping import GroupingReconciler
from collector_orchestrator.reconcile.loop import Orchestrator
from collector_orchestrator.reconcile.reconciler import Reconciler, plan
from collector_orchestrator.registry.aggregator import SourceAggregator
from collector_orchestrator.registry.client import RegistryClient, RegistryError

__all__ = [
    "ClusterClient",
    "ClusterError",
    "ClusterStateReader",
    "CollectorDefinition",
    "CollectorDefinitions",
    "ConfigError",
    "Credential",
    "CredentialResolver",
    "Endpoint",
    "Grouping",
    "GroupingReconciler",
    "identity",
    "LifecycleError",
    "load_collector_definitions",
    "MissingGroupingError",
    "ObservedWorkload",
    "Orchestrator",
    "OrchestratorSettings",
    "plan",
    "Reconciler",
    "ReconcilePlan",
    "ReconcileResult",
    "RegisteredSource",
    "RegistryClient",
    "RegistryError",
    "ResourceLifecycleManager",
    "SourceAggregator",
    "WorkloadSpec",
    "WorkloadState",
    "__version__",
]
