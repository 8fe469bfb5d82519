"""collector-orchestrator CLI — the long-running control loop process.

A single foreground command, no subcommands. Settings flags fall back to
``COLLECTOR_ORCHESTRATOR_*`` environment variables, then to the built-in
default. SIGTERM/SIGINT stop the loop between ticks; the metrics port is
released before the process exits.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import Any

import click
from kubernetes.config.config_exception import ConfigException

from collector_orchestrator import __version__
from collector_orchestrator.cluster.client import ClusterClient, ClusterError
from collector_orchestrator.cluster.lifecycle import ResourceLifecycleManager
from collector_orchestrator.cluster.reader import ClusterStateReader
from collector_orchestrator.config import (
    ConfigError,
    OrchestratorSettings,
    load_collector_definitions,
    parse_source_types,
)
from collector_orchestrator.credentials.resolver import CredentialResolver
from collector_orchestrator.metrics.server import Metrics, MetricsServer
from collector_orchestrator.reconcile.grouping import GroupingReconciler
from collector_orchestrator.reconcile.loop import Orchestrator
from collector_orchestrator.reconcile.reconciler import Reconciler
from collector_orchestrator.registry.aggregator import SourceAggregator
from collector_orchestrator.registry.client import RegistryClient, RegistryError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_orchestrator(
    settings: OrchestratorSettings,
    cluster: ClusterClient,
    metrics: Metrics | None = None,
) -> Orchestrator:
    """Wire every component from validated *settings*."""
    definitions = load_collector_definitions(
        settings.collector_definitions_file,
        enabled_types=parse_source_types(settings.source_types),
    )
    logger.info("Managing source types: %s", ", ".join(sorted(definitions)) or "(none)")

    registry = RegistryClient(
        sources_url=settings.sources_url or "",
        topology_url=settings.topology_url or "",
        path_prefix=settings.path_prefix,
        app_name=settings.app_name,
        timeout=settings.http_timeout,
    )
    aggregator = SourceAggregator(
        registry,
        CredentialResolver(registry),
        definitions,
        default_image_namespace=settings.default_image_namespace,
    )
    reader = ClusterStateReader(cluster)
    lifecycle = ResourceLifecycleManager(
        cluster,
        image_registry=settings.image_registry,
        ingress_api=settings.ingress_api,
        collector_env=settings.collector_env(),
    )

    grouping = None
    if settings.sources_per_collector is not None:
        grouping = GroupingReconciler(
            lifecycle,
            reader,
            definitions,
            sources_per_collector=settings.sources_per_collector,
            image_registry=settings.image_registry,
        )

    return Orchestrator(
        aggregator,
        reader,
        Reconciler(lifecycle),
        grouping=grouping,
        metrics=metrics,
        interval=settings.interval,
    )


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handler(signum: int, _frame: Any) -> None:
        logger.info("Received %s, stopping after the current tick", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


@click.command()
@click.version_option(version=__version__)
@click.option("--sources-url", default=None, help="Base URL of the sources registry API")
@click.option("--topology-url", default=None, help="Base URL of the inventory registry API")
@click.option(
    "--config", "collector_definitions_file", default=None,
    help="Collector definitions YAML (source type -> image)",
)
@click.option("--source-types", default=None, help="Comma-separated source types to manage")
@click.option("--namespace", default=None, help="Namespace the collectors run in")
@click.option("--kubeconfig", default=None, help="Path to a kubeconfig file")
@click.option("--context", "kube_context", default=None, help="kubeconfig context to use")
@click.option("--in-cluster", is_flag=True, default=False, help="Use in-cluster config")
@click.option("--interval", type=float, default=None, help="Seconds between ticks")
@click.option("--metrics-port", type=int, default=None, help="Metrics port (0 disables)")
@click.option(
    "--image-namespace", "default_image_namespace", default=None,
    help="Image namespace for definitions that do not name one",
)
@click.option("--image-registry", default=None, help="Registry host prefixed to images")
@click.option("--path-prefix", default=None, help="Public API path prefix")
@click.option("--app-name", default=None, help="Public API application name")
@click.option("--ingress-api", default=None, help="Ingress API URL passed to collectors")
@click.option(
    "--sources-per-collector", type=int, default=None,
    help="Batch sources of one type into shared collectors of this size",
)
@click.option(
    "--log-level", default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.option("--once", is_flag=True, default=False, help="Run a single tick and exit")
def cli(
    kubeconfig: str | None,
    kube_context: str | None,
    in_cluster: bool,
    log_level: str,
    once: bool,
    **overrides: Any,
) -> None:
    """Keep collector workloads in sync with the source registry."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)

    try:
        settings = OrchestratorSettings.from_env().with_overrides(**overrides).validate()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    metrics = Metrics()
    try:
        cluster = ClusterClient.from_config(
            namespace=settings.namespace,
            kubeconfig=kubeconfig,
            context=kube_context,
            in_cluster=in_cluster,
        )
        orchestrator = build_orchestrator(settings, cluster, metrics)
    except (ConfigError, ConfigException) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if once:
        try:
            result = orchestrator.tick()
        except (RegistryError, ClusterError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(2)
        click.echo(
            f"created={len(result.created)} deleted={len(result.deleted)} "
            f"updated={len(result.updated)} failed={len(result.failed)}"
        )
        sys.exit(1 if result.failed else 0)

    server = None
    if settings.metrics_port:
        server = MetricsServer(metrics, settings.metrics_port)
        server.start()

    stop = threading.Event()
    _install_signal_handlers(stop)
    logger.info("collector-orchestrator %s starting (interval %.0fs)", __version__, settings.interval)
    try:
        orchestrator.run(stop)
    finally:
        if server is not None:
            server.stop()


if __name__ == "__main__":
    cli()
