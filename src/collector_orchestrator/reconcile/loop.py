"""Loop driver — one full refresh per tick, forever.

A tick collects the desired set, lists the observed set, and reconciles.
A failing tick is logged and retried on the next one; nothing in the loop
ends the process. Stopping is cooperative: the stop event is checked
between ticks, never in the middle of one.
"""

from __future__ import annotations

import logging
import threading
import time

from collector_orchestrator.cluster.reader import ClusterStateReader
from collector_orchestrator.metrics.server import Metrics
from collector_orchestrator.models import ReconcileResult
from collector_orchestrator.reconcile.grouping import GroupingReconciler
from collector_orchestrator.reconcile.reconciler import Reconciler
from collector_orchestrator.registry.aggregator import SourceAggregator

logger = logging.getLogger(__name__)


class Orchestrator:
    """Ties the aggregator, reader and reconcilers into a polling loop."""

    def __init__(
        self,
        aggregator: SourceAggregator,
        reader: ClusterStateReader,
        reconciler: Reconciler,
        grouping: GroupingReconciler | None = None,
        metrics: Metrics | None = None,
        interval: float = 10.0,
    ) -> None:
        self._aggregator = aggregator
        self._reader = reader
        self._reconciler = reconciler
        self._grouping = grouping
        self._metrics = metrics or Metrics()
        self._interval = interval

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    def tick(self) -> ReconcileResult:
        """Run one reconciliation pass. Errors propagate to the caller."""
        started = time.monotonic()
        self._metrics.inc("ticks_total")
        logger.info("Checking...")

        desired = self._aggregator.collect()
        if self._grouping is not None:
            result = self._grouping.reconcile(desired)
        else:
            result = self._reconciler.reconcile(desired, self._reader.list_observed())

        self._metrics.record_tick(
            result,
            desired=len(desired),
            observed=result.observed,
            duration=time.monotonic() - started,
        )
        logger.info(
            "Checking... complete (created %d, deleted %d, updated %d, failed %d)",
            len(result.created),
            len(result.deleted),
            len(result.updated),
            len(result.failed),
        )
        return result

    def run(self, stop: threading.Event) -> None:
        """Tick every ``interval`` seconds until *stop* is set."""
        while not stop.is_set():
            try:
                self.tick()
            except Exception:
                self._metrics.inc("tick_failures_total")
                logger.exception("Reconciliation tick failed, retrying in %.0fs", self._interval)
            stop.wait(self._interval)
        logger.info("Stop requested, leaving the reconciliation loop")
