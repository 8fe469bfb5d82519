"""Metrics endpoint for the orchestrator.

``Metrics`` holds a handful of counters and gauges updated by the loop
driver. ``create_app()`` exposes them in Prometheus text format on
``/metrics`` (plus a ``/health`` probe); ``MetricsServer`` serves that app
with uvicorn on a background thread and releases the port on ``stop()``.
"""

from __future__ import annotations

import logging
import threading
import time

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from collector_orchestrator import __version__
from collector_orchestrator.models import ReconcileResult

logger = logging.getLogger(__name__)

METRIC_PREFIX = "collector_orchestrator"
CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_HELP: dict[str, tuple[str, str]] = {
    "ticks_total": ("counter", "Reconciliation ticks started."),
    "tick_failures_total": ("counter", "Ticks aborted by an error."),
    "workloads_created_total": ("counter", "Workloads or groupings created."),
    "workloads_deleted_total": ("counter", "Workloads or groupings deleted."),
    "workloads_updated_total": ("counter", "Workloads or groupings updated in place."),
    "operation_failures_total": ("counter", "Create/update/delete operations that failed."),
    "desired_workloads": ("gauge", "Desired workloads in the last successful tick."),
    "observed_workloads": ("gauge", "Observed workloads in the last successful tick."),
    "last_tick_duration_seconds": ("gauge", "Wall time of the last tick."),
    "last_success_timestamp_seconds": ("gauge", "Unix time of the last successful tick."),
}


class Metrics:
    """Thread-safe in-process metric values."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, float] = dict.fromkeys(_HELP, 0.0)

    def inc(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._values[name] += amount

    def set(self, name: str, value: float) -> None:
        with self._lock:
            self._values[name] = value

    def get(self, name: str) -> float:
        with self._lock:
            return self._values[name]

    def record_tick(
        self,
        result: ReconcileResult,
        desired: int,
        observed: int,
        duration: float,
    ) -> None:
        """Fold one successful tick into the metrics."""
        with self._lock:
            self._values["workloads_created_total"] += len(result.created)
            self._values["workloads_deleted_total"] += len(result.deleted)
            self._values["workloads_updated_total"] += len(result.updated)
            self._values["operation_failures_total"] += len(result.failed)
            self._values["desired_workloads"] = desired
            self._values["observed_workloads"] = observed
            self._values["last_tick_duration_seconds"] = duration
            self._values["last_success_timestamp_seconds"] = time.time()

    def render(self) -> str:
        """Prometheus text exposition of every metric."""
        with self._lock:
            values = dict(self._values)
        lines: list[str] = []
        for name, (kind, help_text) in _HELP.items():
            full = f"{METRIC_PREFIX}_{name}"
            lines.append(f"# HELP {full} {help_text}")
            lines.append(f"# TYPE {full} {kind}")
            lines.append(f"{full} {values[name]:g}")
        return "\n".join(lines) + "\n"


def create_app(metrics: Metrics) -> FastAPI:
    """Build the FastAPI app serving *metrics*."""
    app = FastAPI(title="Collector Orchestrator", version=__version__, docs_url=None)

    @app.get("/metrics", response_class=PlainTextResponse)
    def get_metrics() -> PlainTextResponse:
        return PlainTextResponse(metrics.render(), media_type=CONTENT_TYPE)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app


class MetricsServer:
    """Runs the metrics app with uvicorn on a daemon thread."""

    def __init__(self, metrics: Metrics, port: int, host: str = "0.0.0.0") -> None:  # noqa: S104
        self._config = uvicorn.Config(
            create_app(metrics), host=host, port=port, log_level="warning",
        )
        self._server = uvicorn.Server(self._config)
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.run, name="metrics-server", daemon=True,
        )
        self._thread.start()
        logger.info("Serving metrics on port %d", self._config.port)

    def stop(self, timeout: float = 5.0) -> None:
        """Ask uvicorn to exit and wait for the port to be released."""
        if self._thread is None:
            return
        self._server.should_exit = True
        self._thread.join(timeout)
        self._thread = None
        logger.info("Metrics server stopped")
