"""Tests for the collector-orchestrator CLI."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner
from kubernetes.config.config_exception import ConfigException

from collector_orchestrator import __version__
from collector_orchestrator.cli.main import build_orchestrator, cli
from collector_orchestrator.config import ConfigError, OrchestratorSettings
from collector_orchestrator.models import ReconcileResult
from collector_orchestrator.reconcile.grouping import GroupingReconciler
from collector_orchestrator.registry.client import RegistryError

from tests.conftest import FakeCluster

MAIN = "collector_orchestrator.cli.main"

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


@pytest.fixture()
def definitions_file(tmp_path: Path) -> Path:
    path = tmp_path / "defs.yaml"
    path.write_text(
        "openshift:\n  image: collector-openshift\n"
        "amazon:\n  image: collector-amazon\n  sources_per_collector: 3\n"
    )
    return path


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _args(definitions_file: Path, *extra: str) -> list[str]:
    return [
        "--sources-url", "http://sources:8080",
        "--topology-url", "http://topology:8080",
        "--config", str(definitions_file),
        *extra,
    ]


def _settings(definitions_file: Path, **kwargs: object) -> OrchestratorSettings:
    return OrchestratorSettings(
        sources_url="http://sources:8080",
        topology_url="http://topology:8080",
        collector_definitions_file=str(definitions_file),
        **kwargs,  # type: ignore[arg-type]
    )


# ------------------------------------------------------------------
# build_orchestrator
# ------------------------------------------------------------------


class TestBuildOrchestrator:
    def test_pairing_mode(self, definitions_file: Path) -> None:
        orchestrator = build_orchestrator(_settings(definitions_file), FakeCluster())
        assert orchestrator._grouping is None

    def test_grouped_mode(self, definitions_file: Path) -> None:
        orchestrator = build_orchestrator(
            _settings(definitions_file, sources_per_collector=4), FakeCluster(),
        )
        assert isinstance(orchestrator._grouping, GroupingReconciler)
        assert orchestrator._grouping.capacity("openshift") == 4
        assert orchestrator._grouping.capacity("amazon") == 3

    def test_source_type_allowlist(self, definitions_file: Path) -> None:
        orchestrator = build_orchestrator(
            _settings(definitions_file, source_types="amazon"), FakeCluster(),
        )
        assert list(orchestrator._aggregator._definitions) == ["amazon"]

    def test_missing_definitions(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            build_orchestrator(_settings(tmp_path / "missing.yaml"), FakeCluster())


# ------------------------------------------------------------------
# cli
# ------------------------------------------------------------------


class TestCliStartup:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_urls(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--once"], env={
            "COLLECTOR_ORCHESTRATOR_SOURCES_URL": "",
            "COLLECTOR_ORCHESTRATOR_TOPOLOGY_URL": "",
        })
        assert result.exit_code == 1
        assert "Missing required setting" in result.output

    def test_bad_env_value(self, runner: CliRunner, definitions_file: Path) -> None:
        result = runner.invoke(
            cli, _args(definitions_file, "--once"),
            env={"COLLECTOR_ORCHESTRATOR_INTERVAL": "soon"},
        )
        assert result.exit_code == 1
        assert "COLLECTOR_ORCHESTRATOR_INTERVAL" in result.output

    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_bad_definitions_file(
        self, mock_from_config: MagicMock, runner: CliRunner, tmp_path: Path,
    ) -> None:
        mock_from_config.return_value = FakeCluster()
        result = runner.invoke(cli, _args(tmp_path / "missing.yaml", "--once"))
        assert result.exit_code == 1
        assert "not found" in result.output

    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_kube_config_error(
        self, mock_from_config: MagicMock, runner: CliRunner, definitions_file: Path,
    ) -> None:
        mock_from_config.side_effect = ConfigException("Invalid kube-config file")
        result = runner.invoke(cli, _args(definitions_file, "--once"))
        assert result.exit_code == 1
        assert "Invalid kube-config" in result.output

    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_cluster_options_passed(
        self, mock_from_config: MagicMock, runner: CliRunner, definitions_file: Path,
    ) -> None:
        mock_from_config.side_effect = ConfigException("stop here")
        runner.invoke(cli, _args(
            definitions_file, "--namespace", "collectors", "--context", "dev",
            "--kubeconfig", "/tmp/kc", "--once",
        ))
        mock_from_config.assert_called_once_with(
            namespace="collectors", kubeconfig="/tmp/kc", context="dev", in_cluster=False,
        )


class TestCliOnce:
    @patch(f"{MAIN}.build_orchestrator")
    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_success(
        self, mock_from_config: MagicMock, mock_build: MagicMock,
        runner: CliRunner, definitions_file: Path,
    ) -> None:
        mock_build.return_value.tick.return_value = ReconcileResult(created=["a"], deleted=["b"])

        result = runner.invoke(cli, _args(definitions_file, "--once"))

        assert result.exit_code == 0
        assert "created=1 deleted=1 updated=0 failed=0" in result.output
        settings = mock_build.call_args[0][0]
        assert settings.sources_url == "http://sources:8080"

    @patch(f"{MAIN}.build_orchestrator")
    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_partial_failure_exit_code(
        self, mock_from_config: MagicMock, mock_build: MagicMock,
        runner: CliRunner, definitions_file: Path,
    ) -> None:
        mock_build.return_value.tick.return_value = ReconcileResult(failed=["a"])
        result = runner.invoke(cli, _args(definitions_file, "--once"))
        assert result.exit_code == 1
        assert "failed=1" in result.output

    @patch(f"{MAIN}.build_orchestrator")
    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_registry_error_exit_code(
        self, mock_from_config: MagicMock, mock_build: MagicMock,
        runner: CliRunner, definitions_file: Path,
    ) -> None:
        mock_build.return_value.tick.side_effect = RegistryError("registry down")
        result = runner.invoke(cli, _args(definitions_file, "--once"))
        assert result.exit_code == 2
        assert "registry down" in result.output

    @patch(f"{MAIN}.build_orchestrator")
    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_flags_override_env(
        self, mock_from_config: MagicMock, mock_build: MagicMock,
        runner: CliRunner, definitions_file: Path,
    ) -> None:
        mock_build.return_value.tick.return_value = ReconcileResult()
        args = _args(
            definitions_file, "--interval", "5", "--sources-per-collector", "2", "--once",
        )
        runner.invoke(cli, args, env={
            "COLLECTOR_ORCHESTRATOR_INTERVAL": "60",
            "COLLECTOR_ORCHESTRATOR_NAMESPACE": "ns1",
        })
        settings = mock_build.call_args[0][0]
        assert settings.interval == 5.0
        assert settings.namespace == "ns1"
        assert settings.sources_per_collector == 2


class TestCliLoop:
    @patch(f"{MAIN}._install_signal_handlers")
    @patch(f"{MAIN}.MetricsServer")
    @patch(f"{MAIN}.build_orchestrator")
    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_runs_loop_and_releases_port(
        self, mock_from_config: MagicMock, mock_build: MagicMock,
        mock_server: MagicMock, mock_signals: MagicMock,
        runner: CliRunner, definitions_file: Path,
    ) -> None:
        result = runner.invoke(cli, _args(definitions_file, "--metrics-port", "9500"))

        assert result.exit_code == 0
        mock_server.assert_called_once()
        assert mock_server.call_args[0][1] == 9500
        mock_server.return_value.start.assert_called_once()
        mock_build.return_value.run.assert_called_once()
        mock_server.return_value.stop.assert_called_once()

    @patch(f"{MAIN}._install_signal_handlers")
    @patch(f"{MAIN}.MetricsServer")
    @patch(f"{MAIN}.build_orchestrator")
    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_metrics_disabled(
        self, mock_from_config: MagicMock, mock_build: MagicMock,
        mock_server: MagicMock, mock_signals: MagicMock,
        runner: CliRunner, definitions_file: Path,
    ) -> None:
        result = runner.invoke(cli, _args(definitions_file, "--metrics-port", "0"))
        assert result.exit_code == 0
        mock_server.assert_not_called()

    @patch(f"{MAIN}._install_signal_handlers")
    @patch(f"{MAIN}.MetricsServer")
    @patch(f"{MAIN}.build_orchestrator")
    @patch(f"{MAIN}.ClusterClient.from_config")
    def test_port_released_on_crash(
        self, mock_from_config: MagicMock, mock_build: MagicMock,
        mock_server: MagicMock, mock_signals: MagicMock,
        runner: CliRunner, definitions_file: Path,
    ) -> None:
        mock_build.return_value.run.side_effect = RuntimeError("boom")
        result = runner.invoke(cli, _args(definitions_file))
        assert result.exit_code != 0
        mock_server.return_value.stop.assert_called_once()
