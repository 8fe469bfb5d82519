"""Integration test fixtures and infrastructure detection.

Run with:  pytest tests/integration/ -m integration -v
Requires:  Kind cluster 'collector-orchestrator-test'.
Tests skip automatically if the cluster is not available.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import subprocess
import tempfile
from collections.abc import Generator

import pytest
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from collector_orchestrator.cluster.client import CONFLICT, ClusterClient

KIND_CLUSTER_NAME = "collector-orchestrator-test"
KIND_CONTEXT = f"kind-{KIND_CLUSTER_NAME}"
TEST_NAMESPACE = "collector-orchestrator-inttest"


def _is_kind_running() -> bool:
    kubectl = shutil.which("kubectl")
    if kubectl is None:
        return False
    try:
        result = subprocess.run(
            [kubectl, "cluster-info", "--context", KIND_CONTEXT],
            capture_output=True, text=True, timeout=10,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


KIND_AVAILABLE = _is_kind_running()

skip_no_kind = pytest.mark.skipif(
    not KIND_AVAILABLE,
    reason=f"Kind cluster '{KIND_CLUSTER_NAME}' not running. Run: kind create cluster "
    f"--name {KIND_CLUSTER_NAME}",
)


@pytest.fixture(scope="session")
def kind_kubeconfig() -> Generator[str, None, None]:
    """Export Kind kubeconfig to a temp file. Cleaned up after session."""
    kind_bin = shutil.which("kind")
    if kind_bin is None:
        pytest.skip("kind binary not found in PATH")

    try:
        result = subprocess.run(
            [kind_bin, "get", "kubeconfig", "--name", KIND_CLUSTER_NAME],
            capture_output=True, text=True, timeout=10,
        )
    except (subprocess.TimeoutExpired, OSError):
        pytest.skip("Failed to get Kind kubeconfig")

    if result.returncode != 0:
        pytest.skip(f"Failed to get Kind kubeconfig: {result.stderr.strip()}")

    fd, path = tempfile.mkstemp(suffix=".kubeconfig")
    with os.fdopen(fd, "w") as f:
        f.write(result.stdout)

    yield path

    with contextlib.suppress(OSError):
        os.unlink(path)


@pytest.fixture(scope="session")
def kind_cluster(kind_kubeconfig: str) -> ClusterClient:
    """ClusterClient scoped to a scratch namespace on the Kind cluster."""
    config.load_kube_config(config_file=kind_kubeconfig, context=KIND_CONTEXT)
    try:
        client.CoreV1Api().create_namespace(
            {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": TEST_NAMESPACE}}
        )
    except ApiException as exc:
        if exc.status != CONFLICT:
            raise
    return ClusterClient.from_config(
        TEST_NAMESPACE, kubeconfig=kind_kubeconfig, context=KIND_CONTEXT,
    )
