"""Shared fixtures: an in-memory cluster and workload spec factories."""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any

import pytest

from collector_orchestrator.cluster.client import ClusterError
from collector_orchestrator.models import (
    Credential,
    ObservedConfigMap,
    ObservedSecret,
    ObservedWorkload,
    WorkloadSpec,
)


def make_spec(
    source_id: str = "1",
    image: str = "collector-a",
    source_type: str = "openshift",
    username: str = "admin",
    password: str = "s3cret",
    **overrides: Any,
) -> WorkloadSpec:
    fields: dict[str, Any] = {
        "endpoint_host": f"host-{source_id}.example.com",
        "endpoint_path": "/api",
        "endpoint_port": "443",
        "endpoint_scheme": "https",
        "image": image,
        "image_namespace": "buildfactory",
        "source_id": source_id,
        "source_uid": f"uid-{source_id}",
        "source_type": source_type,
        "credential": Credential(username=username, password=password),
    }
    fields.update(overrides)
    return WorkloadSpec(**fields)


def _matches(labels: dict[str, str], selector: str) -> bool:
    for term in filter(None, (t.strip() for t in selector.split(","))):
        if "=" in term:
            key, value = term.split("=", 1)
            if labels.get(key) != value:
                return False
        elif term not in labels:
            return False
    return True


class FakeCluster:
    """Namespace-sized stand-in for ClusterClient.

    Set ``fail`` to a ``(verb, name) -> bool`` callable to inject
    ClusterErrors. Every mutating call is appended to ``calls``.
    """

    def __init__(self) -> None:
        self.namespace = "test"
        self.deployments: dict[str, dict[str, Any]] = {}
        self.secrets: dict[str, dict[str, Any]] = {}
        self.config_maps: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail: Callable[[str, str], bool] = lambda verb, name: False

    def _record(self, verb: str, name: str) -> None:
        if self.fail(verb, name):
            raise ClusterError(f"injected failure on {verb} {name}", status=500)
        self.calls.append((verb, name))

    # --- Deployments ---

    def list_deployments(self, label_selector: str) -> list[ObservedWorkload]:
        if self.fail("list_deployments", label_selector):
            raise ClusterError("injected list failure", status=500)
        result = []
        for name, body in sorted(self.deployments.items()):
            labels = body["metadata"].get("labels", {})
            if _matches(labels, label_selector):
                containers = body["spec"]["template"]["spec"]["containers"]
                result.append(ObservedWorkload(
                    name=name, labels=dict(labels), image=containers[0]["image"],
                ))
        return result

    def create_deployment(self, body: dict[str, Any]) -> None:
        name = body["metadata"]["name"]
        self._record("create_deployment", name)
        if name in self.deployments:
            raise ClusterError(f"deployment {name} exists", status=409)
        self.deployments[name] = copy.deepcopy(body)

    def patch_deployment(self, name: str, patch: dict[str, Any]) -> None:
        self._record("patch_deployment", name)
        if name not in self.deployments:
            raise ClusterError(f"deployment {name} not found", status=404)
        body = self.deployments[name]
        body["metadata"].setdefault("labels", {}).update(
            patch.get("metadata", {}).get("labels", {})
        )
        containers = body["spec"]["template"]["spec"]["containers"]
        changes = patch.get("spec", {}).get("template", {}).get("spec", {}).get("containers", [])
        for change in changes:
            for container in containers:
                if container["name"] == change["name"]:
                    container.update(change)

    def delete_deployment(self, name: str) -> bool:
        self._record("delete_deployment", name)
        return self.deployments.pop(name, None) is not None

    # --- Secrets ---

    def list_secrets(self, label_selector: str) -> list[ObservedSecret]:
        if self.fail("list_secrets", label_selector):
            raise ClusterError("injected list failure", status=500)
        return [
            ObservedSecret(name=name, labels=dict(secret["labels"]))
            for name, secret in sorted(self.secrets.items())
            if _matches(secret["labels"], label_selector)
        ]

    def apply_secret(self, name: str, string_data: dict[str, str], labels: dict[str, str]) -> None:
        self._record("apply_secret", name)
        self.secrets[name] = {"labels": dict(labels), "data": dict(string_data)}

    def delete_secret(self, name: str) -> bool:
        self._record("delete_secret", name)
        return self.secrets.pop(name, None) is not None

    # --- ConfigMaps ---

    def list_config_maps(self, label_selector: str) -> list[ObservedConfigMap]:
        if self.fail("list_config_maps", label_selector):
            raise ClusterError("injected list failure", status=500)
        return [
            ObservedConfigMap(name=name, labels=dict(cm["labels"]), data=dict(cm["data"]))
            for name, cm in sorted(self.config_maps.items())
            if _matches(cm["labels"], label_selector)
        ]

    def apply_config_map(self, name: str, data: dict[str, str], labels: dict[str, str]) -> None:
        self._record("apply_config_map", name)
        self.config_maps[name] = {"labels": dict(labels), "data": dict(data)}

    def delete_config_map(self, name: str) -> bool:
        self._record("delete_config_map", name)
        return self.config_maps.pop(name, None) is not None


@pytest.fixture()
def cluster() -> FakeCluster:
    return FakeCluster()
