"""ClusterClient — the orchestrator's handle on the Kubernetes API.

Wraps the official ``kubernetes`` Python client. Built once at startup
(kubeconfig file or in-cluster config) and passed to the reader and the
lifecycle manager; there is no lazily created global client.

All calls are scoped to one namespace. ``ApiException`` is translated
into ``ClusterError``, except for 404s on delete, which report
``False`` (the object is already gone).
"""

from __future__ import annotations

from typing import Any

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from collector_orchestrator.models import ObservedConfigMap, ObservedSecret, ObservedWorkload

NOT_FOUND = 404
CONFLICT = 409


class ClusterError(Exception):
    """Raised when a Kubernetes API call fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _api_error(verb: str, kind: str, name: str, exc: ApiException) -> ClusterError:
    return ClusterError(
        f"K8s API error ({exc.status}) on {verb} {kind} {name}: {exc.reason}",
        status=exc.status,
    )


class ClusterClient:
    """Namespaced CRUD for Deployments, Secrets and ConfigMaps."""

    def __init__(self, core_api: Any, apps_api: Any, namespace: str) -> None:
        self._core = core_api
        self._apps = apps_api
        self._namespace = namespace

    @classmethod
    def from_config(
        cls,
        namespace: str,
        kubeconfig: str | None = None,
        context: str | None = None,
        in_cluster: bool = False,
    ) -> ClusterClient:
        """Build a client from in-cluster config or a kubeconfig file."""
        if in_cluster:
            config.load_incluster_config()
        else:
            kwargs: dict[str, Any] = {}
            if kubeconfig:
                kwargs["config_file"] = kubeconfig
            if context:
                kwargs["context"] = context
            config.load_kube_config(**kwargs)
        api_client = client.ApiClient()
        return cls(client.CoreV1Api(api_client), client.AppsV1Api(api_client), namespace)

    @property
    def namespace(self) -> str:
        return self._namespace

    # --- Deployments ---

    def list_deployments(self, label_selector: str) -> list[ObservedWorkload]:
        try:
            result = self._apps.list_namespaced_deployment(
                namespace=self._namespace, label_selector=label_selector,
            )
        except ApiException as exc:
            raise _api_error("list", "deployments", label_selector, exc) from exc
        return [_to_workload(item) for item in result.items]

    def create_deployment(self, body: dict[str, Any]) -> None:
        name = body["metadata"]["name"]
        try:
            self._apps.create_namespaced_deployment(namespace=self._namespace, body=body)
        except ApiException as exc:
            raise _api_error("create", "deployment", name, exc) from exc

    def patch_deployment(self, name: str, patch: dict[str, Any]) -> None:
        try:
            self._apps.patch_namespaced_deployment(
                name=name, namespace=self._namespace, body=patch,
            )
        except ApiException as exc:
            raise _api_error("patch", "deployment", name, exc) from exc

    def delete_deployment(self, name: str) -> bool:
        try:
            self._apps.delete_namespaced_deployment(
                name=name,
                namespace=self._namespace,
                propagation_policy="Background",
            )
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise _api_error("delete", "deployment", name, exc) from exc
        return True

    # --- Secrets ---

    def list_secrets(self, label_selector: str) -> list[ObservedSecret]:
        """Names and labels of matching secrets; the data is never read."""
        try:
            result = self._core.list_namespaced_secret(
                namespace=self._namespace, label_selector=label_selector,
            )
        except ApiException as exc:
            raise _api_error("list", "secrets", label_selector, exc) from exc
        return [
            ObservedSecret(
                name=item.metadata.name,
                labels=dict(item.metadata.labels or {}),
            )
            for item in result.items
        ]

    def apply_secret(
        self, name: str, string_data: dict[str, str], labels: dict[str, str],
    ) -> None:
        """Create the secret, or replace it if one of that name exists."""
        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {"name": name, "labels": dict(labels)},
            "stringData": dict(string_data),
        }
        try:
            self._core.create_namespaced_secret(namespace=self._namespace, body=body)
            return
        except ApiException as exc:
            if exc.status != CONFLICT:
                raise _api_error("create", "secret", name, exc) from exc
        try:
            self._core.replace_namespaced_secret(
                name=name, namespace=self._namespace, body=body,
            )
        except ApiException as exc:
            raise _api_error("replace", "secret", name, exc) from exc

    def delete_secret(self, name: str) -> bool:
        try:
            self._core.delete_namespaced_secret(name=name, namespace=self._namespace)
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise _api_error("delete", "secret", name, exc) from exc
        return True

    # --- ConfigMaps ---

    def list_config_maps(self, label_selector: str) -> list[ObservedConfigMap]:
        try:
            result = self._core.list_namespaced_config_map(
                namespace=self._namespace, label_selector=label_selector,
            )
        except ApiException as exc:
            raise _api_error("list", "configmaps", label_selector, exc) from exc
        return [
            ObservedConfigMap(
                name=item.metadata.name,
                labels=dict(item.metadata.labels or {}),
                data=dict(item.data or {}),
            )
            for item in result.items
        ]

    def apply_config_map(
        self, name: str, data: dict[str, str], labels: dict[str, str],
    ) -> None:
        """Create the config map, or replace it if one of that name exists."""
        body = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": name, "labels": dict(labels)},
            "data": dict(data),
        }
        try:
            self._core.create_namespaced_config_map(namespace=self._namespace, body=body)
            return
        except ApiException as exc:
            if exc.status != CONFLICT:
                raise _api_error("create", "configmap", name, exc) from exc
        try:
            self._core.replace_namespaced_config_map(
                name=name, namespace=self._namespace, body=body,
            )
        except ApiException as exc:
            raise _api_error("replace", "configmap", name, exc) from exc

    def delete_config_map(self, name: str) -> bool:
        try:
            self._core.delete_namespaced_config_map(name=name, namespace=self._namespace)
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise _api_error("delete", "configmap", name, exc) from exc
        return True


def _to_workload(item: Any) -> ObservedWorkload:
    """Convert a V1Deployment into an ObservedWorkload."""
    containers = []
    if item.spec and item.spec.template and item.spec.template.spec:
        containers = item.spec.template.spec.containers or []
    return ObservedWorkload(
        name=item.metadata.name,
        labels=dict(item.metadata.labels or {}),
        image=containers[0].image if containers else None,
    )
