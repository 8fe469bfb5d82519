"""Names, labels and manifest bodies for managed cluster objects.

Every name is derived deterministically, so the delete path can find the
credentials object from the workload name alone:

- single-source workload:  ``collector-source-<source_id>-<identity[:8]>``
- grouped workload:        ``collector-<source_type>-<grouping_uid>``
- grouping config map:     ``<workload>-config``
- credentials secret:      ``<workload>-secrets``
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import yaml

from collector_orchestrator.labels import (
    LABEL_COLLECTOR,
    LABEL_DIGEST,
    LABEL_GROUPING,
    LABEL_SOURCE_TYPE,
)
from collector_orchestrator.models import Grouping, ObservedConfigMap, WorkloadSpec

CONTAINER_NAME = "collector"
SECRET_SUFFIX = "-secrets"
CONFIG_SUFFIX = "-config"
SOURCES_KEY = "sources.yaml"
CREDENTIALS_KEY = "credentials.yaml"
IDENTITY_NAME_CHARS = 8

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")


def dns_safe(value: str) -> str:
    """Lower-case *value* and replace anything a DNS label forbids."""
    return _INVALID_NAME_CHARS.sub("-", value.lower()).strip("-") or "unknown"


# --- Naming ---


def workload_name(spec: WorkloadSpec, identity: str) -> str:
    return f"collector-source-{dns_safe(spec.source_id)}-{identity[:IDENTITY_NAME_CHARS]}"


def grouped_workload_name(grouping: Grouping) -> str:
    return f"collector-{dns_safe(grouping.source_type)}-{grouping.uid}"


def secret_name(workload: str) -> str:
    return f"{workload}{SECRET_SUFFIX}"


def config_map_name(workload: str) -> str:
    return f"{workload}{CONFIG_SUFFIX}"


def image_reference(image: str, namespace: str | None = None, registry: str | None = None) -> str:
    """Compose ``[registry/][namespace/]image``."""
    parts = [p.strip("/") for p in (registry, namespace) if p]
    return "/".join([*parts, image])


# --- Labels ---


def workload_labels(identity: str, source_type: str) -> dict[str, str]:
    return {
        LABEL_COLLECTOR: "true",
        LABEL_DIGEST: identity,
        LABEL_SOURCE_TYPE: dns_safe(source_type),
    }


def grouping_labels(grouping: Grouping) -> dict[str, str]:
    return {
        LABEL_COLLECTOR: "true",
        LABEL_GROUPING: grouping.uid,
        LABEL_SOURCE_TYPE: dns_safe(grouping.source_type),
    }


# --- Bodies ---


def _secret_env(name: str, secret: str, key: str) -> dict[str, Any]:
    return {"name": name, "valueFrom": {"secretKeyRef": {"name": secret, "key": key}}}


def collector_environment(
    spec: WorkloadSpec, secret: str, ingress_api: str | None = None,
) -> list[dict[str, Any]]:
    """Container env for a single-source collector.

    Endpoint fields are literal values; credentials are only ever
    references into the paired secret.
    """
    return [
        _secret_env("AUTH_PASSWORD", secret, "password"),
        _secret_env("AUTH_USERNAME", secret, "username"),
        {"name": "ENDPOINT_HOST", "value": spec.endpoint_host or ""},
        {"name": "ENDPOINT_PATH", "value": spec.endpoint_path or ""},
        {"name": "ENDPOINT_PORT", "value": spec.endpoint_port or ""},
        {"name": "ENDPOINT_SCHEME", "value": spec.endpoint_scheme or ""},
        {"name": "INGRESS_API", "value": ingress_api or ""},
        {"name": "SOURCE_UID", "value": spec.source_uid or ""},
    ]


def _deployment(
    name: str,
    labels: dict[str, str],
    image: str,
    env: list[dict[str, Any]],
    volumes: list[dict[str, Any]] | None = None,
    volume_mounts: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    container: dict[str, Any] = {"name": CONTAINER_NAME, "image": image, "env": env}
    if volume_mounts:
        container["volumeMounts"] = volume_mounts
    pod_spec: dict[str, Any] = {"containers": [container]}
    if volumes:
        pod_spec["volumes"] = volumes
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "labels": dict(labels)},
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name, **labels}},
                "spec": pod_spec,
            },
        },
    }


def build_deployment(
    spec: WorkloadSpec,
    identity: str,
    image_registry: str | None = None,
    ingress_api: str | None = None,
) -> dict[str, Any]:
    """Deployment manifest for one source, labeled with its identity."""
    name = workload_name(spec, identity)
    return _deployment(
        name=name,
        labels=workload_labels(identity, spec.source_type),
        image=image_reference(spec.image, spec.image_namespace, image_registry),
        env=collector_environment(spec, secret_name(name), ingress_api),
    )


def build_grouped_deployment(
    grouping: Grouping,
    image: str,
    ingress_api: str | None = None,
    extra_env: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Deployment manifest for a grouping, mounting its config and secret.

    *extra_env* is passed through to the container as literal values.
    """
    name = grouped_workload_name(grouping)
    type_dir = f"/opt/{dns_safe(grouping.source_type)}-collector"
    return _deployment(
        name=name,
        labels=grouping_labels(grouping),
        image=image,
        env=[
            {"name": "CONFIG", "value": "custom"},
            {"name": "INGRESS_API", "value": ingress_api or ""},
            {"name": "SOURCE_TYPE", "value": grouping.source_type},
            *({"name": k, "value": v} for k, v in sorted((extra_env or {}).items())),
        ],
        volumes=[
            {"name": "sources-config", "configMap": {"name": config_map_name(name)}},
            {"name": "sources-secrets", "secret": {"secretName": secret_name(name)}},
        ],
        volume_mounts=[
            {"name": "sources-config", "mountPath": f"{type_dir}/config"},
            {"name": "sources-secrets", "mountPath": f"{type_dir}/secret"},
        ],
    )


def build_image_patch(image: str, container: str = CONTAINER_NAME) -> dict[str, Any]:
    """Strategic-merge patch that only touches the container image."""
    return {
        "spec": {
            "template": {
                "spec": {
                    "containers": [{"name": container, "image": image}]
                }
            }
        }
    }


def build_label_patch(labels: Mapping[str, str]) -> dict[str, Any]:
    """Merge patch that restores the given labels on a workload."""
    return {"metadata": {"labels": dict(labels)}}


# --- Grouping data ---


def grouping_config_data(grouping: Grouping, specs: dict[str, WorkloadSpec]) -> dict[str, str]:
    """Config map payload listing every member source (no secrets)."""
    sources = []
    for member in grouping.members:
        spec = specs[member]
        sources.append({
            "identity": member,
            "source_id": spec.source_id,
            "source_uid": spec.source_uid,
            "endpoint": {
                "host": spec.endpoint_host,
                "path": spec.endpoint_path,
                "port": spec.endpoint_port,
                "scheme": spec.endpoint_scheme,
            },
        })
    document = {"source_type": grouping.source_type, "sources": sources}
    return {SOURCES_KEY: yaml.safe_dump(document, default_flow_style=False, sort_keys=False)}


def grouping_secret_data(grouping: Grouping, specs: dict[str, WorkloadSpec]) -> dict[str, str]:
    """Secret payload with the credentials of every member, keyed by source ID."""
    credentials = {
        specs[member].source_id: specs[member].credential.secret_data()
        for member in grouping.members
    }
    return {CREDENTIALS_KEY: yaml.safe_dump(credentials, default_flow_style=False)}


def grouping_from_config_map(config_map: ObservedConfigMap) -> Grouping | None:
    """Rebuild a Grouping from its config map, or None if it is unreadable."""
    uid = config_map.labels.get(LABEL_GROUPING)
    if not uid:
        return None
    try:
        document = yaml.safe_load(config_map.data.get(SOURCES_KEY) or "") or {}
    except yaml.YAMLError:
        return None
    if not isinstance(document, dict):
        return None
    sources = document.get("sources") or []
    members = [
        str(s["identity"]) for s in sources if isinstance(s, dict) and s.get("identity")
    ]
    source_type = document.get("source_type") or config_map.labels.get(LABEL_SOURCE_TYPE, "")
    return Grouping(uid=uid, source_type=str(source_type), members=members)
