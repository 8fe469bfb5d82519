"""Core data models for the collector orchestrator.

Defines the schemas for:
- Registry records (sources, endpoints, credentials)
- Collector definitions (which image runs which source type)
- Workload specs (the hashed unit of desired state)
- Observed cluster objects (what is actually running)
- Reconciliation plans and results
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from collector_orchestrator.labels import LABEL_DIGEST, LABEL_GROUPING

# --- Enums ---


class WorkloadState(enum.StrEnum):
    ABSENT = "absent"
    CREATING = "creating"
    RUNNING = "running"
    UPDATING = "updating"
    DELETING = "deleting"


ALLOWED_TRANSITIONS: dict[WorkloadState, frozenset[WorkloadState]] = {
    WorkloadState.ABSENT: frozenset({WorkloadState.CREATING}),
    WorkloadState.CREATING: frozenset({WorkloadState.RUNNING, WorkloadState.ABSENT}),
    WorkloadState.RUNNING: frozenset({WorkloadState.DELETING, WorkloadState.UPDATING}),
    WorkloadState.UPDATING: frozenset({WorkloadState.RUNNING}),
    WorkloadState.DELETING: frozenset({WorkloadState.ABSENT}),
}


# --- Registry records ---


class RegisteredSource(BaseModel):
    """A source as registered in the source registry. Read-only to us."""

    id: str
    uid: str | None = None
    source_type_id: str | None = None
    tenant: str

    @field_validator("id", "uid", "source_type_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class Endpoint(BaseModel):
    """Connection details for a source. Only the first one is used."""

    id: str
    host: str | None = None
    path: str | None = None
    port: str | None = None
    scheme: str | None = None

    @field_validator("id", "port", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class Credential(BaseModel):
    """Secret material for a source endpoint.

    ``password`` is a ``SecretStr`` so the value never shows up in reprs
    or log lines.
    """

    model_config = ConfigDict(frozen=True)

    username: str | None = None
    password: SecretStr | None = None

    def secret_data(self) -> dict[str, str]:
        """Plain values for the credentials object. Handle with care."""
        return {
            "username": self.username or "",
            "password": self.password.get_secret_value() if self.password else "",
        }


class CollectorDefinition(BaseModel):
    """Which collector image runs a given source type."""

    model_config = ConfigDict(frozen=True)

    image: str = Field(..., min_length=1)
    image_namespace: str | None = None
    sources_per_collector: int | None = Field(default=None, ge=1)


# --- Desired state ---


class WorkloadSpec(BaseModel):
    """Everything that determines one desired collector workload.

    Immutable; the identity of a workload is a hash over all of these
    fields, so any change means a new workload.
    """

    model_config = ConfigDict(frozen=True)

    endpoint_host: str | None = None
    endpoint_path: str | None = None
    endpoint_port: str | None = None
    endpoint_scheme: str | None = None
    image: str
    image_namespace: str | None = None
    source_id: str
    source_uid: str | None = None
    source_type: str
    credential: Credential


class Grouping(BaseModel):
    """A batch of same-type sources served by one shared workload.

    ``uid`` is assigned when the grouping is first created and never
    changes, whatever happens to ``members`` (member identities).
    """

    uid: str = Field(..., pattern=r"^[a-z0-9]+$")
    source_type: str
    members: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.members


# --- Observed state ---


class ObservedWorkload(BaseModel):
    """A collector Deployment as listed from the cluster."""

    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    image: str | None = None

    @property
    def identity(self) -> str | None:
        return self.labels.get(LABEL_DIGEST)

    @property
    def grouping_uid(self) -> str | None:
        return self.labels.get(LABEL_GROUPING)


class ObservedConfigMap(BaseModel):
    """A grouping config map as listed from the cluster."""

    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    data: dict[str, str] = Field(default_factory=dict)


class ObservedSecret(BaseModel):
    """A managed secret as listed from the cluster. Carries no data."""

    name: str
    labels: dict[str, str] = Field(default_factory=dict)


# --- Reconciliation ---


class ReconcilePlan(BaseModel):
    """Set difference between desired and observed identities."""

    model_config = ConfigDict(frozen=True)

    to_create: frozenset[str] = frozenset()
    to_delete: frozenset[str] = frozenset()
    unchanged: frozenset[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_delete


class ReconcileResult(BaseModel):
    """What a reconciliation pass actually did."""

    created: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    observed: int = 0
