"""Configuration loading for the collector orchestrator.

Two kinds of configuration, both loaded once at startup and read-only
afterwards:

- ``CollectorDefinitions``: a YAML mapping of source-type name to the
  collector image that serves it. A type that is not listed is simply
  not managed.
- ``OrchestratorSettings``: registry URLs, namespace, polling interval and
  the like, taken from ``COLLECTOR_ORCHESTRATOR_*`` environment variables
  and overridden by CLI flags.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from pydantic import ValidationError

from collector_orchestrator.models import CollectorDefinition

ENV_PREFIX = "COLLECTOR_ORCHESTRATOR_"
DEFAULT_DEFINITIONS_FILE = "config/collector_definitions.yaml"
# Variables copied from our own environment into grouped collectors
DEFAULT_PASSTHROUGH_ENV = (
    "CLOUD_WATCH_LOG_GROUP,QUEUE_HOST,QUEUE_PORT,"
    "RECEPTOR_CONTROLLER_HOST,RECEPTOR_CONTROLLER_PORT,RECEPTOR_CONTROLLER_SCHEME"
)


class ConfigError(Exception):
    """Raised when startup configuration is missing or invalid."""


class CollectorDefinitions(Mapping[str, CollectorDefinition]):
    """Immutable table of source-type name -> collector definition."""

    def __init__(self, definitions: Mapping[str, CollectorDefinition]) -> None:
        self._definitions = MappingProxyType(dict(definitions))

    def __getitem__(self, source_type: str) -> CollectorDefinition:
        return self._definitions[source_type]

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def restricted_to(self, enabled_types: Iterable[str]) -> CollectorDefinitions:
        """Return a copy holding only the *enabled_types*."""
        enabled = set(enabled_types)
        return CollectorDefinitions(
            {name: d for name, d in self._definitions.items() if name in enabled}
        )


def load_collector_definitions(
    path: str | Path,
    enabled_types: Iterable[str] | None = None,
) -> CollectorDefinitions:
    """Load and validate collector definitions from a YAML file.

    The file is a mapping of source-type name to ``{image,
    image_namespace, sources_per_collector}``. An empty file yields an
    empty table (nothing is managed).

    Raises:
        ConfigError: If the file cannot be read, parsed, or validated.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Collector definitions file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Expected a YAML mapping in {path}, got {type(raw).__name__}"
        )

    definitions: dict[str, CollectorDefinition] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"Definition for '{name}' must be a mapping: {path}")
        try:
            definitions[str(name)] = CollectorDefinition(**entry)
        except ValidationError as e:
            raise ConfigError(f"Invalid definition for '{name}' in {path}: {e}") from e

    table = CollectorDefinitions(definitions)
    if enabled_types is not None:
        table = table.restricted_to(enabled_types)
    return table


def parse_source_types(value: str | None) -> list[str] | None:
    """Split a comma-separated allowlist; ``None``/blank means no filter."""
    if not value or not value.strip():
        return None
    return [t.strip() for t in value.split(",") if t.strip()]


@dataclass(frozen=True)
class OrchestratorSettings:
    """Process-wide settings.

    All fields can be set via environment variables prefixed with
    ``COLLECTOR_ORCHESTRATOR_`` (e.g. ``COLLECTOR_ORCHESTRATOR_INTERVAL=30``).
    """

    sources_url: str | None = None
    topology_url: str | None = None
    namespace: str = "default"
    collector_definitions_file: str = DEFAULT_DEFINITIONS_FILE
    source_types: str | None = None
    default_image_namespace: str | None = None
    image_registry: str | None = None
    path_prefix: str = "api"
    app_name: str = "topological-inventory"
    ingress_api: str | None = None
    interval: float = 10.0
    metrics_port: int = 9394
    sources_per_collector: int | None = None
    http_timeout: float = 30.0
    passthrough_env: str = DEFAULT_PASSTHROUGH_ENV

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OrchestratorSettings:
        """Create settings from environment variables."""
        environ = os.environ if environ is None else environ
        kwargs: dict[str, Any] = {}
        for fld in fields(cls):
            val = environ.get(f"{ENV_PREFIX}{fld.name.upper()}")
            if val is None or val == "":
                continue
            try:
                if fld.type in ("int", "int | None"):
                    kwargs[fld.name] = int(val)
                elif fld.type == "float":
                    kwargs[fld.name] = float(val)
                else:
                    kwargs[fld.name] = val
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for {ENV_PREFIX}{fld.name.upper()}: {val!r}"
                ) from e
        return cls(**kwargs)

    def with_overrides(self, **overrides: Any) -> OrchestratorSettings:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def collector_env(self, environ: Mapping[str, str] | None = None) -> dict[str, str]:
        """Values of the ``passthrough_env`` variables that are set in *environ*."""
        environ = os.environ if environ is None else environ
        names = [n.strip() for n in self.passthrough_env.split(",") if n.strip()]
        return {name: environ[name] for name in names if environ.get(name)}

    @property
    def grouped(self) -> bool:
        return self.sources_per_collector is not None

    def validate(self) -> OrchestratorSettings:
        """Raise ConfigError for settings the process cannot start without."""
        missing = [
            name for name in ("sources_url", "topology_url") if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(f"Missing required setting(s): {', '.join(missing)}")
        if self.interval <= 0:
            raise ConfigError(f"Polling interval must be positive, got {self.interval}")
        if self.sources_per_collector is not None and self.sources_per_collector < 1:
            raise ConfigError(
                f"sources_per_collector must be at least 1, got {self.sources_per_collector}"
            )
        return self
