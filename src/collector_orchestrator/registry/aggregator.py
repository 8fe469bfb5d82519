"""Source aggregator — builds the desired set from the registries.

Walks every tenant, every source of that tenant, and turns each eligible
source into a ``WorkloadSpec`` keyed by its identity. Sources are
skipped (not failed) when their type has no collector definition or
when they have no endpoint or authentication yet.

Any registry error aborts the whole walk: a partial desired set would
make the reconciler delete workloads that are still wanted.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from collector_orchestrator.config import CollectorDefinitions
from collector_orchestrator.credentials.resolver import CredentialResolver
from collector_orchestrator.identity import identity
from collector_orchestrator.models import (
    CollectorDefinition,
    Credential,
    Endpoint,
    RegisteredSource,
    WorkloadSpec,
)
from collector_orchestrator.registry.client import RegistryClient, RegistryError

logger = logging.getLogger(__name__)


class SourceAggregator:
    """Produces ``identity -> WorkloadSpec`` for the current registry state."""

    def __init__(
        self,
        client: RegistryClient,
        credentials: CredentialResolver,
        definitions: CollectorDefinitions,
        default_image_namespace: str | None = None,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._definitions = definitions
        self._default_image_namespace = default_image_namespace

    def collect(self) -> dict[str, WorkloadSpec]:
        """Return the full desired set. Raises RegistryError on any failure."""
        source_types = self._client.source_types_by_id()
        desired: dict[str, WorkloadSpec] = {}
        skipped = 0

        for tenant in self._client.iter_tenants():
            for stub in self._client.iter_resources(
                self._client.topology_api_url("sources"), tenant,
            ):
                try:
                    spec = self._spec_for_source(str(stub["id"]), tenant, source_types)
                except (ValidationError, KeyError, TypeError) as e:
                    raise RegistryError(
                        f"Malformed registry record for tenant {tenant}: {e}"
                    ) from e
                if spec is None:
                    skipped += 1
                    continue
                desired[identity(spec)] = spec

        logger.info(
            "Collected %d desired collector(s), skipped %d source(s)",
            len(desired),
            skipped,
        )
        return desired

    def _spec_for_source(
        self,
        source_id: str,
        tenant: str,
        source_types: dict[str, dict[str, Any]],
    ) -> WorkloadSpec | None:
        record = self._client.get_json(
            self._client.sources_api_url(f"sources/{source_id}"), tenant,
        )
        source = RegisteredSource(tenant=tenant, **_pick(record, "id", "uid", "source_type_id"))

        source_type = source_types.get(source.source_type_id or "")
        if source_type is None:
            logger.debug("Source %s has unknown source type, skipping", source.id)
            return None
        type_name = source_type.get("name")
        definition = self._definitions.get(type_name)
        if definition is None:
            return None

        endpoint_record = self._client.first_resource(
            self._client.sources_api_url(f"sources/{source.id}/endpoints"), tenant,
        )
        if endpoint_record is None:
            logger.debug("Source %s has no endpoint, skipping", source.id)
            return None
        endpoint = Endpoint(**_pick(endpoint_record, "id", "host", "path", "port", "scheme"))

        authentication = self._client.first_resource(
            self._client.sources_api_url(f"endpoints/{endpoint.id}/authentications"), tenant,
        )
        if authentication is None:
            logger.debug("Source %s has no authentication, skipping", source.id)
            return None

        credential = self._credentials.resolve_credential(str(authentication["id"]), tenant)
        return self._build_spec(source, type_name, endpoint, definition, credential)

    def _build_spec(
        self,
        source: RegisteredSource,
        type_name: str,
        endpoint: Endpoint,
        definition: CollectorDefinition,
        credential: Credential,
    ) -> WorkloadSpec:
        return WorkloadSpec(
            endpoint_host=endpoint.host,
            endpoint_path=endpoint.path,
            endpoint_port=endpoint.port,
            endpoint_scheme=endpoint.scheme,
            image=definition.image,
            image_namespace=definition.image_namespace or self._default_image_namespace,
            source_id=source.id,
            source_uid=source.uid,
            source_type=type_name,
            credential=credential,
        )


def _pick(record: dict[str, Any], *keys: str) -> dict[str, Any]:
    return {k: record[k] for k in keys if k in record}
