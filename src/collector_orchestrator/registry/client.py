"""HTTP client for the source and inventory registry APIs.

Both registries are multi-tenant REST/JSON services. Every request names
the tenant in an ``x-rh-identity`` header (base64-encoded JSON) and list
endpoints page with ``{"data": [...], "links": {"next": ...}}``.

Uses stdlib ``urllib.request`` — no extra dependencies required.
"""

from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger(__name__)

ORCHESTRATOR_TENANT = "system_orchestrator"
SOURCES_API_VERSION = "v1.0"
TOPOLOGY_API_VERSION = "v0.1"
SOURCES_INTERNAL_VERSION = "v1.0"
TOPOLOGY_INTERNAL_VERSION = "v0.0"
IDENTITY_HEADER = "x-rh-identity"


class RegistryError(Exception):
    """Raised when a registry API cannot be reached or returns garbage."""


def identity_header(tenant: str) -> str:
    """Encode *tenant* the way the registries expect it."""
    payload = json.dumps({"identity": {"account_number": tenant}})
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def join_url(base: str, *parts: str) -> str:
    """Join URL segments with single slashes, skipping empty parts."""
    segments = [base.rstrip("/")]
    segments.extend(p.strip("/") for p in parts if p and p.strip("/"))
    return "/".join(segments)


class RegistryClient:
    """Read-only client for the two registry services.

    Example::

        client = RegistryClient(
            sources_url="http://sources-api:8080",
            topology_url="http://topology-api:8080",
        )
        for tenant in client.iter_tenants():
            ...
    """

    def __init__(
        self,
        sources_url: str,
        topology_url: str,
        path_prefix: str = "api",
        app_name: str = "topological-inventory",
        timeout: float = 30.0,
    ) -> None:
        self._sources_url = sources_url
        self._topology_url = topology_url
        self._path_prefix = path_prefix
        self._app_name = app_name
        self._timeout = timeout

    # --- URL builders ---

    def sources_api_url(self, path: str) -> str:
        return join_url(
            self._sources_url, self._path_prefix, self._app_name, SOURCES_API_VERSION, path,
        )

    def sources_internal_url(self, path: str) -> str:
        return join_url(self._sources_url, "internal", SOURCES_INTERNAL_VERSION, path)

    def topology_api_url(self, path: str) -> str:
        return join_url(
            self._topology_url, self._path_prefix, self._app_name, TOPOLOGY_API_VERSION, path,
        )

    def topology_internal_url(self, path: str) -> str:
        return join_url(self._topology_url, "internal", TOPOLOGY_INTERNAL_VERSION, path)

    # --- Requests ---

    def get_json(self, url: str, tenant: str = ORCHESTRATOR_TENANT) -> Any:
        """GET *url* on behalf of *tenant* and decode the JSON body."""
        req = urllib.request.Request(
            url,
            headers={
                IDENTITY_HEADER: identity_header(tenant),
                "Accept": "application/json",
            },
            method="GET",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            raise RegistryError(f"GET {url} failed with HTTP {e.code}: {e.reason}") from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise RegistryError(f"GET {url} failed: {e}") from e

        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise RegistryError(f"GET {url} returned invalid JSON: {e}") from e

    def iter_resources(
        self, url: str, tenant: str = ORCHESTRATOR_TENANT,
    ) -> Iterator[dict[str, Any]]:
        """Yield every item of a list endpoint, following ``links.next``."""
        next_url: str | None = url
        while next_url:
            response = self.get_json(next_url, tenant)
            if isinstance(response, list):
                yield from response
                return
            if not isinstance(response, dict):
                raise RegistryError(
                    f"GET {next_url} returned {type(response).__name__}, expected a page"
                )

            data = response.get("data") or []
            if not isinstance(data, list):
                raise RegistryError(f"GET {next_url} returned a page without a data list")
            yield from data

            link = (response.get("links") or {}).get("next")
            next_url = urllib.parse.urljoin(next_url, link) if link else None

    def first_resource(
        self, url: str, tenant: str = ORCHESTRATOR_TENANT,
    ) -> dict[str, Any] | None:
        """Return the first item of a list endpoint's first page, or None.

        Raises:
            RegistryError: If the response is not a list or a page of
                objects.
        """
        response = self.get_json(url, tenant)
        if isinstance(response, list):
            items = response
        elif isinstance(response, dict):
            items = response.get("data") or []
        elif response is None:
            return None
        else:
            raise RegistryError(
                f"GET {url} returned {type(response).__name__}, expected a page"
            )
        if not isinstance(items, list):
            raise RegistryError(f"GET {url} returned a page without a data list")
        if not items:
            return None
        if not isinstance(items[0], dict):
            raise RegistryError(
                f"GET {url} returned {type(items[0]).__name__} items, expected objects"
            )
        return items[0]

    # --- Registry walks ---

    def iter_tenants(self) -> Iterator[str]:
        """Yield the external tenant name of every tenant."""
        for tenant in self.iter_resources(self.topology_internal_url("tenants")):
            external = tenant.get("external_tenant")
            if external:
                yield str(external)

    def source_types_by_id(self) -> dict[str, dict[str, Any]]:
        """Map source-type ID (as a string) to its record."""
        return {
            str(st["id"]): st
            for st in self.iter_resources(self.sources_api_url("source_types"))
        }
