"""Credential resolver — the one privileged lookup in the orchestrator.

The sources registry redacts passwords by default. The internal
authentications endpoint reveals them when asked with
``expose_encrypted_attribute[]=password``. That elevated call lives here
and nowhere else, so the trust boundary can be audited on its own.

Resolved values are wrapped in ``Credential`` (``SecretStr`` password) and
never logged.
"""

from __future__ import annotations

import logging
import urllib.parse

from pydantic import ValidationError

from collector_orchestrator.models import Credential
from collector_orchestrator.registry.client import RegistryClient, RegistryError

logger = logging.getLogger(__name__)

EXPOSED_ATTRIBUTE = "password"


class CredentialResolver:
    """Resolves the secret behind an authentication record.

    Stateless — every call goes to the registry.
    """

    def __init__(self, client: RegistryClient) -> None:
        self._client = client

    def authentication_url(self, auth_id: str) -> str:
        query = urllib.parse.urlencode({"expose_encrypted_attribute[]": EXPOSED_ATTRIBUTE})
        return f"{self._client.sources_internal_url(f'authentications/{auth_id}')}?{query}"

    def resolve_credential(self, auth_id: str, tenant: str) -> Credential:
        """Fetch the username and decrypted password for *auth_id*.

        Raises:
            RegistryError: If the lookup fails or the record is malformed.
        """
        record = self._client.get_json(self.authentication_url(auth_id), tenant)
        if not isinstance(record, dict):
            raise RegistryError(f"Authentication {auth_id} is not an object")

        try:
            credential = Credential(
                username=record.get("username"),
                password=record.get("password"),
            )
        except ValidationError:
            # The validation message echoes the input, secret included
            raise RegistryError(f"Authentication {auth_id} has malformed fields") from None

        logger.debug("Resolved credential for authentication %s", auth_id)
        return credential
