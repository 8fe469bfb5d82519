"""Content-addressed identity for collector workloads.

The identity is a SHA-256 over a canonical JSON rendering of every
``WorkloadSpec`` field, credential values included. Two specs with equal
fields always hash the same; any change (an endpoint move, a rotated
password) yields a new identity, which the reconciler turns into
delete-old/create-new.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from collector_orchestrator.models import WorkloadSpec

# Label values are capped at 63 characters
IDENTITY_LENGTH = 40


def canonical_form(spec: WorkloadSpec) -> dict[str, Any]:
    """Plain dict of every spec field with secrets revealed."""
    data = spec.model_dump(exclude={"credential"})
    credential = spec.credential
    # None and "" hash differently, like every other field
    data["credential"] = {
        "username": credential.username,
        "password": (
            credential.password.get_secret_value() if credential.password is not None else None
        ),
    }
    return data


def identity(spec: WorkloadSpec) -> str:
    """Return the stable identity of *spec*."""
    payload = json.dumps(
        canonical_form(spec),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()[:IDENTITY_LENGTH]
