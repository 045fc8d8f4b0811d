"""
SHA-256 digests for the audit chain and for action tokens.

Payloads are hashed in canonical JSON form (sorted keys, no whitespace)
so a payload read back from the database hashes to the same value it had
when it was written.
"""

import hashlib
import json
from datetime import date
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _canonical_default(value: Any) -> Any:
    # datetime is a date subclass
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Cannot canonicalize {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), default=_canonical_default,
    )


def hash_payload(payload: dict) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash of one audit event.

    Covers the entity, the action, the payload digest and the previous
    event's hash (``GENESIS`` for the first event), so editing or removing
    any earlier event changes every hash after it.
    """
    return _sha256(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS_MARKER))
    )


def hash_token(raw_token: str) -> str:
    """Digest stored for an action token; the raw secret only travels in the link."""
    return _sha256(raw_token)
