"""Utility modules for the approval kernel."""

from approval_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
    hash_token,
)

__all__ = [
    "canonicalize_json",
    "hash_audit_event",
    "hash_payload",
    "hash_token",
]
