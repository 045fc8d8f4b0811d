"""
Runtime settings schema (``approval_config.schema``).

Frozen value object produced by the loader.  Nothing in the kernel reads
configuration directly; the outer shell passes the relevant values in.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CircuitSettings:
    """Resolved runtime settings for one process."""

    database_url: str
    token_ttl_hours: int = 48
    reminder_lead_hours: int = 24
    app_url: str = "http://localhost:8080"
    api_url: str = "http://localhost:3000"
    default_locale: str = "fr"
    pool_size: int = 20
    max_overflow: int = 10
    checksum: str = ""

    def action_url(self, raw_token: str) -> str:
        """Link a validator follows to decide by email."""
        return f"{self.api_url.rstrip('/')}/api/actions/{raw_token}"

    def workflow_url(self, workflow_id: object) -> str:
        return f"{self.app_url.rstrip('/')}/workflows/{workflow_id}"
