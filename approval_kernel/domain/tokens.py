"""
Action token value types (``approval_kernel.domain.tokens``).

Token lookups never raise for an unusable token: the outcome is a
``TokenResolution`` whose ``status`` says exactly why, so an email-link
handler can render "already used" or "expired" precisely.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from approval_kernel.domain.workflow import Decision


class TokenStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenContext:
    """What a token is bound to."""

    step_id: UUID
    workflow_id: UUID
    validator_email: str
    decision: Decision
    activation: int


@dataclass(frozen=True)
class TokenResolution:
    """Result of peeking at or resolving a raw token."""

    status: TokenStatus
    context: TokenContext | None = None

    @property
    def ok(self) -> bool:
        return self.status == TokenStatus.OK

    @classmethod
    def failed(cls, status: TokenStatus) -> TokenResolution:
        return cls(status=status)


@dataclass(frozen=True)
class StepTokens:
    """The pair of raw secrets issued to one validator for one step."""

    approve_token: str
    refuse_token: str
