"""
Module: approval_kernel.models.audit_event
Responsibility: The audit_events table, one row per link of the hash chain.
Architecture position: Kernel > Models.  Depends on db/base.py only.

Invariants enforced:
    - Rows are never updated or deleted once flushed (db/immutability.py).
    - ``seq`` is unique and increasing; SequenceService hands it out.
    - ``hash`` chains to ``prev_hash``; AuditorService computes and checks it.

Failure modes:
    - ImmutabilityViolationError on UPDATE or DELETE through the ORM.

``workflow_id`` is denormalized onto every row so a single workflow's
trail (and its CSV export) is one indexed query.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """What happened to the audited entity."""

    WORKFLOW_LAUNCHED = "WORKFLOW_LAUNCHED"
    STEP_APPROVED = "STEP_APPROVED"
    STEP_REFUSED = "STEP_REFUSED"
    STEP_REACTIVATED = "STEP_REACTIVATED"
    WORKFLOW_APPROVED = "WORKFLOW_APPROVED"
    WORKFLOW_REFUSED = "WORKFLOW_REFUSED"
    WORKFLOW_CANCELLED = "WORKFLOW_CANCELLED"
    WORKFLOW_ARCHIVED = "WORKFLOW_ARCHIVED"


class AuditEvent(Base):
    """One chain link; ``prev_hash`` is None only on the first event."""

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_workflow", "workflow_id", "seq"),
        Index("idx_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # "Workflow", "Step", ...
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    workflow_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    # Validators need not be registered users, so the email is the actor
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
