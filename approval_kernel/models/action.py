"""
Module: approval_kernel.models.action
Responsibility: ORM persistence for validator decisions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one decision per (step, actor email, activation):
      UNIQUE(step_id, actor_email, activation).
    - Decisions are append-only; UPDATE and DELETE are rejected by the
      listeners in db/immutability.py.
    - Comments are non-empty (DB check constraint backs the service check).

Failure modes:
    - IntegrityError on a duplicate decision (mapped to
      DuplicateDecisionError by the orchestrator).
    - ImmutabilityViolationError on UPDATE/DELETE.

Audit relevance:
    These rows are the source of truth for quorum evaluation.  Rows of
    earlier activations stay in place as decision history.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString


class WorkflowActionModel(Base):
    """One validator's decision on one activation of a step."""

    __tablename__ = "workflow_actions"

    __table_args__ = (
        UniqueConstraint(
            "step_id", "actor_email", "activation",
            name="uq_workflow_actions_one_per_activation",
        ),
        CheckConstraint(
            "decision IN ('APPROVE', 'REFUSE')",
            name="ck_workflow_actions_valid_decision",
        ),
        CheckConstraint(
            "length(comment) > 0",
            name="ck_workflow_actions_comment_required",
        ),
        Index("ix_workflow_actions_step_activation", "step_id", "activation"),
        Index("ix_workflow_actions_workflow", "workflow_id", "created_at"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("step_instances.id"), nullable=False,
    )
    activation: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_email: Mapped[str] = mapped_column(String(320), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowAction {self.decision} by {self.actor_email}>"
