"""
Module: approval_kernel.models.token
Responsibility: ORM persistence for single-use email decision tokens.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Only the SHA-256 digest of a token is stored (``token_hash``, unique).
    - A token is bound to one (step, activation, validator email, decision).
    - ``used_at`` goes from NULL to a timestamp exactly once, through the
      conditional UPDATE in ActionTokenService.resolve().

Failure modes:
    - IntegrityError on a digest collision (practically impossible).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString


class ActionTokenModel(Base):
    """A hashed, expiring, single-use decision credential."""

    __tablename__ = "action_tokens"

    __table_args__ = (
        CheckConstraint(
            "decision IN ('APPROVE', 'REFUSE')",
            name="ck_action_tokens_valid_decision",
        ),
        Index("ix_action_tokens_step", "step_id", "used_at"),
    )

    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("step_instances.id"), nullable=False,
    )
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    activation: Mapped[int] = mapped_column(Integer, nullable=False)
    validator_email: Mapped[str] = mapped_column(String(320), nullable=False)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<ActionToken {self.decision} for {self.validator_email}>"
