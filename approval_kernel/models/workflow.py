"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for workflow instances, their phases,
    their steps and their linked documents.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value types only.

Invariants enforced:
    - Status columns only hold values of the matching domain enum
      (DB check constraints).  Legality of a change is decided by
      domain/transitions.py, never here.
    - Phase order is unique per workflow; step order is unique per phase.
    - ``structure`` holds an independent JSON snapshot of the circuit
      definition taken at launch.
    - ``StepInstanceModel.activation`` starts at 1 and only grows; every
      reactivation of a step opens a new activation whose action set is
      empty.

Failure modes:
    - IntegrityError on duplicate phase/step order or unknown initiator.

Audit relevance:
    Status changes on these rows are always accompanied by an AuditEvent
    written by the orchestrator in the same transaction.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.domain.workflow import (
    ActivatedStep,
    QuorumRule,
    StepExecution,
    StepStatus,
)

_STEP_STATUSES = "'PENDING', 'IN_PROGRESS', 'APPROVED', 'REFUSED'"


class WorkflowInstanceModel(TrackedBase):
    """One launched approval circuit."""

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'IN_PROGRESS', 'APPROVED', 'REFUSED', "
            "'CANCELLED', 'ARCHIVED')",
            name="ck_workflow_instances_valid_status",
        ),
        CheckConstraint(
            "current_phase_index >= 0",
            name="ck_workflow_instances_phase_index",
        ),
        Index("ix_workflow_instances_initiator", "initiator_id", "created_at"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    current_phase_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    structure: Mapped[dict] = mapped_column(JSON, nullable=False)
    initiator_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    template_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    phases: Mapped[list[PhaseInstanceModel]] = relationship(
        back_populates="workflow",
        order_by="PhaseInstanceModel.order",
    )
    documents: Mapped[list[WorkflowDocumentModel]] = relationship(
        back_populates="workflow",
    )

    def __repr__(self) -> str:
        return f"<WorkflowInstance {self.id} {self.status}>"

    def phase_at(self, order: int) -> PhaseInstanceModel | None:
        for phase in self.phases:
            if phase.order == order:
                return phase
        return None


class WorkflowDocumentModel(Base):
    """Link between a workflow and a document stored elsewhere."""

    __tablename__ = "workflow_documents"

    __table_args__ = (
        UniqueConstraint(
            "workflow_id", "document_id", name="uq_workflow_documents_pair",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    workflow: Mapped[WorkflowInstanceModel] = relationship(back_populates="documents")


class PhaseInstanceModel(Base):
    """One ordered stage of a workflow."""

    __tablename__ = "phase_instances"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STEP_STATUSES})",
            name="ck_phase_instances_valid_status",
        ),
        UniqueConstraint("workflow_id", "order", name="uq_phase_instances_order"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")

    workflow: Mapped[WorkflowInstanceModel] = relationship(back_populates="phases")
    steps: Mapped[list[StepInstanceModel]] = relationship(
        back_populates="phase",
        order_by="StepInstanceModel.order",
    )

    def __repr__(self) -> str:
        return f"<PhaseInstance {self.order} {self.status}>"


class StepInstanceModel(TrackedBase):
    """One decision point inside a phase."""

    __tablename__ = "step_instances"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STEP_STATUSES})",
            name="ck_step_instances_valid_status",
        ),
        CheckConstraint(
            "execution IN ('SEQUENTIAL', 'PARALLEL')",
            name="ck_step_instances_valid_execution",
        ),
        CheckConstraint(
            "quorum_rule IN ('UNANIMITY', 'MAJORITY', 'ANY_OF')",
            name="ck_step_instances_valid_quorum_rule",
        ),
        CheckConstraint("activation >= 1", name="ck_step_instances_activation"),
        UniqueConstraint("phase_id", "order", name="uq_step_instances_order"),
        Index("ix_step_instances_status", "status"),
        Index("ix_step_instances_workflow", "workflow_id"),
    )

    phase_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("phase_instances.id"), nullable=False,
    )
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    execution: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StepExecution.SEQUENTIAL.value,
    )
    quorum_rule: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QuorumRule.UNANIMITY.value,
    )
    quorum_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    validator_emails: Mapped[list] = mapped_column(JSON, nullable=False)
    # Display cache only; quorum is always recounted from workflow_actions
    decision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deadline_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    activation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    phase: Mapped[PhaseInstanceModel] = relationship(back_populates="steps")

    def __repr__(self) -> str:
        return f"<StepInstance {self.name} {self.status} a{self.activation}>"

    @property
    def is_active(self) -> bool:
        return self.status == StepStatus.IN_PROGRESS.value

    def to_activated(self, phase_order: int, reactivated: bool = False) -> ActivatedStep:
        return ActivatedStep(
            step_id=self.id,
            workflow_id=self.workflow_id,
            phase_order=phase_order,
            step_order=self.order,
            name=self.name,
            validator_emails=tuple(self.validator_emails),
            activation=self.activation,
            deadline=self.deadline,
            reactivated=reactivated,
        )
