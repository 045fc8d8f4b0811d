"""
Module: approval_kernel.selectors.workflow_selector
Responsibility: Read-only views of workflows for dashboards, validator
    inboxes and audit exports.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ value types and selectors/base.py.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - Step views expose the actions of the current activation only;
      earlier activations are history and live in the audit trail.
    - A step appears in a validator's pending list only while the step,
      its phase and its workflow are all IN_PROGRESS and the validator has
      not acted on the current activation.

Failure modes:
    - Returns None or empty results when nothing matches (never raises on
      absence of data).
    - ValueError for page < 1 or limit < 1.
"""

import csv
import io
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from approval_kernel.domain.workflow import (
    PhaseStatus,
    StepStatus,
    WorkflowStatus,
    normalize_email,
)
from approval_kernel.models.action import WorkflowActionModel
from approval_kernel.models.audit_event import AuditEvent
from approval_kernel.models.workflow import (
    PhaseInstanceModel,
    StepInstanceModel,
    WorkflowInstanceModel,
)
from approval_kernel.selectors.base import BaseSelector

AUDIT_CSV_HEADER = ("timestamp", "action", "actor_email", "step", "comment")


@dataclass(frozen=True)
class ActionView:
    """One recorded decision."""

    id: UUID
    actor_email: str
    decision: str
    comment: str
    activation: int
    created_at: datetime


@dataclass(frozen=True)
class StepView:
    id: UUID
    order: int
    name: str
    status: StepStatus
    execution: str
    quorum_rule: str
    quorum_count: int | None
    validator_emails: tuple[str, ...]
    decision_count: int
    activation: int
    deadline: datetime | None
    actions: tuple[ActionView, ...]


@dataclass(frozen=True)
class PhaseView:
    id: UUID
    order: int
    name: str
    status: PhaseStatus
    steps: tuple[StepView, ...]


@dataclass(frozen=True)
class WorkflowView:
    """A workflow with its phases, steps and current decisions."""

    id: UUID
    title: str
    status: WorkflowStatus
    current_phase_index: int
    initiator_id: UUID
    template_id: UUID | None
    document_ids: tuple[UUID, ...]
    structure: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    phases: tuple[PhaseView, ...]

    @property
    def current_phase(self) -> PhaseView | None:
        for phase in self.phases:
            if phase.order == self.current_phase_index:
                return phase
        return None


@dataclass(frozen=True)
class WorkflowSummary:
    id: UUID
    title: str
    status: WorkflowStatus
    current_phase_index: int
    created_at: datetime


@dataclass(frozen=True)
class WorkflowPage:
    items: tuple[WorkflowSummary, ...]
    total: int
    page: int
    limit: int


@dataclass(frozen=True)
class PendingStepView:
    """A step waiting for one particular validator."""

    step_id: UUID
    step_name: str
    activation: int
    deadline: datetime | None
    phase_order: int
    phase_name: str
    workflow_id: UUID
    workflow_title: str
    initiator_id: UUID


@dataclass(frozen=True)
class PendingStepPage:
    items: tuple[PendingStepView, ...]
    total: int
    page: int
    limit: int


@dataclass(frozen=True)
class AuditTrailRow:
    seq: int
    occurred_at: datetime
    action: str
    entity_type: str
    entity_id: UUID
    actor_email: str | None
    payload: dict[str, Any]
    hash: str


def _check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")


class WorkflowSelector(BaseSelector[WorkflowInstanceModel]):
    """
    Selector for workflow queries.

    Guarantees:
        - Phases are ordered by ``order``; steps by ``order`` within a phase.
        - Audit rows are ordered by chain sequence.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _current_actions(self, step: StepInstanceModel) -> tuple[ActionView, ...]:
        actions = self.session.execute(
            select(WorkflowActionModel)
            .where(
                WorkflowActionModel.step_id == step.id,
                WorkflowActionModel.activation == step.activation,
            )
            .order_by(WorkflowActionModel.created_at, WorkflowActionModel.actor_email)
        ).scalars().all()
        return tuple(
            ActionView(
                id=a.id,
                actor_email=a.actor_email,
                decision=a.decision,
                comment=a.comment,
                activation=a.activation,
                created_at=a.created_at,
            )
            for a in actions
        )

    def _step_view(self, step: StepInstanceModel) -> StepView:
        return StepView(
            id=step.id,
            order=step.order,
            name=step.name,
            status=StepStatus(step.status),
            execution=step.execution,
            quorum_rule=step.quorum_rule,
            quorum_count=step.quorum_count,
            validator_emails=tuple(step.validator_emails),
            decision_count=step.decision_count,
            activation=step.activation,
            deadline=step.deadline,
            actions=self._current_actions(step),
        )

    def get_workflow(self, workflow_id: UUID) -> WorkflowView | None:
        workflow = self.session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == workflow_id)
            .options(
                selectinload(WorkflowInstanceModel.phases)
                .selectinload(PhaseInstanceModel.steps),
                selectinload(WorkflowInstanceModel.documents),
            )
        ).scalar_one_or_none()
        if workflow is None:
            return None

        return WorkflowView(
            id=workflow.id,
            title=workflow.title,
            status=WorkflowStatus(workflow.status),
            current_phase_index=workflow.current_phase_index,
            initiator_id=workflow.initiator_id,
            template_id=workflow.template_id,
            document_ids=tuple(d.document_id for d in workflow.documents),
            structure=workflow.structure,
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
            phases=tuple(
                PhaseView(
                    id=phase.id,
                    order=phase.order,
                    name=phase.name,
                    status=PhaseStatus(phase.status),
                    steps=tuple(self._step_view(s) for s in phase.steps),
                )
                for phase in workflow.phases
            ),
        )

    def list_for_initiator(
        self,
        initiator_id: UUID,
        page: int = 1,
        limit: int = 20,
    ) -> WorkflowPage:
        """Workflows launched by a user, newest first."""
        _check_paging(page, limit)
        total = self.session.execute(
            select(func.count())
            .select_from(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.initiator_id == initiator_id)
        ).scalar_one()
        rows = self.session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.initiator_id == initiator_id)
            .order_by(
                WorkflowInstanceModel.created_at.desc(),
                WorkflowInstanceModel.id,
            )
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return WorkflowPage(
            items=tuple(
                WorkflowSummary(
                    id=w.id,
                    title=w.title,
                    status=WorkflowStatus(w.status),
                    current_phase_index=w.current_phase_index,
                    created_at=w.created_at,
                )
                for w in rows
            ),
            total=total,
            page=page,
            limit=limit,
        )

    def list_pending_for_validator(
        self,
        email: str,
        page: int = 1,
        limit: int = 20,
    ) -> PendingStepPage:
        """
        Steps currently waiting on this validator, oldest activation first.

        Validator sets are JSON arrays, so membership is filtered here and
        the page is cut from the filtered list; ``total`` counts every
        waiting step.
        """
        _check_paging(page, limit)
        email = normalize_email(email)
        rows = self.session.execute(
            select(StepInstanceModel, PhaseInstanceModel, WorkflowInstanceModel)
            .join(PhaseInstanceModel, StepInstanceModel.phase_id == PhaseInstanceModel.id)
            .join(
                WorkflowInstanceModel,
                StepInstanceModel.workflow_id == WorkflowInstanceModel.id,
            )
            .where(
                StepInstanceModel.status == StepStatus.IN_PROGRESS.value,
                PhaseInstanceModel.status == PhaseStatus.IN_PROGRESS.value,
                WorkflowInstanceModel.status == WorkflowStatus.IN_PROGRESS.value,
            )
            .order_by(StepInstanceModel.updated_at, StepInstanceModel.id)
        ).all()

        pending = []
        for step, phase, workflow in rows:
            if email not in step.validator_emails:
                continue
            acted = self.session.execute(
                select(func.count())
                .select_from(WorkflowActionModel)
                .where(
                    WorkflowActionModel.step_id == step.id,
                    WorkflowActionModel.activation == step.activation,
                    WorkflowActionModel.actor_email == email,
                )
            ).scalar_one()
            if acted:
                continue
            pending.append(
                PendingStepView(
                    step_id=step.id,
                    step_name=step.name,
                    activation=step.activation,
                    deadline=step.deadline,
                    phase_order=phase.order,
                    phase_name=phase.name,
                    workflow_id=workflow.id,
                    workflow_title=workflow.title,
                    initiator_id=workflow.initiator_id,
                )
            )
        start = (page - 1) * limit
        return PendingStepPage(
            items=tuple(pending[start:start + limit]),
            total=len(pending),
            page=page,
            limit=limit,
        )

    def get_audit_trail(self, workflow_id: UUID) -> tuple[AuditTrailRow, ...]:
        events = self.session.execute(
            select(AuditEvent)
            .where(AuditEvent.workflow_id == workflow_id)
            .order_by(AuditEvent.seq)
        ).scalars().all()
        return tuple(
            AuditTrailRow(
                seq=e.seq,
                occurred_at=e.occurred_at,
                action=e.action,
                entity_type=e.entity_type,
                entity_id=e.entity_id,
                actor_email=e.actor_email,
                payload=e.payload or {},
                hash=e.hash,
            )
            for e in events
        )

    def export_audit_csv(self, workflow_id: UUID) -> str:
        """
        CSV of the audit events and every recorded decision of a workflow.

        Columns: timestamp, action, actor_email, step, comment.  Audit
        events name their entity in the ``step`` column as
        ``<entity_type>:<entity_id>``; decisions name the step.  Rows are
        chronological, audit events first on equal timestamps.
        """
        rows: list[tuple[datetime, int, tuple[str, ...]]] = []
        for event in self.get_audit_trail(workflow_id):
            rows.append((
                event.occurred_at,
                0,
                (
                    event.occurred_at.isoformat(),
                    event.action,
                    event.actor_email or "",
                    f"{event.entity_type}:{event.entity_id}",
                    "",
                ),
            ))

        actions = self.session.execute(
            select(WorkflowActionModel, StepInstanceModel.name)
            .join(StepInstanceModel, WorkflowActionModel.step_id == StepInstanceModel.id)
            .where(WorkflowActionModel.workflow_id == workflow_id)
            .order_by(WorkflowActionModel.created_at, WorkflowActionModel.id)
        ).all()
        for action, step_name in actions:
            rows.append((
                action.created_at,
                1,
                (
                    action.created_at.isoformat(),
                    action.decision,
                    action.actor_email,
                    step_name,
                    action.comment,
                ),
            ))

        rows.sort(key=lambda r: (r[0], r[1]))
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(AUDIT_CSV_HEADER)
        writer.writerows(r[2] for r in rows)
        return buffer.getvalue()
