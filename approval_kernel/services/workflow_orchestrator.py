"""
WorkflowOrchestrator -- the approval circuit state machine.

Responsibility:
    Launch workflows from a circuit structure, record validator decisions,
    evaluate quorum, advance through phases, route refusals back to the
    previous phase, and cancel or archive workflows.

Architecture position:
    Kernel > Services -- imperative shell.  Pure decisions are delegated
    to approval_engines (quorum, phase completion) and to
    domain/transitions.py (status legality).  Side effects outside the
    database (emails, reminder jobs) are NOT performed here: every public
    operation returns a result DTO describing what the caller must notify
    after commit.

Invariants enforced:
    - Every status mutation goes through the transition table.
    - A step's quorum is evaluated only over the decisions of its current
      activation.  Reactivating a step opens a new activation, so its
      earlier decisions stay as history but no longer count.
    - At most one decision per (step, actor, activation): checked before
      insert and backed by a unique constraint.
    - Serialization per workflow: ``record_decision`` locks the workflow
      row, then the step row, before reading any state it decides on.
      Concurrent decisions on one workflow therefore evaluate quorum and
      phase completion one after another.
    - Lock order is always workflow, step, then the audit sequence
      counter (taken last by AuditorService).

Failure modes:
    - StepNotFoundError, WorkflowNotFoundError, UserNotFoundError.
    - NotAValidatorError, NotInitiatorError.
    - StepAlreadyDecidedError, StepNotActiveError, DuplicateDecisionError,
      WorkflowNotCancellableError, WorkflowNotArchivableError,
      NoActiveStepError.
    - EmptyCommentError, InvalidStructureError.
    - InvalidTransitionError: an orchestration bug; never expected.

Audit relevance:
    Launch, settled steps, reactivations, workflow outcomes, cancellation
    and archival each write one hash-chained AuditEvent in the same
    transaction as the state change.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_engines.quorum import (
    QuorumTally,
    evaluate_phase_completion,
    evaluate_tally,
    find_previous_phase_index,
    runs_in_parallel,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.transitions import (
    validate_phase_transition,
    validate_step_transition,
    validate_workflow_transition,
)
from approval_kernel.domain.workflow import (
    TERMINAL_WORKFLOW_STATUSES,
    ActivatedStep,
    CancelResult,
    Decision,
    DecisionResult,
    LaunchResult,
    PhaseStatus,
    RenotifyTarget,
    StepStatus,
    WorkflowRef,
    WorkflowStatus,
    WorkflowStructure,
    normalize_email,
)
from approval_kernel.exceptions import (
    DuplicateDecisionError,
    EmptyCommentError,
    InvalidInputError,
    NoActiveStepError,
    NotAValidatorError,
    NotInitiatorError,
    StepAlreadyDecidedError,
    StepNotActiveError,
    StepNotFoundError,
    UserNotFoundError,
    WorkflowNotArchivableError,
    WorkflowNotCancellableError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.action import WorkflowActionModel
from approval_kernel.models.user import UserModel
from approval_kernel.models.workflow import (
    PhaseInstanceModel,
    StepInstanceModel,
    WorkflowDocumentModel,
    WorkflowInstanceModel,
)
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.token_service import ActionTokenService

logger = get_logger("services.orchestrator")


def _as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _is_parallel(phase: PhaseInstanceModel) -> bool:
    return runs_in_parallel(s.execution for s in phase.steps)


class WorkflowOrchestrator:
    """
    Drives workflows through their lifecycle.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT send notifications or schedule jobs.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        tokens: ActionTokenService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._auditor = auditor
        self._tokens = tokens
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Loading and locking
    # ------------------------------------------------------------------

    def _load_user(self, user_id: UUID) -> UserModel:
        user = self._session.get(UserModel, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user

    def _lock_workflow(self, workflow_id: UUID) -> WorkflowInstanceModel:
        workflow = self._session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == workflow_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return workflow

    def lock_workflow(self, workflow_id: UUID | str) -> None:
        """Take the workflow row lock ahead of other writes in this transaction."""
        self._lock_workflow(_as_uuid(workflow_id))

    def _lock_step(self, step_id: UUID) -> StepInstanceModel:
        step = self._session.execute(
            select(StepInstanceModel)
            .where(StepInstanceModel.id == step_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if step is None:
            raise StepNotFoundError(str(step_id))
        return step

    def _workflow_ref(self, workflow: WorkflowInstanceModel) -> WorkflowRef:
        initiator = self._load_user(workflow.initiator_id)
        return WorkflowRef(
            workflow_id=workflow.id,
            title=workflow.title,
            initiator_id=initiator.id,
            initiator_email=initiator.email,
            initiator_name=initiator.name,
            initiator_locale=initiator.locale,
            document_ids=tuple(d.document_id for d in workflow.documents),
        )

    def _require_initiator(
        self,
        workflow: WorkflowInstanceModel,
        user_id: UUID,
        operation: str,
    ) -> None:
        if workflow.initiator_id != user_id:
            logger.warning(
                "initiator_check_failed",
                extra={
                    "workflow_id": str(workflow.id),
                    "user_id": str(user_id),
                    "operation": operation,
                },
            )
            raise NotInitiatorError(str(workflow.id), str(user_id), operation)

    # ------------------------------------------------------------------
    # Status mutation (always through the transition table)
    # ------------------------------------------------------------------

    def _set_workflow_status(
        self, workflow: WorkflowInstanceModel, target: WorkflowStatus,
    ) -> None:
        validate_workflow_transition(workflow.status, target)
        workflow.status = target.value
        workflow.updated_at = self._clock.now()

    def _set_phase_status(self, phase: PhaseInstanceModel, target: PhaseStatus) -> None:
        validate_phase_transition(phase.status, target)
        phase.status = target.value

    def _set_step_status(self, step: StepInstanceModel, target: StepStatus) -> None:
        validate_step_transition(step.status, target)
        step.status = target.value
        step.updated_at = self._clock.now()

    def _open_activation(self, step: StepInstanceModel) -> None:
        """
        Start a fresh activation; the caller moves the status.

        Decisions of the previous activation stay in place but stop
        counting, and tokens issued for it are expired.
        """
        self._tokens.expire_for_steps([step.id])
        step.activation += 1
        step.decision_count = 0
        step.deadline = None
        step.updated_at = self._clock.now()

    def _activate_step(
        self,
        step: StepInstanceModel,
        phase: PhaseInstanceModel,
        reactivated: bool = False,
    ) -> ActivatedStep:
        # A superseded parallel sibling is still IN_PROGRESS; only its activation moved
        if step.status != StepStatus.IN_PROGRESS.value:
            self._set_step_status(step, StepStatus.IN_PROGRESS)
        if step.deadline_hours:
            step.deadline = self._clock.now() + timedelta(hours=step.deadline_hours)
        return step.to_activated(phase.order, reactivated=reactivated)

    def _enter_phase(
        self,
        workflow: WorkflowInstanceModel,
        phase: PhaseInstanceModel,
    ) -> tuple[ActivatedStep, ...]:
        """Move into a phase and activate its first step (or all of them)."""
        self._set_phase_status(phase, PhaseStatus.IN_PROGRESS)
        workflow.current_phase_index = phase.order

        parallel = _is_parallel(phase)
        activated = []
        for step in phase.steps:
            # A phase re-entered after refusal routing starts every step anew
            reentered = step.status != StepStatus.PENDING.value
            if reentered:
                self._open_activation(step)
            if parallel or step.order == phase.steps[0].order:
                activated.append(self._activate_step(step, phase))
            elif reentered:
                self._set_step_status(step, StepStatus.PENDING)
        return tuple(activated)

    def _tally(self, step: StepInstanceModel) -> QuorumTally:
        decisions = self._session.execute(
            select(WorkflowActionModel.decision).where(
                WorkflowActionModel.step_id == step.id,
                WorkflowActionModel.activation == step.activation,
            )
        ).scalars().all()
        return QuorumTally.from_decisions(decisions)

    def _acted_emails(self, step: StepInstanceModel) -> set[str]:
        return set(
            self._session.execute(
                select(WorkflowActionModel.actor_email).where(
                    WorkflowActionModel.step_id == step.id,
                    WorkflowActionModel.activation == step.activation,
                )
            ).scalars().all()
        )

    def _has_decided(self, step: StepInstanceModel, actor_email: str) -> bool:
        return bool(
            self._session.execute(
                select(
                    exists().where(
                        WorkflowActionModel.step_id == step.id,
                        WorkflowActionModel.activation == step.activation,
                        WorkflowActionModel.actor_email == actor_email,
                    )
                )
            ).scalar()
        )

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def launch(
        self,
        structure: WorkflowStructure | Mapping[str, Any],
        initiator_id: UUID | str,
        document_ids: Iterable[UUID | str],
        title: str,
        template_id: UUID | str | None = None,
    ) -> LaunchResult:
        """
        Create a workflow from a circuit structure and start it.

        The structure is validated and snapshotted onto the workflow; later
        edits to the template it came from never affect this instance.
        Phase 0 is entered at once.

        Returns:
            LaunchResult listing the steps whose validators must be
            notified.
        """
        parsed = WorkflowStructure.coerce(structure)
        initiator = self._load_user(_as_uuid(initiator_id))
        title = (title or "").strip()
        if not title:
            raise InvalidInputError("A workflow title is required")
        now = self._clock.now()

        workflow = WorkflowInstanceModel(
            title=title,
            status=WorkflowStatus.DRAFT.value,
            current_phase_index=0,
            structure=parsed.to_dict(),
            initiator_id=initiator.id,
            template_id=_as_uuid(template_id) if template_id is not None else None,
            created_at=now,
            updated_at=now,
        )
        self._session.add(workflow)
        self._session.flush()

        for document_id in dict.fromkeys(_as_uuid(d) for d in document_ids):
            workflow.documents.append(
                WorkflowDocumentModel(workflow_id=workflow.id, document_id=document_id)
            )

        for phase_order, phase_def in enumerate(parsed.phases):
            phase = PhaseInstanceModel(
                workflow_id=workflow.id,
                order=phase_order,
                name=phase_def.name,
                status=PhaseStatus.PENDING.value,
            )
            workflow.phases.append(phase)
            for step_order, step_def in enumerate(phase_def.steps):
                phase.steps.append(
                    StepInstanceModel(
                        workflow_id=workflow.id,
                        order=step_order,
                        name=step_def.name,
                        status=StepStatus.PENDING.value,
                        execution=step_def.execution.value,
                        quorum_rule=step_def.quorum_rule.value,
                        quorum_count=step_def.quorum_count,
                        validator_emails=list(step_def.validator_emails),
                        decision_count=0,
                        deadline_hours=step_def.deadline_hours,
                        activation=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
        self._session.flush()

        self._set_workflow_status(workflow, WorkflowStatus.IN_PROGRESS)
        activated = self._enter_phase(workflow, workflow.phases[0])

        ref = self._workflow_ref(workflow)
        self._auditor.record_workflow_launched(
            workflow_id=workflow.id,
            initiator_id=initiator.id,
            title=title,
            document_ids=list(ref.document_ids),
            phase_count=len(parsed.phases),
        )
        self._session.flush()

        logger.info(
            "workflow_launched",
            extra={
                "workflow_id": str(workflow.id),
                "initiator_id": str(initiator.id),
                "phase_count": len(parsed.phases),
                "activated_steps": len(activated),
            },
        )
        return LaunchResult(
            workflow_id=workflow.id,
            workflow=ref,
            activated_steps=activated,
            status=WorkflowStatus(workflow.status),
        )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def record_decision(
        self,
        step_id: UUID | str,
        actor_email: str,
        decision: Decision | str,
        comment: str,
        actor_id: UUID | str | None = None,
        activation: int | None = None,
    ) -> DecisionResult:
        """
        Record one validator's decision and apply its consequences.

        Args:
            step_id: Step being decided.
            actor_email: Validator address (normalized before use).
            decision: APPROVE or REFUSE.
            comment: Mandatory justification.
            actor_id: Known user id of the validator, if any.
            activation: When given (token flow), the activation the
                decision was issued for; a step that has since been
                reactivated rejects it as superseded.

        Returns:
            DecisionResult with the resulting statuses and the steps that
            became active.

        Raises:
            StepNotFoundError, StepAlreadyDecidedError, StepNotActiveError,
            NotAValidatorError, DuplicateDecisionError, EmptyCommentError.
        """
        step_uuid = _as_uuid(step_id)
        email = normalize_email(actor_email)
        try:
            decision = Decision(decision)
        except ValueError:
            raise InvalidInputError(f"Unknown decision: {decision}") from None

        workflow_id = self._session.execute(
            select(StepInstanceModel.workflow_id).where(StepInstanceModel.id == step_uuid)
        ).scalar_one_or_none()
        if workflow_id is None:
            raise StepNotFoundError(str(step_uuid))

        with LogContext.bind(
            workflow_id=str(workflow_id), step_id=str(step_uuid), actor_email=email,
        ):
            workflow = self._lock_workflow(workflow_id)
            step = self._lock_step(step_uuid)
            phase = step.phase

            if step.status != StepStatus.IN_PROGRESS.value:
                raise StepAlreadyDecidedError(str(step.id), step.status)
            if activation is not None and activation != step.activation:
                raise StepAlreadyDecidedError(str(step.id), "superseded")
            if (
                phase.status != PhaseStatus.IN_PROGRESS.value
                or workflow.status != WorkflowStatus.IN_PROGRESS.value
            ):
                raise StepNotActiveError(str(step.id), phase.status, workflow.status)
            if email not in step.validator_emails:
                logger.warning("decision_rejected_not_validator")
                raise NotAValidatorError(str(step.id), email)
            if self._has_decided(step, email):
                raise DuplicateDecisionError(str(step.id), email)
            comment = (comment or "").strip()
            if not comment:
                raise EmptyCommentError(str(step.id))

            savepoint = self._session.begin_nested()
            try:
                self._session.add(
                    WorkflowActionModel(
                        workflow_id=workflow.id,
                        step_id=step.id,
                        activation=step.activation,
                        actor_email=email,
                        actor_id=_as_uuid(actor_id) if actor_id is not None else None,
                        decision=decision.value,
                        comment=comment,
                        created_at=self._clock.now(),
                    )
                )
                self._session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                raise DuplicateDecisionError(str(step.id), email) from None

            step.decision_count += 1
            step.updated_at = self._clock.now()

            tally = self._tally(step)
            outcome = evaluate_tally(
                step.quorum_rule, len(step.validator_emails), tally, step.quorum_count,
            )

            logger.info(
                "decision_recorded",
                extra={
                    "decision": decision.value,
                    "activation": step.activation,
                    "approvals": tally.approvals,
                    "refusals": tally.refusals,
                    "outcome": outcome.value,
                },
            )

            phase_advanced = False
            workflow_advanced = False
            activated: tuple[ActivatedStep, ...] = ()
            superseded: tuple[UUID, ...] = ()

            if outcome != StepStatus.IN_PROGRESS:
                self._set_step_status(step, outcome)
                self._auditor.record_step_decided(
                    workflow_id=workflow.id,
                    step_id=step.id,
                    step_name=step.name,
                    approved=outcome == StepStatus.APPROVED,
                    actor_email=email,
                    actor_id=_as_uuid(actor_id) if actor_id is not None else None,
                    comment=comment,
                    activation=step.activation,
                )
                if outcome == StepStatus.REFUSED:
                    activated, superseded = self._route_refusal(workflow, phase, email)
                    phase_advanced = True
                else:
                    phase_advanced, workflow_advanced, activated = self._advance(
                        workflow, phase, email,
                    )

            self._session.flush()

            return DecisionResult(
                workflow_id=workflow.id,
                step_id=step.id,
                step_name=step.name,
                actor_email=email,
                decision=decision,
                comment=comment,
                step_completed=outcome != StepStatus.IN_PROGRESS,
                phase_advanced=phase_advanced,
                workflow_advanced=workflow_advanced,
                step_status=StepStatus(step.status),
                phase_status=PhaseStatus(phase.status),
                workflow_status=WorkflowStatus(workflow.status),
                workflow=self._workflow_ref(workflow),
                activated_steps=activated,
                superseded_step_ids=superseded,
            )

    def _route_refusal(
        self,
        workflow: WorkflowInstanceModel,
        phase: PhaseInstanceModel,
        actor_email: str,
    ) -> tuple[tuple[ActivatedStep, ...], tuple[UUID, ...]]:
        """
        Refuse the phase and send the workflow back one phase.

        The previous phase is reopened with only its last step active; its
        other steps keep their approvals.  A refusal in the first phase
        refuses the whole workflow.
        """
        self._set_phase_status(phase, PhaseStatus.REFUSED)
        self._tokens.expire_for_steps([s.id for s in phase.steps])
        # Parallel siblings still open are frozen where they stand
        superseded = tuple(
            s.id for s in phase.steps if s.status == StepStatus.IN_PROGRESS.value
        )

        previous_index = find_previous_phase_index(phase.order)
        previous = workflow.phase_at(previous_index) if previous_index >= 0 else None

        if previous is None:
            self._set_workflow_status(workflow, WorkflowStatus.REFUSED)
            self._auditor.record_workflow_outcome(
                workflow.id, approved=False, actor_email=actor_email,
            )
            logger.info(
                "workflow_refused",
                extra={"workflow_id": str(workflow.id), "phase_order": phase.order},
            )
            return (), superseded

        self._set_phase_status(previous, PhaseStatus.IN_PROGRESS)
        workflow.current_phase_index = previous.order

        last_step = previous.steps[-1]
        self._open_activation(last_step)
        step_activated = self._activate_step(last_step, previous, reactivated=True)

        self._auditor.record_step_reactivated(
            workflow_id=workflow.id,
            step_id=last_step.id,
            step_name=last_step.name,
            activation=last_step.activation,
            refused_phase_order=phase.order,
        )
        logger.info(
            "step_reactivated",
            extra={
                "workflow_id": str(workflow.id),
                "reactivated_step_id": str(last_step.id),
                "activation": last_step.activation,
                "from_phase": phase.order,
                "to_phase": previous.order,
            },
        )
        return (step_activated,), superseded

    def _advance(
        self,
        workflow: WorkflowInstanceModel,
        phase: PhaseInstanceModel,
        actor_email: str,
    ) -> tuple[bool, bool, tuple[ActivatedStep, ...]]:
        """
        Move forward after a step approval.

        Returns:
            (phase_advanced, workflow_advanced, activated_steps)
        """
        phase_outcome = evaluate_phase_completion(s.status for s in phase.steps)

        if phase_outcome == StepStatus.APPROVED:
            self._set_phase_status(phase, PhaseStatus.APPROVED)
            following = workflow.phase_at(phase.order + 1)
            if following is not None:
                activated = self._enter_phase(workflow, following)
                logger.info(
                    "phase_advanced",
                    extra={
                        "workflow_id": str(workflow.id),
                        "from_phase": phase.order,
                        "to_phase": following.order,
                    },
                )
                return True, False, activated

            self._set_workflow_status(workflow, WorkflowStatus.APPROVED)
            self._auditor.record_workflow_outcome(
                workflow.id, approved=True, actor_email=actor_email,
            )
            logger.info("workflow_approved", extra={"workflow_id": str(workflow.id)})
            return True, True, ()

        if not _is_parallel(phase):
            waiting = [s for s in phase.steps if s.status == StepStatus.PENDING.value]
            if waiting:
                return False, False, (self._activate_step(waiting[0], phase),)

        return False, False, ()

    # ------------------------------------------------------------------
    # Initiator operations
    # ------------------------------------------------------------------

    def cancel(self, workflow_id: UUID | str, initiator_id: UUID | str) -> CancelResult:
        """
        Cancel an in-progress workflow.

        Every unused token of the workflow is expired.  The returned step
        ids let the caller cancel pending reminder jobs.
        """
        workflow = self._lock_workflow(_as_uuid(workflow_id))
        self._require_initiator(workflow, _as_uuid(initiator_id), "cancel")
        if workflow.status != WorkflowStatus.IN_PROGRESS.value:
            raise WorkflowNotCancellableError(str(workflow.id), workflow.status)

        self._set_workflow_status(workflow, WorkflowStatus.CANCELLED)
        step_ids = tuple(s.id for phase in workflow.phases for s in phase.steps)
        expired = self._tokens.expire_for_steps(step_ids)
        self._auditor.record_workflow_cancelled(
            workflow.id, initiator_id=workflow.initiator_id, expired_tokens=expired,
        )
        self._session.flush()

        logger.info(
            "workflow_cancelled",
            extra={"workflow_id": str(workflow.id), "expired_tokens": expired},
        )
        return CancelResult(workflow_id=workflow.id, step_ids=step_ids, expired_tokens=expired)

    def archive(self, workflow_id: UUID | str, initiator_id: UUID | str) -> WorkflowStatus:
        """Archive a finished workflow. Returns the status it was archived from."""
        workflow = self._lock_workflow(_as_uuid(workflow_id))
        self._require_initiator(workflow, _as_uuid(initiator_id), "archive")
        final_status = WorkflowStatus(workflow.status)
        if final_status not in TERMINAL_WORKFLOW_STATUSES:
            raise WorkflowNotArchivableError(str(workflow.id), workflow.status)

        self._set_workflow_status(workflow, WorkflowStatus.ARCHIVED)
        self._auditor.record_workflow_archived(
            workflow.id, initiator_id=workflow.initiator_id, final_status=final_status.value,
        )
        self._session.flush()

        logger.info(
            "workflow_archived",
            extra={"workflow_id": str(workflow.id), "final_status": final_status.value},
        )
        return final_status

    # ------------------------------------------------------------------
    # Reminder and re-notification targets
    # ------------------------------------------------------------------

    def pending_validators(self, step_id: UUID | str) -> tuple[str, ...]:
        """Validators of the step's current activation who have not acted yet."""
        step = self._session.get(StepInstanceModel, _as_uuid(step_id))
        if step is None:
            raise StepNotFoundError(str(step_id))
        acted = self._acted_emails(step)
        return tuple(e for e in step.validator_emails if e not in acted)

    def renotification_targets(
        self,
        workflow_id: UUID | str,
        initiator_id: UUID | str,
    ) -> tuple[RenotifyTarget, ...]:
        """
        Active steps of a workflow and their validators still to act.

        Raises:
            NotInitiatorError: caller is not the initiator.
            NoActiveStepError: nothing is waiting on a validator.
        """
        workflow = self._session.get(WorkflowInstanceModel, _as_uuid(workflow_id))
        if workflow is None:
            raise WorkflowNotFoundError(str(workflow_id))
        self._require_initiator(workflow, _as_uuid(initiator_id), "re-notify")
        if workflow.status != WorkflowStatus.IN_PROGRESS.value:
            raise NoActiveStepError(str(workflow.id), "workflow is not in progress")

        phase = workflow.phase_at(workflow.current_phase_index)
        active_steps = [
            s for s in (phase.steps if phase is not None else ())
            if s.status == StepStatus.IN_PROGRESS.value
        ]
        if phase is None or phase.status != PhaseStatus.IN_PROGRESS.value or not active_steps:
            raise NoActiveStepError(str(workflow.id), "no active step")

        ref = self._workflow_ref(workflow)
        targets = []
        for step in active_steps:
            pending = self.pending_validators(step.id)
            if pending:
                targets.append(
                    RenotifyTarget(
                        step=step.to_activated(phase.order),
                        pending_emails=pending,
                        workflow=ref,
                    )
                )
        if not targets:
            raise NoActiveStepError(str(workflow.id), "all validators have acted")
        return tuple(targets)

    def deadline_reminder_target(self, step_id: UUID | str) -> RenotifyTarget | None:
        """
        What a deadline reminder for this step should contain, if anything.

        Returns None when the step is no longer waiting (decided, phase or
        workflow moved on) or everybody already acted.
        """
        step = self._session.get(StepInstanceModel, _as_uuid(step_id))
        if step is None or step.status != StepStatus.IN_PROGRESS.value:
            return None
        phase = step.phase
        workflow = phase.workflow
        if (
            phase.status != PhaseStatus.IN_PROGRESS.value
            or workflow.status != WorkflowStatus.IN_PROGRESS.value
        ):
            return None
        pending = self.pending_validators(step.id)
        if not pending:
            return None
        return RenotifyTarget(
            step=step.to_activated(phase.order),
            pending_emails=pending,
            workflow=self._workflow_ref(workflow),
        )
