"""
approval_services.circuit_service -- Transaction owner for approval circuits.

Responsibility:
    The public surface callers (HTTP handlers, email-link handlers, job
    workers) use.  Each operation runs one unit of work: open a session,
    wire the kernel services, run the orchestrator, commit, and only then
    hand the result to the side-effect dispatcher.

Architecture position:
    Services -- the only layer that commits.  Kernel services below it are
    flush-only.

Invariants enforced:
    - One transaction per launch / decision / cancel / archive / token
      decision; a raised error rolls the whole unit back.
    - Side effects run strictly after commit and never raise.
    - ``decide_with_token`` consumes the token and records the decision in
      the same transaction: a decision that fails leaves the token
      unused.

Failure modes:
    - Kernel exceptions from ``approval_kernel.exceptions`` propagate
      unchanged after rollback.
    - Token failures are returned as values (``TokenDecisionOutcome``).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from approval_config import get_active_config
from approval_config.schema import CircuitSettings
from approval_kernel.db.engine import get_session_factory, session_scope
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.tokens import (
    StepTokens,
    TokenContext,
    TokenResolution,
    TokenStatus,
)
from approval_kernel.domain.workflow import (
    CancelResult,
    Decision,
    DecisionResult,
    LaunchResult,
    RenotifyTarget,
    WorkflowStatus,
    WorkflowStructure,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.token_service import ActionTokenService
from approval_kernel.services.workflow_orchestrator import WorkflowOrchestrator
from approval_services.side_effects import (
    DispatchReport,
    InMemoryJobScheduler,
    LoggingNotifier,
    SideEffectDispatcher,
)

logger = get_logger("services.circuit")


@dataclass(frozen=True)
class TokenDecisionOutcome:
    """Result of deciding through an email link."""

    status: TokenStatus
    context: TokenContext | None = None
    result: DecisionResult | None = None

    @property
    def ok(self) -> bool:
        return self.status == TokenStatus.OK and self.result is not None


@dataclass(frozen=True)
class RenotifyOutcome:
    targets: tuple[RenotifyTarget, ...]
    report: DispatchReport

    @property
    def notified_emails(self) -> tuple[str, ...]:
        return tuple(e for t in self.targets for e in t.pending_emails)


class _UnitOfWork:
    """Kernel services wired over one session."""

    def __init__(self, session: Session, clock: Clock, settings: CircuitSettings):
        self.session = session
        self.auditor = AuditorService(session, clock)
        self.tokens = ActionTokenService(
            session, clock, ttl_hours=settings.token_ttl_hours,
        )
        self.orchestrator = WorkflowOrchestrator(
            session, self.auditor, self.tokens, clock,
        )


class ApprovalCircuitService:
    """
    Runs approval circuit operations in their own transactions.

    Usage:
        service = ApprovalCircuitService(session_factory, dispatcher, clock, config)
        launched = service.launch(structure, initiator_id, [doc_id], "Contract")
        service.record_decision(step_id, "a@x.com", Decision.APPROVE, "ok")
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        dispatcher: SideEffectDispatcher | None = None,
        clock: Clock | None = None,
        config: CircuitSettings | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._dispatcher = dispatcher or SideEffectDispatcher(
            LoggingNotifier(),
            InMemoryJobScheduler(),
            self._config,
            session_factory=self._session_factory,
            clock=self._clock,
        )

    def _unit(self, session: Session) -> _UnitOfWork:
        return _UnitOfWork(session, self._clock, self._config)

    # -- state-changing operations ------------------------------------

    def launch(
        self,
        structure: WorkflowStructure | Mapping[str, Any],
        initiator_id: UUID,
        document_ids: Iterable[UUID],
        title: str,
        template_id: UUID | None = None,
    ) -> LaunchResult:
        with session_scope(self._session_factory) as session:
            result = self._unit(session).orchestrator.launch(
                structure, initiator_id, document_ids, title, template_id=template_id,
            )
        self._dispatcher.after_launch(result)
        return result

    def record_decision(
        self,
        step_id: UUID,
        actor_email: str,
        decision: Decision | str,
        comment: str,
        actor_id: UUID | None = None,
    ) -> DecisionResult:
        with session_scope(self._session_factory) as session:
            result = self._unit(session).orchestrator.record_decision(
                step_id, actor_email, decision, comment, actor_id=actor_id,
            )
        self._dispatcher.after_decision(result)
        return result

    def decide_with_token(self, raw_token: str, comment: str) -> TokenDecisionOutcome:
        """
        Resolve an email-link token and record its decision atomically.

        A token that does not resolve leaves all state untouched.  A
        decision that is rejected by the orchestrator raises, and the
        rollback returns the token to unused.
        """
        with session_scope(self._session_factory) as session:
            unit = self._unit(session)
            preview = unit.tokens.peek(raw_token)
            if not preview.ok:
                return TokenDecisionOutcome(preview.status, preview.context)
            # Workflow lock first, as every other writer takes it
            unit.orchestrator.lock_workflow(preview.context.workflow_id)
            resolution = unit.tokens.resolve(raw_token)
            if not resolution.ok:
                return TokenDecisionOutcome(resolution.status, resolution.context)

            context = resolution.context
            with LogContext.bind(correlation_id=f"token:{context.step_id}"):
                result = unit.orchestrator.record_decision(
                    context.step_id,
                    context.validator_email,
                    context.decision,
                    comment,
                    activation=context.activation,
                )
        self._dispatcher.after_decision(result)
        return TokenDecisionOutcome(TokenStatus.OK, context, result)

    def cancel(self, workflow_id: UUID, initiator_id: UUID) -> CancelResult:
        with session_scope(self._session_factory) as session:
            result = self._unit(session).orchestrator.cancel(workflow_id, initiator_id)
        self._dispatcher.after_cancel(result)
        return result

    def archive(self, workflow_id: UUID, initiator_id: UUID) -> WorkflowStatus:
        with session_scope(self._session_factory) as session:
            return self._unit(session).orchestrator.archive(workflow_id, initiator_id)

    # -- notifications ------------------------------------------------

    def renotify(self, workflow_id: UUID, initiator_id: UUID) -> RenotifyOutcome:
        """
        Re-send action emails to validators who have not acted yet.

        Raises:
            NotInitiatorError, WorkflowNotFoundError, NoActiveStepError.
        """
        with session_scope(self._session_factory) as session:
            targets = self._unit(session).orchestrator.renotification_targets(
                workflow_id, initiator_id,
            )
        report = self._dispatcher.renotify(targets)
        logger.info(
            "workflow_renotified",
            extra={
                "workflow_id": str(workflow_id),
                "recipient_count": sum(len(t.pending_emails) for t in targets),
            },
        )
        return RenotifyOutcome(targets=targets, report=report)

    def handle_deadline_reminder(self, step_id: UUID) -> RenotifyTarget | None:
        """
        Reminder job callback.

        Sends fresh links to the step's pending validators when the step
        is still waiting; otherwise does nothing.
        """
        with session_scope(self._session_factory) as session:
            target = self._unit(session).orchestrator.deadline_reminder_target(step_id)
        if target is None:
            logger.info("deadline_reminder_skipped", extra={"step_id": str(step_id)})
            return None
        self._dispatcher.send_deadline_reminder(target)
        return target

    # -- token surface ------------------------------------------------

    def issue_tokens_for_step(
        self,
        step_id: UUID,
        emails: Iterable[str],
    ) -> dict[str, StepTokens]:
        with session_scope(self._session_factory) as session:
            return self._unit(session).tokens.issue_for_step(step_id, tuple(emails))

    def peek_token(self, raw_token: str) -> TokenResolution:
        with session_scope(self._session_factory) as session:
            return self._unit(session).tokens.peek(raw_token)

    def resolve_token(self, raw_token: str) -> TokenResolution:
        with session_scope(self._session_factory) as session:
            return self._unit(session).tokens.resolve(raw_token)
