"""
approval_services.side_effects -- Post-commit notifications and reminder jobs.

Responsibility:
    Turn the result DTOs returned by the orchestrator into the effects the
    outside world sees: action tokens and emails for newly active steps,
    deadline reminder jobs, and initiator notifications.

Architecture position:
    Services -- runs strictly after the state-changing transaction has
    committed.  Talks to two collaborator protocols, ``NotificationDispatcher``
    and ``JobScheduler``; their transport (SMTP, queue) is out of scope.

Invariants enforced:
    - No side effect can change or roll back committed workflow state:
      every effect is wrapped, and failures are logged
      (``side_effect_failed``) and swallowed.
    - One failing recipient never prevents the others from being notified.
    - Reminder jobs are keyed ``reminder-<step_id>``; scheduling the same
      key twice is a no-op on the scheduler side.

Failure modes:
    - None propagate.  Delivery is best-effort.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from approval_config.schema import CircuitSettings
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.tokens import StepTokens
from approval_kernel.domain.workflow import (
    ActivatedStep,
    CancelResult,
    Decision,
    DecisionResult,
    LaunchResult,
    RenotifyTarget,
    WorkflowRef,
    WorkflowStatus,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.services.token_service import ActionTokenService

logger = get_logger("services.side_effects")


class NotificationKind(str, Enum):
    PENDING_ACTION = "pending_action"
    DEADLINE_REMINDER = "deadline_reminder"
    STEP_APPROVED = "step_approved"
    STEP_REFUSED = "step_refused"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_REFUSED = "workflow_refused"


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Delivers one notification to one address."""

    def send(
        self,
        kind: NotificationKind,
        to_email: str,
        context: Mapping[str, Any],
    ) -> None:
        ...


@runtime_checkable
class JobScheduler(Protocol):
    """Delayed job queue for deadline reminders."""

    def schedule(self, key: str, delay: timedelta) -> bool:
        """Schedule a job; returns False when ``key`` is already scheduled."""
        ...

    def cancel(self, key: str) -> None:
        """Remove a job; unknown keys are ignored."""
        ...


def reminder_key(step_id: UUID) -> str:
    return f"reminder-{step_id}"


# ---------------------------------------------------------------------------
# In-process collaborators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SentNotification:
    kind: NotificationKind
    to_email: str
    context: Mapping[str, Any]


class RecordingNotifier:
    """Keeps every notification in memory.  Used by tests and local runs."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    def send(
        self,
        kind: NotificationKind,
        to_email: str,
        context: Mapping[str, Any],
    ) -> None:
        self.sent.append(SentNotification(NotificationKind(kind), to_email, dict(context)))

    def of_kind(self, kind: NotificationKind) -> list[SentNotification]:
        return [n for n in self.sent if n.kind == kind]

    def recipients(self, kind: NotificationKind) -> list[str]:
        return [n.to_email for n in self.of_kind(kind)]

    def clear(self) -> None:
        self.sent.clear()


class LoggingNotifier:
    """Logs notifications instead of delivering them."""

    def send(
        self,
        kind: NotificationKind,
        to_email: str,
        context: Mapping[str, Any],
    ) -> None:
        logger.info(
            "notification_logged",
            extra={
                "kind": NotificationKind(kind).value,
                "to_email": to_email,
                "workflow_id": context.get("workflow_id"),
            },
        )


@dataclass(frozen=True)
class ScheduledJob:
    key: str
    delay: timedelta


class InMemoryJobScheduler:
    """Dict-backed scheduler with the idempotent-key semantics of a real queue."""

    def __init__(self) -> None:
        self.jobs: dict[str, ScheduledJob] = {}

    def schedule(self, key: str, delay: timedelta) -> bool:
        if key in self.jobs:
            return False
        self.jobs[key] = ScheduledJob(key=key, delay=delay)
        return True

    def cancel(self, key: str) -> None:
        self.jobs.pop(key, None)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@dataclass
class DispatchReport:
    """What a dispatch pass managed to do; failures are counted, not raised."""

    notifications_sent: int = 0
    reminders_scheduled: int = 0
    reminders_cancelled: int = 0
    failures: list[str] = field(default_factory=list)


class SideEffectDispatcher:
    """
    Performs the post-commit effects of orchestrator results.

    Token issuance for email links runs in its own short transaction
    (``session_scope``), after the decision transaction has committed.
    """

    def __init__(
        self,
        notifier: NotificationDispatcher,
        scheduler: JobScheduler,
        settings: CircuitSettings,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ):
        self._notifier = notifier
        self._scheduler = scheduler
        self._settings = settings
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def _guarded(
        self,
        report: DispatchReport,
        effect: str,
        action: Callable[[], Any],
        **fields: Any,
    ) -> tuple[bool, Any]:
        try:
            return True, action()
        except Exception:
            logger.exception(
                "side_effect_failed",
                extra={"effect": effect, **{k: str(v) for k, v in fields.items()}},
            )
            report.failures.append(effect)
            return False, None

    # -- tokens --------------------------------------------------------

    def issue_tokens(
        self,
        step_id: UUID,
        emails: Iterable[str],
    ) -> dict[str, StepTokens]:
        """Issue and commit an approve/refuse pair per email."""
        with session_scope(self._session_factory) as session:
            service = ActionTokenService(
                session, self._clock, ttl_hours=self._settings.token_ttl_hours,
            )
            return service.issue_for_step(step_id, tuple(emails))

    # -- single effects ------------------------------------------------

    def _validator_context(
        self,
        step: ActivatedStep,
        workflow: WorkflowRef,
        tokens: StepTokens,
    ) -> dict[str, Any]:
        return {
            "workflow_id": str(workflow.workflow_id),
            "workflow_title": workflow.title,
            "initiator_name": workflow.initiator_name,
            "step_id": str(step.step_id),
            "step_name": step.name,
            "deadline": step.deadline.isoformat() if step.deadline else None,
            "locale": self._settings.default_locale,
            "approve_url": self._settings.action_url(tokens.approve_token),
            "refuse_url": self._settings.action_url(tokens.refuse_token),
        }

    def notify_validators(
        self,
        step: ActivatedStep,
        workflow: WorkflowRef,
        report: DispatchReport,
        emails: Iterable[str] | None = None,
        kind: NotificationKind = NotificationKind.PENDING_ACTION,
    ) -> None:
        recipients = tuple(emails) if emails is not None else step.validator_emails
        ok, tokens = self._guarded(
            report, "issue_tokens",
            lambda: self.issue_tokens(step.step_id, recipients),
            step_id=step.step_id,
        )
        if not ok:
            return
        for email in recipients:
            pair = tokens[email]
            context = self._validator_context(step, workflow, pair)
            sent, _ = self._guarded(
                report, "notify_validator",
                lambda e=email, c=context: self._notifier.send(kind, e, c),
                step_id=step.step_id, to_email=email,
            )
            if sent:
                report.notifications_sent += 1

    def schedule_reminder(self, step: ActivatedStep, report: DispatchReport) -> None:
        """Schedule a reminder ``reminder_lead_hours`` before the deadline."""
        if step.deadline is None:
            return
        delay = (
            step.deadline
            - self._clock.now()
            - timedelta(hours=self._settings.reminder_lead_hours)
        )
        if delay <= timedelta(0):
            logger.debug(
                "reminder_skipped",
                extra={"step_id": str(step.step_id), "deadline": step.deadline},
            )
            return
        ok, scheduled = self._guarded(
            report, "schedule_reminder",
            lambda: self._scheduler.schedule(reminder_key(step.step_id), delay),
            step_id=step.step_id,
        )
        if ok and scheduled:
            report.reminders_scheduled += 1

    def cancel_reminder(self, step_id: UUID, report: DispatchReport) -> None:
        done, _ = self._guarded(
            report, "cancel_reminder",
            lambda: self._scheduler.cancel(reminder_key(step_id)),
            step_id=step_id,
        )
        if done:
            report.reminders_cancelled += 1

    def notify_initiator(
        self,
        kind: NotificationKind,
        workflow: WorkflowRef,
        report: DispatchReport,
        **context: Any,
    ) -> None:
        payload = {
            "workflow_id": str(workflow.workflow_id),
            "workflow_title": workflow.title,
            "initiator_name": workflow.initiator_name,
            "locale": workflow.initiator_locale,
            "workflow_url": self._settings.workflow_url(workflow.workflow_id),
            **context,
        }
        sent, _ = self._guarded(
            report, "notify_initiator",
            lambda: self._notifier.send(kind, workflow.initiator_email, payload),
            workflow_id=workflow.workflow_id,
        )
        if sent:
            report.notifications_sent += 1

    def _activate(
        self,
        steps: Iterable[ActivatedStep],
        workflow: WorkflowRef,
        report: DispatchReport,
    ) -> None:
        for step in steps:
            self.notify_validators(step, workflow, report)
            self.schedule_reminder(step, report)

    # -- per-operation passes -----------------------------------------

    def after_launch(self, result: LaunchResult) -> DispatchReport:
        report = DispatchReport()
        self._activate(result.activated_steps, result.workflow, report)
        return report

    def after_decision(self, result: DecisionResult) -> DispatchReport:
        report = DispatchReport()
        if result.step_completed:
            self.cancel_reminder(result.step_id, report)
        for step_id in result.superseded_step_ids:
            self.cancel_reminder(step_id, report)

        self._activate(result.activated_steps, result.workflow, report)

        kind = (
            NotificationKind.STEP_APPROVED
            if result.decision == Decision.APPROVE
            else NotificationKind.STEP_REFUSED
        )
        self.notify_initiator(
            kind, result.workflow, report,
            step_name=result.step_name,
            actor_email=result.actor_email,
            comment=result.comment,
        )

        if result.workflow_status == WorkflowStatus.APPROVED:
            self.notify_initiator(NotificationKind.WORKFLOW_COMPLETED, result.workflow, report)
        elif result.workflow_status == WorkflowStatus.REFUSED:
            self.notify_initiator(NotificationKind.WORKFLOW_REFUSED, result.workflow, report)

        logger.info(
            "decision_side_effects_dispatched",
            extra={
                "workflow_id": str(result.workflow_id),
                "notifications_sent": report.notifications_sent,
                "failures": len(report.failures),
            },
        )
        return report

    def after_cancel(self, result: CancelResult) -> DispatchReport:
        report = DispatchReport()
        for step_id in result.step_ids:
            self.cancel_reminder(step_id, report)
        return report

    def renotify(self, targets: Iterable[RenotifyTarget]) -> DispatchReport:
        report = DispatchReport()
        for target in targets:
            self.notify_validators(
                target.step, target.workflow, report, emails=target.pending_emails,
            )
        return report

    def send_deadline_reminder(self, target: RenotifyTarget) -> DispatchReport:
        report = DispatchReport()
        self.notify_validators(
            target.step,
            target.workflow,
            report,
            emails=target.pending_emails,
            kind=NotificationKind.DEADLINE_REMINDER,
        )
        return report
