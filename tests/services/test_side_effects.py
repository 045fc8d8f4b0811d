"""
Tests for the post-commit side-effect dispatcher (approval_services.side_effects).

Covers:
- Reminder scheduling arithmetic and idempotent keys
- Initiator notification payloads
- Per-operation passes (after_decision / after_cancel)
- Failure isolation: a failing collaborator is logged and never raises
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.workflow import (
    ActivatedStep,
    CancelResult,
    Decision,
    DecisionResult,
    PhaseStatus,
    StepStatus,
    WorkflowRef,
    WorkflowStatus,
)
from approval_services.circuit_service import ApprovalCircuitService
from approval_services.side_effects import (
    DispatchReport,
    InMemoryJobScheduler,
    JobScheduler,
    LoggingNotifier,
    NotificationDispatcher,
    NotificationKind,
    RecordingNotifier,
    SideEffectDispatcher,
    reminder_key,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Builders and fakes
# ---------------------------------------------------------------------------


def _ref(**overrides) -> WorkflowRef:
    values = dict(
        workflow_id=uuid4(),
        title="Supplier contract",
        initiator_id=uuid4(),
        initiator_email="initiator@example.com",
        initiator_name="Iris Initiator",
        initiator_locale="en",
    )
    values.update(overrides)
    return WorkflowRef(**values)


def _activated(deadline=None, emails=("a@x.com",)) -> ActivatedStep:
    return ActivatedStep(
        step_id=uuid4(),
        workflow_id=uuid4(),
        phase_order=0,
        step_order=0,
        name="Legal review",
        validator_emails=emails,
        activation=1,
        deadline=deadline,
    )


def _decision(ref, **overrides) -> DecisionResult:
    values = dict(
        workflow_id=ref.workflow_id,
        step_id=uuid4(),
        step_name="Legal review",
        actor_email="a@x.com",
        decision=Decision.APPROVE,
        comment="fine",
        step_completed=False,
        phase_advanced=False,
        workflow_advanced=False,
        step_status=StepStatus.IN_PROGRESS,
        phase_status=PhaseStatus.IN_PROGRESS,
        workflow_status=WorkflowStatus.IN_PROGRESS,
        workflow=ref,
    )
    values.update(overrides)
    return DecisionResult(**values)


class ExplodingNotifier:
    def send(self, kind, to_email, context):
        raise ConnectionError("smtp down")


class FlakyNotifier(RecordingNotifier):
    """Fails for one address only."""

    def __init__(self, bad_email: str):
        super().__init__()
        self.bad_email = bad_email

    def send(self, kind, to_email, context):
        if to_email == self.bad_email:
            raise ConnectionError(f"mailbox {to_email} unavailable")
        super().send(kind, to_email, context)


class ExplodingScheduler(InMemoryJobScheduler):
    def schedule(self, key, delay):
        raise TimeoutError("queue unavailable")


def _no_database():
    raise RuntimeError("database unavailable")


@pytest.fixture
def clock():
    return DeterministicClock(NOW)


@pytest.fixture
def dispatcher(notifier, scheduler, circuit_settings, clock):
    return SideEffectDispatcher(
        notifier, scheduler, circuit_settings, session_factory=_no_database, clock=clock,
    )


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class TestCollaborators:

    def test_protocols_satisfied(self):
        assert isinstance(RecordingNotifier(), NotificationDispatcher)
        assert isinstance(LoggingNotifier(), NotificationDispatcher)
        assert isinstance(InMemoryJobScheduler(), JobScheduler)

    def test_scheduler_keys_are_idempotent(self):
        scheduler = InMemoryJobScheduler()
        assert scheduler.schedule("reminder-1", timedelta(hours=1))
        assert not scheduler.schedule("reminder-1", timedelta(hours=5))
        assert scheduler.jobs["reminder-1"].delay == timedelta(hours=1)
        scheduler.cancel("reminder-1")
        scheduler.cancel("reminder-1")
        assert scheduler.jobs == {}

    def test_reminder_key(self):
        step_id = uuid4()
        assert reminder_key(step_id) == f"reminder-{step_id}"

    def test_logging_notifier(self, captured_logs):
        LoggingNotifier().send(NotificationKind.STEP_APPROVED, "i@x.com", {"workflow_id": "w"})
        record = [r for r in captured_logs() if r["message"] == "notification_logged"][0]
        assert record["kind"] == "step_approved"
        assert record["to_email"] == "i@x.com"


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


class TestReminders:

    def test_delay_is_deadline_minus_lead(self, dispatcher, scheduler):
        step = _activated(deadline=NOW + timedelta(hours=72))
        report = DispatchReport()
        dispatcher.schedule_reminder(step, report)

        job = scheduler.jobs[reminder_key(step.step_id)]
        assert job.delay == timedelta(hours=48)
        assert report.reminders_scheduled == 1

    def test_skipped_when_lead_already_passed(self, dispatcher, scheduler):
        step = _activated(deadline=NOW + timedelta(hours=24))
        report = DispatchReport()
        dispatcher.schedule_reminder(step, report)
        assert scheduler.jobs == {}
        assert report.reminders_scheduled == 0

    def test_no_deadline_no_reminder(self, dispatcher, scheduler):
        dispatcher.schedule_reminder(_activated(), DispatchReport())
        assert scheduler.jobs == {}

    def test_duplicate_schedule_not_counted(self, dispatcher):
        step = _activated(deadline=NOW + timedelta(hours=72))
        report = DispatchReport()
        dispatcher.schedule_reminder(step, report)
        dispatcher.schedule_reminder(step, report)
        assert report.reminders_scheduled == 1

    def test_cancel(self, dispatcher, scheduler):
        step = _activated(deadline=NOW + timedelta(hours=72))
        report = DispatchReport()
        dispatcher.schedule_reminder(step, report)
        dispatcher.cancel_reminder(step.step_id, report)
        assert scheduler.jobs == {}
        assert report.reminders_cancelled == 1


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


class TestAfterDecision:

    def test_initiator_told_about_each_decision(self, dispatcher, notifier):
        ref = _ref()
        dispatcher.after_decision(_decision(ref))

        sent = notifier.of_kind(NotificationKind.STEP_APPROVED)
        assert [n.to_email for n in sent] == ["initiator@example.com"]
        context = sent[0].context
        assert context["step_name"] == "Legal review"
        assert context["comment"] == "fine"
        assert context["locale"] == "en"
        assert context["workflow_url"] == f"https://app.test/workflows/{ref.workflow_id}"

    def test_refusal_of_workflow(self, dispatcher, notifier):
        ref = _ref()
        dispatcher.after_decision(_decision(
            ref,
            decision=Decision.REFUSE,
            step_completed=True,
            step_status=StepStatus.REFUSED,
            phase_status=PhaseStatus.REFUSED,
            workflow_status=WorkflowStatus.REFUSED,
        ))
        assert notifier.recipients(NotificationKind.STEP_REFUSED) == ["initiator@example.com"]
        assert notifier.recipients(NotificationKind.WORKFLOW_REFUSED) == ["initiator@example.com"]
        assert notifier.of_kind(NotificationKind.WORKFLOW_COMPLETED) == []

    def test_completion(self, dispatcher, notifier):
        dispatcher.after_decision(_decision(
            _ref(), step_completed=True, workflow_advanced=True,
            step_status=StepStatus.APPROVED, phase_status=PhaseStatus.APPROVED,
            workflow_status=WorkflowStatus.APPROVED,
        ))
        assert len(notifier.of_kind(NotificationKind.WORKFLOW_COMPLETED)) == 1

    def test_completed_and_superseded_reminders_cancelled(self, dispatcher, scheduler):
        ref = _ref()
        sibling = _activated(deadline=NOW + timedelta(hours=72))
        decided = _activated(deadline=NOW + timedelta(hours=72))
        report = DispatchReport()
        dispatcher.schedule_reminder(sibling, report)
        dispatcher.schedule_reminder(decided, report)

        result = dispatcher.after_decision(_decision(
            ref,
            step_id=decided.step_id,
            decision=Decision.REFUSE,
            step_completed=True,
            step_status=StepStatus.REFUSED,
            superseded_step_ids=(sibling.step_id,),
        ))
        assert scheduler.jobs == {}
        assert result.reminders_cancelled == 2

    def test_open_step_reminder_kept(self, dispatcher, scheduler):
        step = _activated(deadline=NOW + timedelta(hours=72))
        dispatcher.schedule_reminder(step, DispatchReport())
        dispatcher.after_decision(_decision(_ref(), step_id=step.step_id))
        assert reminder_key(step.step_id) in scheduler.jobs


class TestAfterCancel:

    def test_every_step_reminder_cancelled(self, dispatcher, scheduler):
        steps = [_activated(deadline=NOW + timedelta(hours=72)) for _ in range(3)]
        for step in steps:
            dispatcher.schedule_reminder(step, DispatchReport())

        report = dispatcher.after_cancel(
            CancelResult(workflow_id=uuid4(), step_ids=tuple(s.step_id for s in steps))
        )
        assert scheduler.jobs == {}
        assert report.reminders_cancelled == 3


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailureIsolation:

    def test_failing_notifier_never_raises(self, scheduler, circuit_settings, clock, captured_logs):
        dispatcher = SideEffectDispatcher(
            ExplodingNotifier(), scheduler, circuit_settings,
            session_factory=_no_database, clock=clock,
        )
        report = dispatcher.after_decision(_decision(
            _ref(), step_completed=True, workflow_advanced=True,
            step_status=StepStatus.APPROVED, phase_status=PhaseStatus.APPROVED,
            workflow_status=WorkflowStatus.APPROVED,
        ))

        assert report.notifications_sent == 0
        assert report.failures == ["notify_initiator", "notify_initiator"]
        failures = [r for r in captured_logs() if r["message"] == "side_effect_failed"]
        assert len(failures) == 2
        assert failures[0]["effect"] == "notify_initiator"
        assert failures[0]["exc_type"] == "ConnectionError"

    def test_token_issue_failure_skips_emails(self, dispatcher, notifier):
        report = DispatchReport()
        dispatcher.notify_validators(_activated(), _ref(), report)
        assert report.failures == ["issue_tokens"]
        assert notifier.sent == []

    def test_failing_scheduler_never_raises(self, notifier, circuit_settings, clock):
        dispatcher = SideEffectDispatcher(
            notifier, ExplodingScheduler(), circuit_settings,
            session_factory=_no_database, clock=clock,
        )
        report = DispatchReport()
        dispatcher.schedule_reminder(_activated(deadline=NOW + timedelta(hours=72)), report)
        assert report.failures == ["schedule_reminder"]
        assert report.reminders_scheduled == 0

    def test_one_bad_recipient_does_not_block_others(
        self, db_session_factory, committed_initiator, make_step, make_structure,
        scheduler, circuit_settings, deterministic_clock,
    ):
        notifier = FlakyNotifier("a@x.com")
        dispatcher = SideEffectDispatcher(
            notifier, scheduler, circuit_settings,
            session_factory=db_session_factory, clock=deterministic_clock,
        )
        service = ApprovalCircuitService(
            session_factory=db_session_factory,
            dispatcher=dispatcher,
            clock=deterministic_clock,
            config=circuit_settings,
        )
        structure = make_structure(("P", [make_step("Vote", ("a@x.com", "b@x.com", "c@x.com"))]))
        service.launch(structure, committed_initiator, [], "Flaky")

        assert notifier.recipients(NotificationKind.PENDING_ACTION) == ["b@x.com", "c@x.com"]
