"""
Concurrency tests for decision recording.

Real threads, real commits: every worker runs its own transaction through
ApprovalCircuitService.  A Barrier releases all workers together so their
transactions overlap as much as the database allows.

On SQLite writers serialize on BEGIN IMMEDIATE; on PostgreSQL
(DATABASE_URL=postgresql://...) they serialize on the workflow row lock.
Either way the invariants below must hold.

Run with: pytest tests/concurrency -v
Skip with: pytest -m "not slow_locks"
"""

from threading import Barrier, Lock, Thread

import pytest
from sqlalchemy import func, select

from approval_kernel.domain.tokens import TokenStatus
from approval_kernel.domain.workflow import (
    Decision,
    QuorumRule,
    StepExecution,
    StepStatus,
    WorkflowStatus,
)
from approval_kernel.exceptions import (
    DuplicateDecisionError,
    StepAlreadyDecidedError,
)
from approval_kernel.models.action import WorkflowActionModel
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.selectors.workflow_selector import WorkflowSelector
from approval_services.side_effects import NotificationKind

pytestmark = pytest.mark.slow_locks


def _run_together(tasks):
    """Run callables in threads released by one barrier; returns (results, errors)."""
    barrier = Barrier(len(tasks))
    lock = Lock()
    results, errors = [], []

    def worker(task):
        barrier.wait()
        try:
            value = task()
        except Exception as exc:
            with lock:
                errors.append(exc)
        else:
            with lock:
                results.append(value)

    threads = [Thread(target=worker, args=(t,)) for t in tasks]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=120)
    return results, errors


def _count(db_session_factory, stmt) -> int:
    with db_session_factory() as s:
        return s.execute(stmt).scalar_one()


class TestTokenRaces:

    def test_same_token_used_once(self, circuit_service, notifier, committed_initiator, make_step, make_structure):
        structure = make_structure(("P", [make_step("Sign", ("a@x.com", "b@x.com"))]))
        circuit_service.launch(structure, committed_initiator, [], "Token race")
        link = notifier.recipients(NotificationKind.PENDING_ACTION).index("a@x.com")
        raw = notifier.of_kind(NotificationKind.PENDING_ACTION)[link].context["approve_url"].rsplit("/", 1)[-1]

        results, errors = _run_together(
            [lambda i=i: circuit_service.decide_with_token(raw, f"click {i}") for i in range(8)]
        )

        assert errors == []
        assert sum(1 for r in results if r.ok) == 1
        assert sum(1 for r in results if r.status == TokenStatus.ALREADY_USED) == 7


class TestQuorumRaces:

    def test_parallel_majority_settles_once(
        self, circuit_service, db_session_factory, committed_initiator, make_step, make_structure,
    ):
        emails = tuple(f"v{i}@x.com" for i in range(5))
        structure = make_structure((
            "Board",
            [make_step("Vote", emails, rule=QuorumRule.MAJORITY, execution=StepExecution.PARALLEL)],
        ))
        launched = circuit_service.launch(structure, committed_initiator, [], "Board race")
        step_id = launched.activated_steps[0].step_id

        results, errors = _run_together([
            lambda e=e: circuit_service.record_decision(step_id, e, Decision.APPROVE, "aye")
            for e in emails
        ])

        # Three approvals settle a five-seat majority; later voters find it decided
        assert len(results) == 3
        assert len(errors) == 2
        assert all(isinstance(e, StepAlreadyDecidedError) for e in errors)
        assert sum(1 for r in results if r.step_completed) == 1
        assert sum(1 for r in results if r.workflow_advanced) == 1

        assert _count(
            db_session_factory,
            select(func.count()).select_from(WorkflowActionModel)
            .where(WorkflowActionModel.step_id == step_id),
        ) == 3
        assert _count(
            db_session_factory,
            select(func.count()).select_from(AuditEvent).where(
                AuditEvent.workflow_id == launched.workflow_id,
                AuditEvent.action == AuditAction.STEP_APPROVED.value,
            ),
        ) == 1
        with db_session_factory() as s:
            view = WorkflowSelector(s).get_workflow(launched.workflow_id)
        assert view.status == WorkflowStatus.APPROVED
        assert view.phases[0].steps[0].decision_count == 3

    def test_same_validator_twice(
        self, circuit_service, db_session_factory, committed_initiator, make_step, make_structure,
    ):
        structure = make_structure(("P", [make_step("Sign", ("a@x.com", "b@x.com"))]))
        launched = circuit_service.launch(structure, committed_initiator, [], "Double submit")
        step_id = launched.activated_steps[0].step_id

        results, errors = _run_together([
            lambda: circuit_service.record_decision(step_id, "a@x.com", Decision.APPROVE, "one"),
            lambda: circuit_service.record_decision(step_id, "a@x.com", Decision.REFUSE, "two"),
        ])

        assert len(results) == 1
        assert len(errors) == 1
        # The loser either sees the duplicate or, if the winner refused, a settled step
        assert isinstance(errors[0], (DuplicateDecisionError, StepAlreadyDecidedError))
        assert _count(
            db_session_factory,
            select(func.count()).select_from(WorkflowActionModel)
            .where(WorkflowActionModel.step_id == step_id),
        ) == 1


class TestPhaseRaces:

    def test_parallel_steps_advance_phase_once(
        self, circuit_service, notifier, db_session_factory, committed_initiator,
        make_step, make_structure,
    ):
        structure = make_structure(
            (
                "Review",
                [
                    make_step("Legal", ("l@x.com",), execution=StepExecution.PARALLEL),
                    make_step("Tech", ("t@x.com",), execution=StepExecution.PARALLEL),
                    make_step("Risk", ("r@x.com",), execution=StepExecution.PARALLEL),
                ],
            ),
            ("Sign", [make_step("Signature", ("ceo@x.com",))]),
        )
        launched = circuit_service.launch(structure, committed_initiator, [], "Phase race")
        steps = {s.validator_emails[0]: s.step_id for s in launched.activated_steps}

        results, errors = _run_together([
            lambda e=e, sid=sid: circuit_service.record_decision(sid, e, Decision.APPROVE, "ok")
            for e, sid in steps.items()
        ])

        assert errors == []
        assert sum(1 for r in results if r.phase_advanced) == 1
        assert notifier.recipients(NotificationKind.PENDING_ACTION).count("ceo@x.com") == 1
        with db_session_factory() as s:
            view = WorkflowSelector(s).get_workflow(launched.workflow_id)
        assert view.current_phase_index == 1
        assert view.phases[1].steps[0].status == StepStatus.IN_PROGRESS
