"""
ORM model tests for the approval persistence layer.

Tests: WorkflowActionModel, AuditEvent -- append-only enforcement via ORM
listeners -- and the structural constraints backing the orchestrator's
checks (one decision per activation, valid statuses).

These are ORM-level tests only.  Service-layer behaviour is tested elsewhere.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from approval_kernel.domain.workflow import Decision
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.models.action import WorkflowActionModel
from approval_kernel.models.audit_event import AuditEvent
from approval_kernel.models.workflow import StepInstanceModel, WorkflowInstanceModel


@pytest.fixture
def decided(session, orchestrator, initiator, two_phase_structure):
    launched = orchestrator.launch(two_phase_structure, initiator.id, [], "Immutable")
    step_id = launched.activated_steps[0].step_id
    orchestrator.record_decision(step_id, "a@x.com", Decision.APPROVE, "ok")
    action = session.execute(
        select(WorkflowActionModel).where(WorkflowActionModel.step_id == step_id)
    ).scalar_one()
    return launched, action


class TestActionImmutability:

    def test_update_rejected(self, session, decided):
        _, action = decided
        action.comment = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "WorkflowAction"

    def test_delete_rejected(self, session, decided):
        _, action = decided
        session.delete(action)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAuditEventImmutability:

    def test_update_rejected(self, session, decided):
        launched, _ = decided
        event = session.execute(
            select(AuditEvent).where(AuditEvent.workflow_id == launched.workflow_id)
        ).scalars().first()
        event.payload = {"title": "forged"}
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_rejected(self, session, decided, captured_logs):
        launched, _ = decided
        event = session.execute(
            select(AuditEvent).where(AuditEvent.workflow_id == launched.workflow_id)
        ).scalars().first()
        session.delete(event)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "DELETE"


class TestConstraints:

    def test_one_decision_per_activation(self, session, decided, deterministic_clock):
        launched, action = decided
        savepoint = session.begin_nested()
        session.add(
            WorkflowActionModel(
                workflow_id=action.workflow_id,
                step_id=action.step_id,
                activation=action.activation,
                actor_email=action.actor_email,
                decision="REFUSE",
                comment="again",
                created_at=deterministic_clock.now(),
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()
        savepoint.rollback()

    def test_next_activation_may_repeat_actor(self, session, decided, deterministic_clock):
        _, action = decided
        session.add(
            WorkflowActionModel(
                workflow_id=action.workflow_id,
                step_id=action.step_id,
                activation=action.activation + 1,
                actor_email=action.actor_email,
                decision="APPROVE",
                comment="second activation",
                created_at=deterministic_clock.now(),
            )
        )
        session.flush()

    def test_invalid_step_status_rejected(self, session, decided):
        launched, _ = decided
        step = session.get(StepInstanceModel, launched.activated_steps[0].step_id)
        savepoint = session.begin_nested()
        step.status = "MAYBE"
        with pytest.raises(IntegrityError):
            session.flush()
        savepoint.rollback()

    def test_structure_snapshot_stored_as_json(self, session, decided):
        launched, _ = decided
        workflow = session.get(WorkflowInstanceModel, launched.workflow_id)
        assert workflow.structure["phases"][0]["steps"][0]["quorum_rule"] == "UNANIMITY"

    def test_unknown_initiator_rejected(self, session, deterministic_clock):
        now = deterministic_clock.now()
        savepoint = session.begin_nested()
        session.add(
            WorkflowInstanceModel(
                title="Orphan", status="DRAFT", current_phase_index=0,
                structure={"phases": []}, initiator_id=uuid4(),
                created_at=now, updated_at=now,
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()
        savepoint.rollback()
