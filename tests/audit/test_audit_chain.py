"""
Audit chain validation tests.

Verifies:
- Every state change of a workflow lands in its trail
- Hash chain integrity across workflows
- Tamper detection (rows edited behind the ORM's back)
"""

from contextlib import contextmanager

import pytest
from sqlalchemy import select, update

from approval_kernel.domain.workflow import Decision
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.utils.hashing import hash_audit_event, hash_payload


@contextmanager
def tampered(session, event, **values):
    """Edit an audit row with a Core UPDATE, as a direct DB user would."""
    savepoint = session.begin_nested()
    session.execute(
        update(AuditEvent).where(AuditEvent.id == event.id).values(**values)
    )
    session.expire_all()
    try:
        yield
    finally:
        savepoint.rollback()


@pytest.fixture
def two_workflows(orchestrator, initiator, two_phase_structure):
    first = orchestrator.launch(two_phase_structure, initiator.id, [], "First")
    second = orchestrator.launch(two_phase_structure, initiator.id, [], "Second")
    orchestrator.record_decision(first.activated_steps[0].step_id, "a@x.com", Decision.REFUSE, "no")
    orchestrator.cancel(second.workflow_id, initiator.id)
    return first, second


class TestTrail:

    def test_trails_are_per_workflow(self, auditor_service, two_workflows):
        first, second = two_workflows
        assert [e.action for e in auditor_service.get_workflow_trail(first.workflow_id)] == [
            AuditAction.WORKFLOW_LAUNCHED,
            AuditAction.STEP_REFUSED,
            AuditAction.WORKFLOW_REFUSED,
        ]
        assert [e.action for e in auditor_service.get_workflow_trail(second.workflow_id)] == [
            AuditAction.WORKFLOW_LAUNCHED,
            AuditAction.WORKFLOW_CANCELLED,
        ]

    def test_decision_payload(self, auditor_service, two_workflows):
        first, _ = two_workflows
        refused = auditor_service.get_workflow_trail(first.workflow_id)[1]
        assert refused.actor_email == "a@x.com"
        assert refused.payload == {"step_name": "Legal review", "comment": "no", "activation": 1}

    def test_hashes_recompute(self, session, two_workflows):
        events = session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars().all()
        for event in events:
            assert event.hash == hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )


class TestChainValidation:

    def test_valid_chain(self, auditor_service, two_workflows):
        assert auditor_service.validate_chain()

    def test_empty_chain_valid(self, auditor_service):
        assert auditor_service.validate_chain()

    def test_payload_tamper_detected(self, session, auditor_service, two_workflows):
        first, _ = two_workflows
        event = auditor_service.get_workflow_trail(first.workflow_id)[1]
        row = session.execute(select(AuditEvent).where(AuditEvent.seq == event.seq)).scalar_one()
        with tampered(session, row, payload={"comment": "yes"}):
            with pytest.raises(AuditChainBrokenError):
                auditor_service.validate_chain()

    def test_broken_link_detected(self, session, auditor_service, two_workflows):
        rows = session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars().all()
        with tampered(session, rows[2], prev_hash="0" * 64):
            with pytest.raises(AuditChainBrokenError):
                auditor_service.validate_chain()
