"""
AuditorService -- hash-chained audit trail of workflow state changes.

Responsibility:
    Appends one AuditEvent per significant change (launch, settled step,
    reactivation, workflow outcome, cancel, archive) and checks the chain
    for tampering.

Architecture position:
    Kernel > Services.  Called by WorkflowOrchestrator inside its
    transaction; never commits.

Invariants enforced:
    - ``seq`` comes from SequenceService, whose counter-row lock also
      serializes reading the chain tail, so two writers cannot both link
      to the same predecessor.
    - ``hash`` covers the entity, action, payload digest and the previous
      event's hash.  Rows are append-only (see db/immutability.py).

Failure modes:
    - AuditChainBrokenError from ``validate_chain`` on the first event
      whose stored hash or back-link does not match.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.utils.hashing import GENESIS_MARKER, hash_audit_event, hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    entity_type: str
    entity_id: UUID
    occurred_at: datetime
    actor_id: UUID | None
    actor_email: str | None
    payload: dict[str, Any]
    hash: str

    @classmethod
    def from_event(cls, event: AuditEvent) -> "AuditTraceEntry":
        return cls(
            seq=event.seq,
            action=AuditAction(event.action),
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            occurred_at=event.occurred_at,
            actor_id=event.actor_id,
            actor_email=event.actor_email,
            payload=event.payload or {},
            hash=event.hash,
        )


def _expected_hash(event: AuditEvent) -> str:
    return hash_audit_event(
        entity_type=event.entity_type,
        entity_id=str(event.entity_id),
        action=AuditAction(event.action).value,
        payload_hash=hash_payload(event.payload or {}),
        prev_hash=event.prev_hash,
    )


class AuditorService:
    """Flush-only writer and validator of the audit chain."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def _chain_tail(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _append(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        workflow_id: UUID | None = None,
        actor_id: UUID | None = None,
        actor_email: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        # Sequence first: its row lock guards the tail read below
        seq = self._sequences.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._chain_tail()
        body = dict(payload or {})
        body_hash = hash_payload(body)

        event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            workflow_id=workflow_id,
            action=action.value,
            actor_id=actor_id,
            actor_email=actor_email,
            occurred_at=self._clock.now(),
            payload=body,
            payload_hash=body_hash,
            prev_hash=prev_hash,
            hash=hash_audit_event(
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action.value,
                payload_hash=body_hash,
                prev_hash=prev_hash,
            ),
        )
        self._session.add(event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={"action": action.value, "entity_type": entity_type, "seq": seq},
        )
        return event

    # -- recording ------------------------------------------------------

    def record_workflow_launched(
        self,
        workflow_id: UUID,
        initiator_id: UUID,
        title: str,
        document_ids: list[UUID],
        phase_count: int,
    ) -> AuditEvent:
        return self._append(
            entity_type="Workflow",
            entity_id=workflow_id,
            action=AuditAction.WORKFLOW_LAUNCHED,
            workflow_id=workflow_id,
            actor_id=initiator_id,
            payload={
                "title": title,
                "document_ids": [str(d) for d in document_ids],
                "phase_count": phase_count,
            },
        )

    def record_step_decided(
        self,
        workflow_id: UUID,
        step_id: UUID,
        step_name: str,
        approved: bool,
        actor_email: str,
        actor_id: UUID | None,
        comment: str,
        activation: int,
    ) -> AuditEvent:
        """Record the decision that settled a step."""
        return self._append(
            entity_type="Step",
            entity_id=step_id,
            action=AuditAction.STEP_APPROVED if approved else AuditAction.STEP_REFUSED,
            workflow_id=workflow_id,
            actor_id=actor_id,
            actor_email=actor_email,
            payload={
                "step_name": step_name,
                "comment": comment,
                "activation": activation,
            },
        )

    def record_step_reactivated(
        self,
        workflow_id: UUID,
        step_id: UUID,
        step_name: str,
        activation: int,
        refused_phase_order: int,
    ) -> AuditEvent:
        return self._append(
            entity_type="Step",
            entity_id=step_id,
            action=AuditAction.STEP_REACTIVATED,
            workflow_id=workflow_id,
            payload={
                "step_name": step_name,
                "activation": activation,
                "refused_phase_order": refused_phase_order,
            },
        )

    def record_workflow_outcome(
        self,
        workflow_id: UUID,
        approved: bool,
        actor_email: str | None = None,
    ) -> AuditEvent:
        return self._append(
            entity_type="Workflow",
            entity_id=workflow_id,
            action=AuditAction.WORKFLOW_APPROVED if approved else AuditAction.WORKFLOW_REFUSED,
            workflow_id=workflow_id,
            actor_email=actor_email,
        )

    def record_workflow_cancelled(
        self,
        workflow_id: UUID,
        initiator_id: UUID,
        expired_tokens: int,
    ) -> AuditEvent:
        return self._append(
            entity_type="Workflow",
            entity_id=workflow_id,
            action=AuditAction.WORKFLOW_CANCELLED,
            workflow_id=workflow_id,
            actor_id=initiator_id,
            payload={"expired_tokens": expired_tokens},
        )

    def record_workflow_archived(
        self,
        workflow_id: UUID,
        initiator_id: UUID,
        final_status: str,
    ) -> AuditEvent:
        return self._append(
            entity_type="Workflow",
            entity_id=workflow_id,
            action=AuditAction.WORKFLOW_ARCHIVED,
            workflow_id=workflow_id,
            actor_id=initiator_id,
            payload={"final_status": final_status},
        )

    # -- reading --------------------------------------------------------

    def validate_chain(self) -> bool:
        """
        Walk the whole chain in ``seq`` order.

        Returns True when intact (an empty chain is intact).

        Raises:
            AuditChainBrokenError: at the first mismatching event.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        predecessor: str | None = None
        for event in events:
            if event.prev_hash != predecessor:
                self._broken(event, "link", predecessor or GENESIS_MARKER, event.prev_hash)
            recomputed = _expected_hash(event)
            if event.hash != recomputed:
                self._broken(event, "hash", recomputed, event.hash)
            predecessor = event.hash

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    @staticmethod
    def _broken(event: AuditEvent, check: str, expected: str, actual: str | None) -> None:
        logger.critical(
            "audit_chain_broken",
            extra={"audit_event_id": str(event.id), "seq": event.seq, "check": check},
        )
        raise AuditChainBrokenError(str(event.id), expected, actual or GENESIS_MARKER)

    def get_workflow_trail(self, workflow_id: UUID) -> tuple[AuditTraceEntry, ...]:
        """Audit events of one workflow in chain order."""
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.workflow_id == workflow_id)
            .order_by(AuditEvent.seq)
        ).scalars().all()
        return tuple(AuditTraceEntry.from_event(e) for e in events)
