"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Validator decisions and audit events are history.  A decision, once
recorded, is never edited: reactivating a step opens a new activation
instead of rewriting or deleting earlier rows.  Audit events carry a hash
chain that any edit would break.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_update event] --> _reject_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _reject_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | When Immutable         | Why
---------------------|------------------------|----------------------------------
WorkflowAction       | ALWAYS (from creation) | Source of truth for quorum math
AuditEvent           | ALWAYS (from creation) | Audit trail is hash-chained

===============================================================================
USAGE
===============================================================================

Called by init_engine_from_url(); safe to call more than once:

    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    from approval_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _reject_action_update(mapper, connection, target):
    _blocked(
        "WorkflowAction", target, "UPDATE",
        "Recorded decisions are immutable and cannot be modified",
    )


def _reject_action_delete(mapper, connection, target):
    _blocked(
        "WorkflowAction", target, "DELETE",
        "Recorded decisions are immutable and cannot be deleted",
    )


def _reject_audit_event_update(mapper, connection, target):
    _blocked(
        "AuditEvent", target, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _reject_audit_event_delete(mapper, connection, target):
    _blocked(
        "AuditEvent", target, "DELETE",
        "Audit events are immutable and cannot be deleted",
    )


def _listeners():
    from approval_kernel.models.action import WorkflowActionModel
    from approval_kernel.models.audit_event import AuditEvent

    return (
        (WorkflowActionModel, "before_update", _reject_action_update),
        (WorkflowActionModel, "before_delete", _reject_action_delete),
        (AuditEvent, "before_update", _reject_audit_event_update),
        (AuditEvent, "before_delete", _reject_audit_event_delete),
    )


def register_immutability_listeners():
    """Register all append-only enforcement listeners (idempotent)."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove append-only enforcement listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
