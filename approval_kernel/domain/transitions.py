"""
Status transition table (``approval_kernel.domain.transitions``).

Responsibility
--------------
The single definition of which status changes are legal for workflows,
phases and steps.  The orchestrator calls ``validate_transition`` before
every status mutation; no other module decides legality.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.

Invariants enforced
-------------------
* Workflow: DRAFT -> {IN_PROGRESS, CANCELLED}; IN_PROGRESS -> {APPROVED,
  REFUSED, CANCELLED}; {APPROVED, REFUSED, CANCELLED} -> ARCHIVED;
  ARCHIVED is final.
* Phase and step share one table: PENDING -> IN_PROGRESS; IN_PROGRESS ->
  {APPROVED, REFUSED}.  A settled status leaves only by opening a new
  activation: -> IN_PROGRESS when refusal routing reactivates it, or
  -> PENDING when its phase is re-entered and it waits its turn.  Within
  one activation APPROVED and REFUSED are final.

Failure modes
-------------
* ``InvalidTransitionError`` for any edge not in the table.  Seeing one
  means the orchestrator asked for something it should never ask for, so
  it is logged at error level before being raised.
"""

from __future__ import annotations

from enum import Enum

from approval_kernel.domain.workflow import PhaseStatus, StepStatus, WorkflowStatus
from approval_kernel.exceptions import InvalidTransitionError
from approval_kernel.logging_config import get_logger

logger = get_logger("domain.transitions")


class EntityKind(str, Enum):
    """Entity whose status is changing."""

    WORKFLOW = "workflow"
    PHASE = "phase"
    STEP = "step"


WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.DRAFT: frozenset({
        WorkflowStatus.IN_PROGRESS,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.IN_PROGRESS: frozenset({
        WorkflowStatus.APPROVED,
        WorkflowStatus.REFUSED,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.APPROVED: frozenset({WorkflowStatus.ARCHIVED}),
    WorkflowStatus.REFUSED: frozenset({WorkflowStatus.ARCHIVED}),
    WorkflowStatus.CANCELLED: frozenset({WorkflowStatus.ARCHIVED}),
    WorkflowStatus.ARCHIVED: frozenset(),
}

PHASE_TRANSITIONS: dict[PhaseStatus, frozenset[PhaseStatus]] = {
    PhaseStatus.PENDING: frozenset({PhaseStatus.IN_PROGRESS}),
    PhaseStatus.IN_PROGRESS: frozenset({
        PhaseStatus.APPROVED,
        PhaseStatus.REFUSED,
    }),
    # Reopened by a refusal in the following phase
    PhaseStatus.APPROVED: frozenset({PhaseStatus.IN_PROGRESS, PhaseStatus.PENDING}),
    PhaseStatus.REFUSED: frozenset({PhaseStatus.IN_PROGRESS, PhaseStatus.PENDING}),
}

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.IN_PROGRESS: frozenset({
        StepStatus.APPROVED,
        StepStatus.REFUSED,
    }),
    StepStatus.APPROVED: frozenset({StepStatus.IN_PROGRESS, StepStatus.PENDING}),
    StepStatus.REFUSED: frozenset({StepStatus.IN_PROGRESS, StepStatus.PENDING}),
}

_TABLES: dict[EntityKind, tuple[type[Enum], dict]] = {
    EntityKind.WORKFLOW: (WorkflowStatus, WORKFLOW_TRANSITIONS),
    EntityKind.PHASE: (PhaseStatus, PHASE_TRANSITIONS),
    EntityKind.STEP: (StepStatus, STEP_TRANSITIONS),
}


def is_allowed_transition(entity: EntityKind | str, from_status: str, to_status: str) -> bool:
    """Return True iff ``from_status -> to_status`` is in the entity's table."""
    status_cls, table = _TABLES[EntityKind(entity)]
    try:
        source = status_cls(from_status)
        target = status_cls(to_status)
    except ValueError:
        return False
    return target in table.get(source, frozenset())


def validate_transition(entity: EntityKind | str, from_status: str, to_status: str) -> None:
    """
    Raise unless the transition is legal.

    Raises:
        InvalidTransitionError: edge not in the table.
    """
    kind = EntityKind(entity)
    if is_allowed_transition(kind, from_status, to_status):
        return
    source = getattr(from_status, "value", from_status)
    target = getattr(to_status, "value", to_status)
    logger.error(
        "invalid_transition_attempted",
        extra={
            "entity": kind.value,
            "from_status": source,
            "to_status": target,
        },
    )
    raise InvalidTransitionError(kind.value, source, target)


def validate_workflow_transition(from_status: str, to_status: str) -> None:
    validate_transition(EntityKind.WORKFLOW, from_status, to_status)


def validate_phase_transition(from_status: str, to_status: str) -> None:
    validate_transition(EntityKind.PHASE, from_status, to_status)


def validate_step_transition(from_status: str, to_status: str) -> None:
    validate_transition(EntityKind.STEP, from_status, to_status)
