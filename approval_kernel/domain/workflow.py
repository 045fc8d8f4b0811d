"""
Approval circuit domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for approval circuits: lifecycle enums for workflows,
phases and steps; the circuit structure an initiator submits at launch;
and the frozen result DTOs the orchestrator returns to its callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* A structure has at least one phase, every phase at least one step,
  every step at least one (distinct, normalized) validator email.
* ANY_OF quorum counts lie within ``1..len(validator_emails)``.
* Structures are immutable; ``to_dict()`` always returns a fresh deep
  copy, so a snapshot stored on a workflow can never alias the caller's
  template object.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from approval_kernel.exceptions import InvalidStructureError


# =========================================================================
# Lifecycle enums
# =========================================================================


class WorkflowStatus(str, Enum):
    """Workflow instance lifecycle states."""

    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REFUSED = "REFUSED"
    CANCELLED = "CANCELLED"
    ARCHIVED = "ARCHIVED"


TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.APPROVED,
    WorkflowStatus.REFUSED,
    WorkflowStatus.CANCELLED,
})


class PhaseStatus(str, Enum):
    """Phase instance lifecycle states."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REFUSED = "REFUSED"


class StepStatus(str, Enum):
    """Step instance lifecycle states (same shape as PhaseStatus)."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REFUSED = "REFUSED"


class QuorumRule(str, Enum):
    """How many votes settle a step."""

    UNANIMITY = "UNANIMITY"
    MAJORITY = "MAJORITY"
    ANY_OF = "ANY_OF"


class StepExecution(str, Enum):
    """Declared per step, interpreted per phase."""

    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class Decision(str, Enum):
    """A validator's decision on a step."""

    APPROVE = "APPROVE"
    REFUSE = "REFUSE"


def normalize_email(email: str) -> str:
    """Canonical form for validator email comparison."""
    return email.strip().lower()


# =========================================================================
# Circuit structure
# =========================================================================


def _get(data: Mapping[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


def _as_enum(enum_cls: type[Enum], value: Any, path: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidStructureError(
            f"{value!r} is not one of {allowed}", path
        ) from None


def _as_optional_int(value: Any, path: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidStructureError(f"expected an integer, got {value!r}", path)
    return value


@dataclass(frozen=True)
class StepStructure:
    """One decision point in a circuit definition."""

    name: str
    validator_emails: tuple[str, ...]
    quorum_rule: QuorumRule = QuorumRule.UNANIMITY
    execution: StepExecution = StepExecution.SEQUENTIAL
    quorum_count: int | None = None
    deadline_hours: int | None = None

    def validate(self, path: str = "step") -> None:
        if not self.name or not self.name.strip():
            raise InvalidStructureError("step name is required", path)
        if not self.validator_emails:
            raise InvalidStructureError("at least one validator email is required", path)
        seen: set[str] = set()
        for email in self.validator_emails:
            if not email or "@" not in email:
                raise InvalidStructureError(f"invalid validator email {email!r}", path)
            if email in seen:
                raise InvalidStructureError(f"duplicate validator email {email!r}", path)
            seen.add(email)
        if self.quorum_count is not None and not (
            1 <= self.quorum_count <= len(self.validator_emails)
        ):
            raise InvalidStructureError(
                f"quorum_count must be between 1 and {len(self.validator_emails)}",
                path,
            )
        if self.deadline_hours is not None and self.deadline_hours <= 0:
            raise InvalidStructureError("deadline_hours must be positive", path)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], path: str = "step") -> StepStructure:
        if not isinstance(data, Mapping):
            raise InvalidStructureError("step must be a mapping", path)
        emails = _get(data, "validator_emails", "validatorEmails", ())
        if isinstance(emails, str) or not hasattr(emails, "__iter__"):
            raise InvalidStructureError("validator_emails must be a list", path)
        step = cls(
            name=str(data.get("name", "")).strip(),
            validator_emails=tuple(normalize_email(str(e)) for e in emails),
            quorum_rule=_as_enum(
                QuorumRule,
                _get(data, "quorum_rule", "quorumRule", QuorumRule.UNANIMITY),
                f"{path}.quorum_rule",
            ),
            execution=_as_enum(
                StepExecution,
                data.get("execution", StepExecution.SEQUENTIAL),
                f"{path}.execution",
            ),
            quorum_count=_as_optional_int(
                _get(data, "quorum_count", "quorumCount"), f"{path}.quorum_count"
            ),
            deadline_hours=_as_optional_int(
                _get(data, "deadline_hours", "deadlineHours"), f"{path}.deadline_hours"
            ),
        )
        step.validate(path)
        return step

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "validator_emails": list(self.validator_emails),
            "quorum_rule": self.quorum_rule.value,
            "execution": self.execution.value,
            "quorum_count": self.quorum_count,
            "deadline_hours": self.deadline_hours,
        }


@dataclass(frozen=True)
class PhaseStructure:
    """One ordered stage of a circuit definition."""

    name: str
    steps: tuple[StepStructure, ...]

    def validate(self, path: str = "phase") -> None:
        if not self.name or not self.name.strip():
            raise InvalidStructureError("phase name is required", path)
        if not self.steps:
            raise InvalidStructureError("at least one step is required", path)
        for i, step in enumerate(self.steps):
            step.validate(f"{path}.steps[{i}]")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], path: str = "phase") -> PhaseStructure:
        if not isinstance(data, Mapping):
            raise InvalidStructureError("phase must be a mapping", path)
        raw_steps = data.get("steps") or ()
        phase = cls(
            name=str(data.get("name", "")).strip(),
            steps=tuple(
                StepStructure.from_dict(s, f"{path}.steps[{i}]")
                for i, s in enumerate(raw_steps)
            ),
        )
        phase.validate(path)
        return phase

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class WorkflowStructure:
    """A complete circuit definition: ordered phases of ordered steps."""

    phases: tuple[PhaseStructure, ...]

    def validate(self) -> None:
        if not self.phases:
            raise InvalidStructureError("at least one phase is required", "phases")
        for i, phase in enumerate(self.phases):
            phase.validate(f"phases[{i}]")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowStructure:
        if not isinstance(data, Mapping):
            raise InvalidStructureError("structure must be a mapping")
        structure = cls(
            phases=tuple(
                PhaseStructure.from_dict(p, f"phases[{i}]")
                for i, p in enumerate(data.get("phases") or ())
            ),
        )
        structure.validate()
        return structure

    @classmethod
    def coerce(cls, value: WorkflowStructure | Mapping[str, Any]) -> WorkflowStructure:
        """Accept either a built structure or its mapping form, validated."""
        if isinstance(value, cls):
            value.validate()
            return value
        return cls.from_dict(value)

    def to_dict(self) -> dict[str, Any]:
        return {"phases": [p.to_dict() for p in self.phases]}


# =========================================================================
# Orchestration results
# =========================================================================


@dataclass(frozen=True)
class WorkflowRef:
    """Who to tell about a workflow, captured inside the unit of work."""

    workflow_id: UUID
    title: str
    initiator_id: UUID
    initiator_email: str
    initiator_name: str
    initiator_locale: str
    document_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class ActivatedStep:
    """A step that became IN_PROGRESS and whose validators must be notified."""

    step_id: UUID
    workflow_id: UUID
    phase_order: int
    step_order: int
    name: str
    validator_emails: tuple[str, ...]
    activation: int
    deadline: datetime | None = None
    reactivated: bool = False


@dataclass(frozen=True)
class LaunchResult:
    """Outcome of launching a workflow."""

    workflow_id: UUID
    workflow: WorkflowRef
    activated_steps: tuple[ActivatedStep, ...]
    status: WorkflowStatus = WorkflowStatus.IN_PROGRESS


@dataclass(frozen=True)
class DecisionResult:
    """Outcome of recording one validator's decision."""

    workflow_id: UUID
    step_id: UUID
    step_name: str
    actor_email: str
    decision: Decision
    comment: str
    step_completed: bool
    phase_advanced: bool
    workflow_advanced: bool
    step_status: StepStatus
    phase_status: PhaseStatus
    workflow_status: WorkflowStatus
    workflow: WorkflowRef
    activated_steps: tuple[ActivatedStep, ...] = ()
    # Open sibling steps closed by a phase refusal
    superseded_step_ids: tuple[UUID, ...] = ()

    @property
    def completed_step_id(self) -> UUID | None:
        return self.step_id if self.step_completed else None

    @property
    def workflow_terminal(self) -> bool:
        return self.workflow_status in TERMINAL_WORKFLOW_STATUSES


@dataclass(frozen=True)
class CancelResult:
    """Outcome of cancelling a workflow."""

    workflow_id: UUID
    step_ids: tuple[UUID, ...]
    expired_tokens: int = 0


@dataclass(frozen=True)
class RenotifyTarget:
    """An active step and the validators who have not yet acted on it."""

    step: ActivatedStep
    pending_emails: tuple[str, ...]
    workflow: WorkflowRef
