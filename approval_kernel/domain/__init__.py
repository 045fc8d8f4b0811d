"""
Pure domain layer.

Value objects, lifecycle enums and the transition table, with NO
dependencies on the ORM, the database or I/O.
"""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.tokens import (
    StepTokens,
    TokenContext,
    TokenResolution,
    TokenStatus,
)
from approval_kernel.domain.transitions import (
    EntityKind,
    is_allowed_transition,
    validate_phase_transition,
    validate_step_transition,
    validate_transition,
    validate_workflow_transition,
)
from approval_kernel.domain.workflow import (
    ActivatedStep,
    CancelResult,
    Decision,
    DecisionResult,
    LaunchResult,
    PhaseStatus,
    PhaseStructure,
    QuorumRule,
    RenotifyTarget,
    StepExecution,
    StepStatus,
    StepStructure,
    WorkflowRef,
    WorkflowStatus,
    WorkflowStructure,
    normalize_email,
)

__all__ = [
    "ActivatedStep",
    "CancelResult",
    "Clock",
    "Decision",
    "DecisionResult",
    "DeterministicClock",
    "EntityKind",
    "LaunchResult",
    "PhaseStatus",
    "PhaseStructure",
    "QuorumRule",
    "RenotifyTarget",
    "StepExecution",
    "StepStatus",
    "StepStructure",
    "StepTokens",
    "SystemClock",
    "TokenContext",
    "TokenResolution",
    "TokenStatus",
    "WorkflowRef",
    "WorkflowStatus",
    "WorkflowStructure",
    "is_allowed_transition",
    "normalize_email",
    "validate_phase_transition",
    "validate_step_transition",
    "validate_transition",
    "validate_workflow_transition",
]
