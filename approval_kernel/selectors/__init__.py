"""Selectors for the approval kernel (read side)."""

from approval_kernel.selectors.workflow_selector import (
    ActionView,
    AuditTrailRow,
    PendingStepPage,
    PendingStepView,
    PhaseView,
    StepView,
    WorkflowPage,
    WorkflowSelector,
    WorkflowSummary,
    WorkflowView,
)

__all__ = [
    "ActionView",
    "AuditTrailRow",
    "PendingStepPage",
    "PendingStepView",
    "PhaseView",
    "StepView",
    "WorkflowPage",
    "WorkflowSelector",
    "WorkflowSummary",
    "WorkflowView",
]
