"""ORM models for the approval kernel."""

from approval_kernel.models.action import WorkflowActionModel
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.models.sequence import SequenceCounter
from approval_kernel.models.token import ActionTokenModel
from approval_kernel.models.user import UserModel
from approval_kernel.models.workflow import (
    PhaseInstanceModel,
    StepInstanceModel,
    WorkflowDocumentModel,
    WorkflowInstanceModel,
)

__all__ = [
    "ActionTokenModel",
    "AuditAction",
    "AuditEvent",
    "PhaseInstanceModel",
    "SequenceCounter",
    "StepInstanceModel",
    "UserModel",
    "WorkflowActionModel",
    "WorkflowDocumentModel",
    "WorkflowInstanceModel",
]
