"""Kernel services: the imperative shell around the pure domain and engines."""

from approval_kernel.services.auditor_service import AuditorService, AuditTraceEntry
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.token_service import (
    DEFAULT_TOKEN_TTL_HOURS,
    ActionTokenService,
)
from approval_kernel.services.workflow_orchestrator import WorkflowOrchestrator

__all__ = [
    "ActionTokenService",
    "AuditTraceEntry",
    "AuditorService",
    "DEFAULT_TOKEN_TTL_HOURS",
    "SequenceService",
    "WorkflowOrchestrator",
]
