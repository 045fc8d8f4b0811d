"""
approval_services -- outer shell over the approval kernel.

Owns transaction boundaries (``ApprovalCircuitService``) and the
post-commit side effects (``SideEffectDispatcher``).  The kernel never
imports from this package.
"""

from approval_services.circuit_service import (
    ApprovalCircuitService,
    RenotifyOutcome,
    TokenDecisionOutcome,
)
from approval_services.side_effects import (
    DispatchReport,
    InMemoryJobScheduler,
    JobScheduler,
    LoggingNotifier,
    NotificationDispatcher,
    NotificationKind,
    RecordingNotifier,
    SideEffectDispatcher,
    reminder_key,
)

__all__ = [
    "ApprovalCircuitService",
    "DispatchReport",
    "InMemoryJobScheduler",
    "JobScheduler",
    "LoggingNotifier",
    "NotificationDispatcher",
    "NotificationKind",
    "RecordingNotifier",
    "RenotifyOutcome",
    "SideEffectDispatcher",
    "TokenDecisionOutcome",
    "reminder_key",
]
