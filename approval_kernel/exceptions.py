"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (HTTP handlers, email-link handlers, job workers) must
map every failure to a precise response without parsing message strings:

    try:
        circuit.record_decision(step_id, email, Decision.APPROVE, comment)
    except ForbiddenError as e:            # catch the category
        respond(403, code=e.code)
    except DuplicateDecisionError as e:    # or the specific case
        respond(409, code=e.code, step=e.step_id)

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- NotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- StepNotFoundError
    |   +-- UserNotFoundError
    |
    +-- ForbiddenError
    |   +-- NotAValidatorError
    |   +-- NotInitiatorError
    |
    +-- ConflictError
    |   +-- StepAlreadyDecidedError
    |   +-- StepNotActiveError
    |   +-- DuplicateDecisionError
    |   +-- WorkflowNotCancellableError
    |   +-- WorkflowNotArchivableError
    |   +-- NoActiveStepError
    |   +-- InvalidTransitionError
    |
    +-- InvalidInputError
    |   +-- EmptyCommentError
    |   +-- InvalidStructureError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|---------------------------------------------
NotFound     | WORKFLOW_NOT_FOUND          | Workflow ID doesn't exist
             | STEP_NOT_FOUND              | Step ID doesn't exist
             | USER_NOT_FOUND              | Initiator ID doesn't exist
-------------|-----------------------------|---------------------------------------------
Forbidden    | NOT_A_VALIDATOR             | Actor email not in the step's validator set
             | NOT_INITIATOR               | Initiator-only operation by someone else
-------------|-----------------------------|---------------------------------------------
Conflict     | STEP_ALREADY_DECIDED        | Step is not IN_PROGRESS
             | STEP_NOT_ACTIVE             | Step's phase/workflow is no longer active
             | DUPLICATE_DECISION          | Same actor already decided this activation
             | WORKFLOW_NOT_CANCELLABLE    | Cancel outside IN_PROGRESS
             | WORKFLOW_NOT_ARCHIVABLE     | Archive before a terminal status
             | NO_ACTIVE_STEP              | Nothing to re-notify
             | INVALID_TRANSITION          | Status change outside the transition table
-------------|-----------------------------|---------------------------------------------
InvalidInput | EMPTY_COMMENT               | Decision comment blank
             | INVALID_STRUCTURE           | Circuit definition malformed
-------------|-----------------------------|---------------------------------------------
Immutability | IMMUTABILITY_VIOLATION      | UPDATE/DELETE on an append-only record
Audit        | AUDIT_CHAIN_BROKEN          | Hash chain validation failed

InvalidTransitionError is reported to callers as a conflict, but inside the
kernel it is an invariant violation: the orchestrator only ever requests
edges that exist in the transition table, so seeing one means a bug.

Token resolution failures (not_found / already_used / expired) are NOT
exceptions; see ``approval_kernel.domain.tokens.TokenResolution``.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Not found


class NotFoundError(ApprovalKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class WorkflowNotFoundError(NotFoundError):
    """Workflow instance not found."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class StepNotFoundError(NotFoundError):
    """Step instance not found."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Step not found: {step_id}")


class UserNotFoundError(NotFoundError):
    """User (initiator) not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


# Forbidden


class ForbiddenError(ApprovalKernelError):
    """Base exception for actors lacking authority."""

    code: str = "FORBIDDEN"


class NotAValidatorError(ForbiddenError):
    """Actor email is not part of the step's validator set."""

    code: str = "NOT_A_VALIDATOR"

    def __init__(self, step_id: str, actor_email: str):
        self.step_id = step_id
        self.actor_email = actor_email
        super().__init__(
            f"{actor_email} is not an authorized validator for step {step_id}"
        )


class NotInitiatorError(ForbiddenError):
    """Initiator-only operation attempted by another user."""

    code: str = "NOT_INITIATOR"

    def __init__(self, workflow_id: str, user_id: str, operation: str):
        self.workflow_id = workflow_id
        self.user_id = user_id
        self.operation = operation
        super().__init__(
            f"Only the initiator can {operation} workflow {workflow_id}"
        )


# Conflict


class ConflictError(ApprovalKernelError):
    """Base exception for requests that conflict with current state."""

    code: str = "CONFLICT"


class StepAlreadyDecidedError(ConflictError):
    """Step is no longer accepting decisions."""

    code: str = "STEP_ALREADY_DECIDED"

    def __init__(self, step_id: str, status: str):
        self.step_id = step_id
        self.status = status
        super().__init__(f"Step {step_id} has already been decided ({status})")


class StepNotActiveError(ConflictError):
    """Step is IN_PROGRESS but its phase or workflow is not."""

    code: str = "STEP_NOT_ACTIVE"

    def __init__(self, step_id: str, phase_status: str, workflow_status: str):
        self.step_id = step_id
        self.phase_status = phase_status
        self.workflow_status = workflow_status
        super().__init__(
            f"Step {step_id} is not active: phase is {phase_status}, "
            f"workflow is {workflow_status}"
        )


class DuplicateDecisionError(ConflictError):
    """Same actor already decided the current activation of the step."""

    code: str = "DUPLICATE_DECISION"

    def __init__(self, step_id: str, actor_email: str):
        self.step_id = step_id
        self.actor_email = actor_email
        super().__init__(
            f"{actor_email} has already decided step {step_id}"
        )


class WorkflowNotCancellableError(ConflictError):
    """Cancel requested while the workflow is not IN_PROGRESS."""

    code: str = "WORKFLOW_NOT_CANCELLABLE"

    def __init__(self, workflow_id: str, status: str):
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(f"Workflow {workflow_id} is not in progress ({status})")


class WorkflowNotArchivableError(ConflictError):
    """Archive requested before the workflow reached a terminal status."""

    code: str = "WORKFLOW_NOT_ARCHIVABLE"

    def __init__(self, workflow_id: str, status: str):
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(
            f"Workflow {workflow_id} cannot be archived from {status}"
        )


class NoActiveStepError(ConflictError):
    """No step awaits decisions from pending validators."""

    code: str = "NO_ACTIVE_STEP"

    def __init__(self, workflow_id: str, reason: str):
        self.workflow_id = workflow_id
        self.reason = reason
        super().__init__(f"Workflow {workflow_id}: {reason}")


class InvalidTransitionError(ConflictError):
    """
    Status change outside the static transition table.

    Surfaced as a conflict; internally an orchestration invariant violation.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_status: str, to_status: str):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid {entity} transition: {from_status} -> {to_status}"
        )


# Invalid input


class InvalidInputError(ApprovalKernelError):
    """Base exception for malformed caller input."""

    code: str = "INVALID_INPUT"


class EmptyCommentError(InvalidInputError):
    """A decision was submitted without a comment."""

    code: str = "EMPTY_COMMENT"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"A comment is required to decide step {step_id}")


class InvalidStructureError(InvalidInputError):
    """Circuit definition is malformed."""

    code: str = "INVALID_STRUCTURE"

    def __init__(self, reason: str, path: str = ""):
        self.reason = reason
        self.path = path
        location = f" at {path}" if path else ""
        super().__init__(f"Invalid circuit structure{location}: {reason}")


# Immutability


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit


class AuditError(ApprovalKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
