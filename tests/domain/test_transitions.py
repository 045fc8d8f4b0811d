"""
Tests for the status transition tables.

Every status mutation in the orchestrator goes through validate_transition;
these tests pin the legal edges and prove everything else is rejected.
"""

import itertools

import pytest

from approval_kernel.domain.transitions import (
    PHASE_TRANSITIONS,
    STEP_TRANSITIONS,
    WORKFLOW_TRANSITIONS,
    EntityKind,
    is_allowed_transition,
    validate_phase_transition,
    validate_step_transition,
    validate_transition,
    validate_workflow_transition,
)
from approval_kernel.domain.workflow import PhaseStatus, StepStatus, WorkflowStatus
from approval_kernel.exceptions import ConflictError, InvalidTransitionError


class TestWorkflowTransitions:

    @pytest.mark.parametrize(
        "source,target",
        [
            (WorkflowStatus.DRAFT, WorkflowStatus.IN_PROGRESS),
            (WorkflowStatus.DRAFT, WorkflowStatus.CANCELLED),
            (WorkflowStatus.IN_PROGRESS, WorkflowStatus.APPROVED),
            (WorkflowStatus.IN_PROGRESS, WorkflowStatus.REFUSED),
            (WorkflowStatus.IN_PROGRESS, WorkflowStatus.CANCELLED),
            (WorkflowStatus.APPROVED, WorkflowStatus.ARCHIVED),
            (WorkflowStatus.REFUSED, WorkflowStatus.ARCHIVED),
            (WorkflowStatus.CANCELLED, WorkflowStatus.ARCHIVED),
        ],
    )
    def test_legal_edges(self, source, target):
        validate_workflow_transition(source, target)
        assert is_allowed_transition(EntityKind.WORKFLOW, source, target)

    @pytest.mark.parametrize(
        "source,target",
        [
            (WorkflowStatus.ARCHIVED, WorkflowStatus.IN_PROGRESS),
            (WorkflowStatus.APPROVED, WorkflowStatus.IN_PROGRESS),
            (WorkflowStatus.REFUSED, WorkflowStatus.IN_PROGRESS),
            (WorkflowStatus.IN_PROGRESS, WorkflowStatus.ARCHIVED),
            (WorkflowStatus.DRAFT, WorkflowStatus.APPROVED),
            (WorkflowStatus.CANCELLED, WorkflowStatus.IN_PROGRESS),
        ],
    )
    def test_illegal_edges_raise(self, source, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_workflow_transition(source, target)
        assert exc_info.value.entity == "workflow"
        assert exc_info.value.from_status == source.value
        assert exc_info.value.to_status == target.value

    def test_archived_is_final(self):
        assert WORKFLOW_TRANSITIONS[WorkflowStatus.ARCHIVED] == frozenset()
        for target in WorkflowStatus:
            assert not is_allowed_transition("workflow", WorkflowStatus.ARCHIVED, target)


class TestPhaseAndStepTransitions:

    def test_tables_share_one_shape(self):
        for status in StepStatus:
            step_targets = {s.value for s in STEP_TRANSITIONS[status]}
            phase_targets = {s.value for s in PHASE_TRANSITIONS[PhaseStatus(status.value)]}
            assert step_targets == phase_targets

    def test_reactivation_edge_exists(self):
        validate_step_transition(StepStatus.REFUSED, StepStatus.IN_PROGRESS)
        validate_phase_transition(PhaseStatus.REFUSED, PhaseStatus.IN_PROGRESS)

    def test_approved_phase_can_be_reopened(self):
        validate_phase_transition(PhaseStatus.APPROVED, PhaseStatus.IN_PROGRESS)
        validate_step_transition(StepStatus.APPROVED, StepStatus.IN_PROGRESS)

    @pytest.mark.parametrize("settled", [StepStatus.APPROVED, StepStatus.REFUSED])
    def test_settled_steps_only_leave_into_a_new_activation(self, settled):
        assert STEP_TRANSITIONS[settled] == {StepStatus.IN_PROGRESS, StepStatus.PENDING}
        for decided in (StepStatus.APPROVED, StepStatus.REFUSED):
            assert not is_allowed_transition(EntityKind.STEP, settled, decided)

    def test_open_step_cannot_be_reset(self):
        with pytest.raises(InvalidTransitionError):
            validate_step_transition(StepStatus.IN_PROGRESS, StepStatus.PENDING)

    def test_no_skip_from_pending_to_decided(self):
        with pytest.raises(InvalidTransitionError):
            validate_step_transition(StepStatus.PENDING, StepStatus.APPROVED)
        with pytest.raises(InvalidTransitionError):
            validate_phase_transition(PhaseStatus.PENDING, PhaseStatus.REFUSED)

    def test_every_pair_matches_table(self):
        """Exhaustive check: validate_transition agrees with the tables."""
        for source, target in itertools.product(StepStatus, repeat=2):
            allowed = target in STEP_TRANSITIONS[source]
            if allowed:
                validate_transition(EntityKind.STEP, source, target)
            else:
                with pytest.raises(InvalidTransitionError):
                    validate_transition(EntityKind.STEP, source, target)


class TestTransitionErrors:

    def test_is_a_conflict(self):
        with pytest.raises(ConflictError):
            validate_workflow_transition("ARCHIVED", "DRAFT")

    def test_unknown_status_is_not_allowed(self):
        assert not is_allowed_transition("step", "PENDING", "BOGUS")
        with pytest.raises(InvalidTransitionError):
            validate_transition("step", "BOGUS", "IN_PROGRESS")

    def test_plain_strings_accepted(self):
        validate_transition("workflow", "DRAFT", "IN_PROGRESS")

    def test_rejection_is_logged(self, captured_logs):
        with pytest.raises(InvalidTransitionError):
            validate_workflow_transition(WorkflowStatus.ARCHIVED, WorkflowStatus.DRAFT)
        records = [r for r in captured_logs() if r["message"] == "invalid_transition_attempted"]
        assert len(records) == 1
        assert records[0]["level"] == "ERROR"
        assert records[0]["entity"] == "workflow"
        assert records[0]["from_status"] == "ARCHIVED"
