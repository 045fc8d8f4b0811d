"""
approval_engines.quorum -- Pure quorum and phase-completion evaluation.

Responsibility:
    Decide a step's outcome from its vote tally, a phase's outcome from
    its steps' statuses, and where refusal routing goes next.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Totality: every (rule, N, approvals, refusals) with
      approvals + refusals <= N maps to exactly one of APPROVED, REFUSED,
      IN_PROGRESS.
    - UNANIMITY: any refusal refuses; all approvals approve.
    - MAJORITY: threshold = N // 2 + 1 on either side; when neither side
      can still reach it with every remaining vote the step is deadlocked
      and resolved as REFUSED.
    - ANY_OF: ``quorum_count`` approvals (default 1) approve, and a single
      refusal refuses even if approvals could still reach the count.  This
      asymmetry is product policy and is kept as is.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - ValueError for negative counts or approvals + refusals > N.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import (
    Decision,
    QuorumRule,
    StepExecution,
    StepStatus,
)

# Engine outcomes reuse the step status vocabulary
QuorumOutcome = StepStatus


@dataclass(frozen=True)
class QuorumTally:
    """Approve/refuse counts for one activation of a step."""

    approvals: int = 0
    refusals: int = 0

    @property
    def total(self) -> int:
        return self.approvals + self.refusals

    @classmethod
    def from_decisions(cls, decisions: Iterable[Decision | str]) -> QuorumTally:
        approvals = refusals = 0
        for d in decisions:
            if Decision(d) == Decision.APPROVE:
                approvals += 1
            else:
                refusals += 1
        return cls(approvals=approvals, refusals=refusals)


def majority_threshold(total_validators: int) -> int:
    return total_validators // 2 + 1


@traced_engine(
    "quorum", "1.0",
    fingerprint_fields=("rule", "total_validators", "approvals", "refusals", "quorum_count"),
)
def evaluate_quorum(
    rule: QuorumRule | str,
    total_validators: int,
    approvals: int,
    refusals: int,
    quorum_count: int | None = None,
) -> StepStatus:
    """
    Compute a step's status from its current tally.

    Args:
        rule: The step's quorum rule.
        total_validators: Size of the step's validator set (N).
        approvals: APPROVE decisions in the current activation.
        refusals: REFUSE decisions in the current activation.
        quorum_count: Approvals required by ANY_OF (defaults to 1).

    Returns:
        APPROVED, REFUSED or IN_PROGRESS.

    Raises:
        ValueError: counts are negative or exceed N.
    """
    if approvals < 0 or refusals < 0 or total_validators < 0:
        raise ValueError("vote counts must be non-negative")
    if approvals + refusals > total_validators:
        raise ValueError(
            f"{approvals + refusals} votes exceed {total_validators} validators"
        )

    rule = QuorumRule(rule)

    if rule == QuorumRule.UNANIMITY:
        if refusals > 0:
            return StepStatus.REFUSED
        if approvals == total_validators:
            return StepStatus.APPROVED
        return StepStatus.IN_PROGRESS

    if rule == QuorumRule.MAJORITY:
        threshold = majority_threshold(total_validators)
        if approvals >= threshold:
            return StepStatus.APPROVED
        if refusals >= threshold:
            return StepStatus.REFUSED
        remaining = total_validators - approvals - refusals
        if approvals + remaining < threshold and refusals + remaining < threshold:
            # Deadlock: nobody can win any more
            return StepStatus.REFUSED
        return StepStatus.IN_PROGRESS

    required = quorum_count if quorum_count is not None else 1
    if approvals >= required:
        return StepStatus.APPROVED
    if refusals > 0:
        return StepStatus.REFUSED
    return StepStatus.IN_PROGRESS


def evaluate_tally(
    rule: QuorumRule | str,
    total_validators: int,
    tally: QuorumTally,
    quorum_count: int | None = None,
) -> StepStatus:
    """Convenience wrapper over evaluate_quorum for a QuorumTally."""
    return evaluate_quorum(
        rule, total_validators, tally.approvals, tally.refusals, quorum_count,
    )


def evaluate_phase_completion(step_statuses: Iterable[StepStatus | str]) -> StepStatus:
    """
    Compute a phase's status from its steps' current statuses.

    Any REFUSED step refuses the phase at once (siblings of a parallel
    phase are not waited for); all APPROVED approves it.
    """
    statuses = [StepStatus(s) for s in step_statuses]
    if any(s == StepStatus.REFUSED for s in statuses):
        return StepStatus.REFUSED
    if statuses and all(s == StepStatus.APPROVED for s in statuses):
        return StepStatus.APPROVED
    return StepStatus.IN_PROGRESS


def find_previous_phase_index(order: int) -> int:
    """Index of the phase refusal routing returns to; negative means none."""
    return order - 1


def runs_in_parallel(executions: Iterable[StepExecution | str]) -> bool:
    """A phase activates all its steps together if any step is PARALLEL."""
    return any(StepExecution(e) == StepExecution.PARALLEL for e in executions)
