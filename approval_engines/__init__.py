"""
Module: approval_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types (and sibling engine modules).
    MUST NOT import approval_services.

Usage:
    from approval_engines import evaluate_quorum, evaluate_phase_completion
"""

from approval_engines.quorum import (
    QuorumOutcome,
    QuorumTally,
    evaluate_phase_completion,
    evaluate_quorum,
    evaluate_tally,
    find_previous_phase_index,
    majority_threshold,
    runs_in_parallel,
)

__all__ = [
    "QuorumOutcome",
    "QuorumTally",
    "evaluate_phase_completion",
    "evaluate_quorum",
    "evaluate_tally",
    "find_previous_phase_index",
    "majority_threshold",
    "runs_in_parallel",
]
