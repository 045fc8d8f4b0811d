"""
Approval Kernel - document approval circuit orchestration

A transactional, audited approval engine with:
- Multi-phase, multi-step circuits with quorum rules
- Refusal routing back to the previous phase
- Single-use, hash-stored email decision tokens
- Append-only decision records and a hash-chained audit trail
"""

__version__ = "0.1.0"
