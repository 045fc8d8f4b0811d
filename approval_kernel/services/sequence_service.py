"""
SequenceService -- gap-free numbering for the audit chain.

Responsibility:
    Hands out the next ``seq`` for audit events from a named counter row.
    The row is read ``FOR UPDATE`` and bumped in the caller's transaction,
    so two writers never receive the same number and a rolled-back writer
    gives its number back.

Architecture position:
    Kernel > Services.  Used by AuditorService only.

Failure modes:
    - The very first allocation of a name can race with another
      transaction creating the same row; the loser's savepoint is rolled
      back and it locks the winner's row instead.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.logging_config import get_logger
from approval_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """Flush-only; the caller's transaction decides whether a number is kept."""

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter | None:
        """Insert the counter at 0; None when a concurrent insert won."""
        savepoint = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=0)
        self._session.add(counter)
        try:
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return counter

    def next_value(self, sequence_name: str) -> int:
        """Lock (or create) the counter, increment it and return the new value (>= 1)."""
        counter = self._lock(sequence_name) or self._create(sequence_name)
        if counter is None:
            counter = self._lock(sequence_name)
            if counter is None:
                raise RuntimeError(f"Sequence counter {sequence_name!r} vanished")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value
