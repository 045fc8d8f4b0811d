"""
Clock -- Injectable time source.

Responsibility:
    Step deadlines, token expiry, audit timestamps and reminder delays are
    all computed from a Clock handed to the service constructor, so tests
    can move time instead of sleeping.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place the kernel reads the
    wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` keeps returning the same instant until ``advance``,
    ``advance_hours`` or ``set_time`` changes it.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or DEFAULT_TEST_EPOCH

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        self._current = moment

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def advance_hours(self, hours: float) -> datetime:
        return self.advance(hours * 3600)
