"""
Injectable time sources.

Services and the recurrence scheduler take a ``Clock`` instead of calling
``datetime.now()``; ``posted_at``, ``processed_at`` and every ``next_run``
therefore come from one place, and a ``DeterministicClock`` makes scheduler
ticks and catch-up runs reproducible.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

_DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Return ``value`` as an aware UTC datetime.

    Naive values are taken to already be UTC; SQLite hands them back that
    way after a round-trip.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(ABC):
    """Source of the current time. ``now()`` is always timezone-aware."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Stands still until moved with ``set_time``, ``advance`` or ``tick``."""

    def __init__(self, fixed_time: datetime | None = None):
        self._current = ensure_utc(fixed_time or _DEFAULT_TEST_TIME)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = ensure_utc(time)

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance()
        return self._current
