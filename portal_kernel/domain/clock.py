"""
Injectable time source.

Services take a Clock so that step activation, decisions, escalation
deadlines and delegation windows are all measured against the same "now".
Tests drive time forward explicitly with DeterministicClock.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

DEFAULT_START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """Frozen clock that moves only when advanced.

    Raises:
        ValueError: If ``start`` is a naive datetime.
    """

    def __init__(self, start: datetime | None = None):
        if start is not None and start.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware start")
        self._current = start or DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_hours(self, hours: float) -> None:
        self.advance(hours * 3600)
