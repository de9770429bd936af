"""
Clock -- injectable time source.

Every timestamp a service writes (custody checkpoint, review stamp,
signature, audit record) is read from an injected Clock, never from
``datetime.now()``, so tests can pin or step time.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

DEFAULT_START = datetime(2025, 1, 6, 8, 0, 0, tzinfo=UTC)


class Clock(ABC):
    """``now()`` returns a timezone-aware UTC ``datetime``."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock.

    Returns ``start`` until moved.  With a non-zero ``step`` every ``now()``
    call moves the clock forward afterwards, so consecutive stamps are
    strictly increasing.
    """

    def __init__(
        self,
        start: datetime | None = None,
        step: timedelta = timedelta(0),
    ):
        start = start or DEFAULT_START
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = start.astimezone(UTC)
        self._step = step

    def now(self) -> datetime:
        current = self._current
        self._current += self._step
        return current

    def peek(self) -> datetime:
        """The next ``now()`` value, without stepping."""
        return self._current

    def set_time(self, when: datetime) -> None:
        self._current = when.astimezone(UTC)

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current
