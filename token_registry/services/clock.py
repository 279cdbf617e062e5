"""
Injectable time source.

The registry never reads the wall clock directly; it asks a Clock for the
current logical timestamp (whole seconds since the epoch).
"""
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int:
        ...


class SystemClock:
    """Production clock - real system time."""

    def now(self) -> int:
        return int(time.time())


class FixedClock:
    """
    Test clock - returns a fixed timestamp until advanced.

    Usage:
        clock = FixedClock(1_000)
        clock.advance(500)
        assert clock.now() == 1_500
    """

    def __init__(self, timestamp: int):
        if timestamp < 0:
            raise ValueError("FixedClock requires a non-negative timestamp.")
        self._timestamp = timestamp

    def now(self) -> int:
        return self._timestamp

    def advance(self, seconds: int) -> None:
        self._timestamp += seconds
