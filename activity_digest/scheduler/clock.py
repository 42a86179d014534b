"""Injectable time sources."""

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol

from activity_digest.data_model.base import ensure_utc


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Get the current time in UTC."""
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        """Get the current time in UTC."""
        return datetime.now(UTC)


class FakeClock:
    """Manually driven clock for simulations and tests."""

    def __init__(self, start: datetime) -> None:
        """Initialize the clock.

        Args:
            start: Initial time; naive values are taken as UTC.
        """
        self._now = ensure_utc(start)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        """Get the simulated time."""
        with self._lock:
            return self._now

    def advance(self, delta: timedelta) -> datetime:
        """Move the clock forward.

        Args:
            delta: Non-negative amount of time.

        Returns:
            The new time.

        Raises:
            ValueError: If delta is negative.
        """
        if delta < timedelta(0):
            msg = f"Cannot move the clock backwards: {delta}"
            raise ValueError(msg)
        with self._lock:
            self._now += delta
            return self._now

    def set(self, when: datetime) -> None:
        """Jump to an absolute time (backwards allowed)."""
        with self._lock:
            self._now = ensure_utc(when)
