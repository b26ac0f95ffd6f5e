"""
Clock abstraction so cooldowns, quiet hours, escalation and sales windows can be
driven by virtual time in tests and demos.
"""

from datetime import datetime, timedelta
from typing import Protocol

__all__ = ["Clock", "SystemClock", "FakeClock"]


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Local wall-clock time (naive datetimes)."""

    def now(self) -> datetime:
        return datetime.now()


class FakeClock:
    """Manually advanced clock for deterministic tests."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 5, 20, 0, 0)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        """Move time forward by ``timedelta(**kwargs)`` and return the new time."""
        delta = timedelta(**kwargs)
        if delta < timedelta(0):
            raise ValueError("FakeClock cannot move backwards")
        self._now += delta
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value
