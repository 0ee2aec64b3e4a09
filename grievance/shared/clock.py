"""
Clock collaborator.

The lifecycle core never reads the wall clock itself; a ``Clock`` is injected
so SLA and reopen-window logic can be tested against a fixed instant.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Single source of "now"."""

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware."""


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant; can be moved explicitly."""

    def __init__(self, instant: datetime):
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant

    def advance(self, delta: timedelta) -> datetime:
        self._instant = self._instant + delta
        return self._instant
