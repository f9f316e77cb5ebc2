"""
Clock
=====

Injected time source. Services ask a clock for "now" instead of reading the
system time so evaluation runs can be replayed at arbitrary instants.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Time source interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """
    Manually driven clock.

    Stays at the instant it was given until set() or advance() moves it.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime.now(timezone.utc)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs) and return the new instant."""
        self._now = self._now + timedelta(**kwargs)
        return self._now
