"""
Clock abstraction for the SLA engine.

Every "now" in violation math comes from one injected clock so an
evaluation can be replayed deterministically.
"""
from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall clock, always UTC-aware."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to an instant; advance it explicitly."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword arguments (hours=2, ...)."""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant


system_clock = SystemClock()
