"""
Business Calendar for the SLA engine.

Classifies instants as business / non-business time in one fixed business
timezone offset (no tz database on purpose).

Key Rules:
- Monday to Friday: business hours [start_hour, end_hour)
- Saturday: half day, [start_hour, half_day_end_hour)
- Sunday and Saturday afternoon are never business time
- All functions are pure: no hidden "now"
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from app.core.config import settings


SATURDAY = 5
SUNDAY = 6


def ensure_aware(t: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t


@dataclass(frozen=True)
class BusinessCalendar:
    """
    Business-hours calendar in a fixed UTC offset.

    Methods taking ``t`` expect an instant already shifted into business
    time (see ``to_business_time``); aware instants in any other offset
    are converted first.
    """
    offset_hours: int = 7
    start_hour: int = 8
    end_hour: int = 17
    half_day_end_hour: int = 12

    @property
    def tz(self) -> timezone:
        return timezone(timedelta(hours=self.offset_hours))

    # ==========================================
    # SHIFTING
    # ==========================================

    def to_business_time(self, t: datetime) -> datetime:
        """Shift an instant into the business timezone."""
        return ensure_aware(t).astimezone(self.tz)

    def from_business_time(self, t: datetime, tz=timezone.utc) -> datetime:
        """Shift a business-time instant back out to ``tz`` (UTC by default)."""
        return ensure_aware(t).astimezone(tz)

    # ==========================================
    # CLASSIFICATION
    # ==========================================

    def business_end_hour_for(self, t: datetime) -> int:
        """End-of-business hour for t's weekday (half day on Saturday)."""
        t = self.to_business_time(t)
        if t.weekday() == SATURDAY:
            return self.half_day_end_hour
        return self.end_hour

    def is_business_day(self, t: datetime) -> bool:
        """
        Check if t falls on a day that still has business time left.

        Mon-Fri always; Saturday only before the half-day cutoff.
        """
        t = self.to_business_time(t)
        weekday = t.weekday()
        if weekday < SATURDAY:
            return True
        if weekday == SATURDAY:
            return t.hour < self.half_day_end_hour
        return False

    def is_business_instant(self, t: datetime) -> bool:
        """True iff t is inside business hours."""
        t = self.to_business_time(t)
        if not self.is_business_day(t):
            return False
        return self.start_hour <= t.hour < self.business_end_hour_for(t)

    # ==========================================
    # ADVANCING
    # ==========================================

    def business_start_of(self, t: datetime) -> datetime:
        t = self.to_business_time(t)
        return t.replace(hour=self.start_hour, minute=0, second=0, microsecond=0)

    def business_end_of(self, t: datetime) -> datetime:
        t = self.to_business_time(t)
        return t.replace(hour=self.business_end_hour_for(t), minute=0, second=0, microsecond=0)

    def advance_to_next_business_day_start(self, t: datetime) -> datetime:
        """
        Business-start instant of the next day that is business time.

        Skips Sundays, and Saturday when starting past its half-day cutoff.
        """
        candidate = self.business_start_of(t)
        # A week always contains a business morning; the bound guards bad configs.
        for _ in range(8):
            candidate = candidate + timedelta(days=1)
            if self.is_business_instant(candidate):
                return candidate
        raise ValueError(
            f"No business day found after {t.isoformat()}; check calendar hours"
        )

    def normalize_to_business_start(self, t: datetime) -> datetime:
        """
        Snap t onto business time.

        - inside business hours: unchanged, truncated to the minute
        - before business-start on a business day: business-start same day
        - at/after business-end, Sunday, Saturday afternoon: next business day start
        """
        t = self.to_business_time(t)
        if self.is_business_instant(t):
            return t.replace(second=0, microsecond=0)
        if self.is_business_day(t) and t.hour < self.start_hour:
            return self.business_start_of(t)
        return self.advance_to_next_business_day_start(t)

    # ==========================================
    # MEASURING
    # ==========================================

    def business_window(self, day: datetime) -> tuple[datetime, datetime] | None:
        """[start, end) business window of the business-time day containing ``day``."""
        day = self.to_business_time(day)
        if day.weekday() == SUNDAY:
            return None
        return self.business_start_of(day), self.business_end_of(day)

    def business_hours_between(self, start: datetime, end: datetime) -> float:
        """
        Business hours elapsed in [start, end), rounded to 2 decimals.

        Only the overlap with each day's business window counts.
        """
        start = self.to_business_time(start)
        end = self.to_business_time(end)
        if end <= start:
            return 0.0

        total = timedelta()
        day = start.replace(hour=0, minute=0, second=0, microsecond=0)
        while day < end:
            window = self.business_window(day)
            if window:
                window_start, window_end = window
                overlap_start = max(start, window_start)
                overlap_end = min(end, window_end)
                if overlap_end > overlap_start:
                    total += overlap_end - overlap_start
            day = day + timedelta(days=1)

        return round(total.total_seconds() / 3600, 2)


@lru_cache
def get_business_calendar() -> BusinessCalendar:
    """Calendar configured from settings."""
    return BusinessCalendar(
        offset_hours=settings.business_timezone_offset_hours,
        start_hour=settings.business_start_hour,
        end_hour=settings.business_end_hour,
        half_day_end_hour=settings.saturday_end_hour,
    )
