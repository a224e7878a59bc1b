"""
Deadline Calculator for the SLA engine.

Converts (start time, SLA hours, violation count) into a concrete due
timestamp, letting the SLA window elapse only during business hours.

Each escalation cycle re-applies the full SLA window: the n-th boundary
falls ``sla_hours * (n + 1)`` business hours after the start.
"""
from datetime import datetime, timedelta
from typing import Optional

from app.services.business_calendar import (
    BusinessCalendar,
    ensure_aware,
    get_business_calendar,
)


def required_business_time(sla_hours: float, violation_count: int = 0) -> timedelta:
    """Business time that must elapse before boundary ``violation_count``."""
    if sla_hours < 0:
        raise ValueError(f"sla_hours must be >= 0, got {sla_hours}")
    if violation_count < 0:
        raise ValueError(f"violation_count must be >= 0, got {violation_count}")
    return timedelta(hours=sla_hours * (violation_count + 1))


def compute_due_at(
    start_time: datetime,
    sla_hours: float,
    violation_count: int = 0,
    calendar: Optional[BusinessCalendar] = None
) -> datetime:
    """
    Calculate the next violation boundary for a record.

    Example (business zone UTC+7, Mon-Fri 08-17, Sat 08-12):
        start = Saturday 11:30, sla_hours = 1
        30 minutes are consumed Saturday, the other 30 on Monday
        result = Monday 08:30

    Args:
        start_time: When the current step began (naive = UTC)
        sla_hours: Allotted hours per violation interval
        violation_count: Escalation index (0 = first boundary)
        calendar: Business calendar (defaults to settings)

    Returns:
        Due instant in start_time's own offset. Always inside business
        hours unless the SLA window is zero.
    """
    calendar = calendar or get_business_calendar()
    start_time = ensure_aware(start_time)
    remaining = required_business_time(sla_hours, violation_count)
    if remaining <= timedelta(0):
        return start_time

    current = calendar.to_business_time(start_time)
    if not calendar.is_business_instant(current):
        current = calendar.normalize_to_business_start(current)

    while remaining > timedelta(0):
        left_today = calendar.business_end_of(current) - current
        if left_today <= remaining:
            # A deadline exactly at closing time is the next business-start.
            remaining -= left_today
            current = calendar.advance_to_next_business_day_start(current)
        else:
            current = current + remaining
            remaining = timedelta(0)

    return calendar.from_business_time(current, start_time.tzinfo)
