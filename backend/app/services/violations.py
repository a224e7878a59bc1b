"""
Violation Evaluator for the SLA engine.

State machine: Waiting -> Violated -> Completed (absorbing).

Given a tracked record, its step definition and an explicit "now", computes
the violation count and remaining hours and decides whether a NEW violation
boundary was crossed since the last evaluation.

Idempotence comes from one guard: escalation is signalled only when the
new count is strictly greater than the stored one. Evaluating twice with
the same "now" never signals twice.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.core.config import settings
from app.models.enums import RecordStatus, ViolationClock
from app.models.schemas import StepDefinition, TrackedRecord
from app.services.business_calendar import (
    BusinessCalendar,
    ensure_aware,
    get_business_calendar,
)
from app.services.deadlines import compute_due_at


@dataclass
class ViolationEvaluation:
    """Result of evaluating one record at one instant."""
    record: TrackedRecord
    previous_count: int
    violation_count: int
    elapsed_hours: Optional[float] = None
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    @property
    def is_new_violation(self) -> bool:
        """True when a new boundary was crossed and escalation must fire."""
        return self.violation_count > self.previous_count


def effective_sla_hours(record: TrackedRecord, step: StepDefinition) -> int:
    """Step SLA, falling back to the record-level SLA, then the global default."""
    return step.sla_hours or record.sla_hours or settings.default_sla_hours


class ViolationEvaluator:
    """
    Computes violation counts for tracked records.

    ``violation_clock`` selects how elapsed time is measured:
    WALL_CLOCK counts plain elapsed hours, BUSINESS_HOURS counts only
    hours inside the business calendar (same arithmetic as nextDueAt).
    """

    def __init__(
        self,
        calendar: Optional[BusinessCalendar] = None,
        violation_clock: ViolationClock = settings.violation_clock,
        remaining_hours_floor: float = settings.remaining_hours_floor,
    ):
        self.calendar = calendar or get_business_calendar()
        self.violation_clock = violation_clock
        self.remaining_hours_floor = remaining_hours_floor

    def elapsed_hours(self, start_time: datetime, now: datetime) -> float:
        start_time = ensure_aware(start_time)
        now = ensure_aware(now)
        if self.violation_clock == ViolationClock.BUSINESS_HOURS:
            return self.calendar.business_hours_between(start_time, now)
        return (now - start_time).total_seconds() / 3600

    def count_violations(self, elapsed_hours: float, sla_hours: int, max_violations: int) -> int:
        """floor(elapsed / sla), clamped to [0, max_violations]."""
        if sla_hours <= 0:
            return 0
        violations = math.floor(elapsed_hours / sla_hours)
        return min(max(violations, 0), max_violations)

    def remaining_hours(self, elapsed_hours: float, sla_hours: int) -> float:
        """Signed hours left in the SLA window (negative = overdue), floored."""
        return max(self.remaining_hours_floor, round(sla_hours - elapsed_hours, 2))

    def next_due_at(
        self,
        record: TrackedRecord,
        sla_hours: int,
        violation_count: int,
        max_violations: int
    ) -> Optional[datetime]:
        """Next boundary, or None once the cap is reached."""
        if record.start_time is None or violation_count >= max_violations:
            return None
        return compute_due_at(record.start_time, sla_hours, violation_count, self.calendar)

    def evaluate(
        self,
        record: TrackedRecord,
        step: StepDefinition,
        now: datetime
    ) -> ViolationEvaluation:
        """
        Evaluate a record at ``now``.

        Never mutates ``record``: the updated state is returned as a new
        record on the evaluation so the caller can persist it in one write.
        Completed records and records without a start time come back
        unchanged with ``skipped_reason`` set.
        """
        current_count = record.violation_count

        if record.status == RecordStatus.COMPLETED:
            return ViolationEvaluation(
                record=record,
                previous_count=current_count,
                violation_count=current_count,
                skipped_reason="completed",
            )
        if record.start_time is None:
            return ViolationEvaluation(
                record=record,
                previous_count=current_count,
                violation_count=current_count,
                skipped_reason="no_start_time",
            )

        sla_hours = effective_sla_hours(record, step)
        if sla_hours <= 0:
            return ViolationEvaluation(
                record=record,
                previous_count=current_count,
                violation_count=current_count,
                skipped_reason="no_sla_hours",
            )

        elapsed = self.elapsed_hours(record.start_time, now)
        computed = self.count_violations(elapsed, sla_hours, step.max_violations)
        # Monotonic: a shrunk cap or a clock going backwards never lowers the count.
        new_count = max(computed, current_count)

        status = record.status
        if new_count > current_count and status == RecordStatus.WAITING:
            status = RecordStatus.VIOLATED

        updated = record.model_copy(update={
            "violation_count": new_count,
            "status": status,
            "sla_hours": sla_hours,
            "remaining_hours": self.remaining_hours(elapsed, sla_hours),
            "next_due_at": self.next_due_at(record, sla_hours, new_count, step.max_violations),
        })

        return ViolationEvaluation(
            record=updated,
            previous_count=current_count,
            violation_count=new_count,
            elapsed_hours=elapsed,
        )
