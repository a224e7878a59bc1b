"""
Enum types that match the string columns of the records / activities / sla_action_logs tables.
These must stay in sync with the database schema.
"""
from enum import Enum


class RecordStatus(str, Enum):
    """
    Tracked record status values.
    Completed is absorbing: the engine never touches a completed record.
    """
    WAITING = "waiting"
    VIOLATED = "violated"
    COMPLETED = "completed"

    @classmethod
    def active(cls) -> list["RecordStatus"]:
        """Statuses the sweeper evaluates."""
        return [cls.WAITING, cls.VIOLATED]


class EscalationActionKind(str, Enum):
    """
    Action fired when a new violation boundary is crossed.
    Matches: activities.violation_action / sla_action_logs.action_type
    """
    NOTIFY = "notify"
    AUTO_APPROVE = "auto_approve"


class ApprovalType(str, Enum):
    """Which auto-approval sub-template to use."""
    SINGLE = "single"
    MULTIPLE = "multiple"


class ViolationClock(str, Enum):
    """How elapsed time is measured when counting violations (not a DB enum)."""
    WALL_CLOCK = "wall_clock"  # plain elapsed hours
    BUSINESS_HOURS = "business_hours"  # only business-calendar hours elapse
