# Data models - Enums and Pydantic Schemas
from .enums import (
    RecordStatus,
    EscalationActionKind,
    ApprovalType,
    ViolationClock,
)
from .schemas import (
    ActionTemplate,
    AutoApproveConfig,
    NotifyAction,
    AutoApproveAction,
    EscalationAction,
    WorkflowDefinition,
    StepDefinition,
    TrackedRecord,
    ActionLogEntry,
    SweepResult,
)

__all__ = [
    # Enums
    "RecordStatus",
    "EscalationActionKind",
    "ApprovalType",
    "ViolationClock",
    # Action Templates
    "ActionTemplate",
    "AutoApproveConfig",
    "NotifyAction",
    "AutoApproveAction",
    "EscalationAction",
    # Definitions
    "WorkflowDefinition",
    "StepDefinition",
    # Records & Logs
    "TrackedRecord",
    "ActionLogEntry",
    "SweepResult",
]
