"""
Pydantic schemas for data validation and serialization.
Covers all engine entities: Tracked Records, Step Definitions, Workflows,
Escalation Actions and Action Log entries.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import (
    ApprovalType,
    EscalationActionKind,
    RecordStatus,
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps coming from the store are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==========================================
# ACTION TEMPLATES
# ==========================================

class ActionTemplate(BaseModel):
    """
    HTTP call template for an escalation action.

    Placeholders like {recordId} may appear in the url, header values and
    any string leaf of the body.
    """
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(..., min_length=1)
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.upper()


class AutoApproveConfig(BaseModel):
    """Stored auto-approval config: an approval type plus one sub-template per type."""
    model_config = ConfigDict(populate_by_name=True)

    approval_type: ApprovalType = Field(ApprovalType.SINGLE, alias="approvalType")
    single_approval_config: Optional[ActionTemplate] = Field(None, alias="singleApprovalConfig")
    multiple_approval_config: Optional[ActionTemplate] = Field(None, alias="multipleApprovalConfig")

    def template_for_type(self) -> Optional[ActionTemplate]:
        if self.approval_type == ApprovalType.SINGLE:
            return self.single_approval_config
        return self.multiple_approval_config


# ==========================================
# RESOLVED ESCALATION ACTIONS (tagged union)
# ==========================================

class NotifyAction(BaseModel):
    """Notify a stakeholder."""
    kind: Literal[EscalationActionKind.NOTIFY] = EscalationActionKind.NOTIFY
    template: ActionTemplate


class AutoApproveAction(BaseModel):
    """Auto-approve the record; always carries a resolved sub-template."""
    kind: Literal[EscalationActionKind.AUTO_APPROVE] = EscalationActionKind.AUTO_APPROVE
    approval_type: ApprovalType
    template: ActionTemplate


EscalationAction = Annotated[
    Union[NotifyAction, AutoApproveAction],
    Field(discriminator="kind"),
]


# ==========================================
# WORKFLOW / STEP DEFINITIONS
# ==========================================

class WorkflowDefinition(BaseModel):
    """Workflow-level escalation defaults (read-only to the engine)."""
    model_config = ConfigDict(extra="ignore")

    id: str
    workflow_name: Optional[str] = None
    model: Optional[str] = None
    notify_api_config: Optional[ActionTemplate] = None
    auto_approve_api_config: Optional[AutoApproveConfig] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)


class StepDefinition(BaseModel):
    """
    Escalation contract for a workflow step.
    Stored in the activities table; many records reference one step.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    workflow_id: Optional[str] = None
    code: Optional[str] = None
    name: str = ""
    sla_hours: int = Field(24, ge=0)
    max_violations: int = Field(3, ge=0)
    violation_action: EscalationActionKind = EscalationActionKind.NOTIFY
    notify_api_config: Optional[ActionTemplate] = None
    auto_approve_api_config: Optional[AutoApproveConfig] = None
    is_active: bool = True

    @field_validator("id", "workflow_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


# ==========================================
# TRACKED RECORDS
# ==========================================

class TrackedRecord(BaseModel):
    """One unit of work being watched, as stored in the records table."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    record_id: str = Field(..., min_length=1)
    model: Optional[str] = None
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    activity_id: Optional[str] = None
    step_code: Optional[str] = None
    step_name: Optional[str] = None
    start_time: Optional[datetime] = None
    status: RecordStatus = RecordStatus.WAITING
    violation_count: int = Field(0, ge=0)
    sla_hours: int = Field(24, ge=0)
    remaining_hours: float = 0
    next_due_at: Optional[datetime] = None

    @field_validator("workflow_id", "activity_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("start_time", "next_due_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_active(self) -> bool:
        return self.status in RecordStatus.active()

    def state_columns(self) -> dict[str, Any]:
        """The columns the engine owns, serialized for a single write."""
        return {
            "status": self.status.value,
            "violation_count": self.violation_count,
            "sla_hours": self.sla_hours,
            "remaining_hours": self.remaining_hours,
            "next_due_at": self.next_due_at.isoformat() if self.next_due_at else None,
        }


# ==========================================
# ACTION LOG
# ==========================================

class ActionLogEntry(BaseModel):
    """Immutable audit entry, one per escalation attempt."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Optional[str] = None
    record_id: str
    workflow_id: Optional[str] = None
    activity_id: Optional[str] = None
    action_type: EscalationActionKind
    violation_count: int = Field(0, ge=0)
    is_success: bool = False
    message: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("workflow_id", "activity_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    def to_row(self) -> dict[str, Any]:
        """Insert payload (id / created_at are assigned by the store)."""
        return {
            "record_id": self.record_id,
            "workflow_id": self.workflow_id,
            "activity_id": self.activity_id,
            "action_type": self.action_type.value,
            "violation_count": self.violation_count,
            "is_success": self.is_success,
            "message": self.message,
        }


# ==========================================
# SWEEP RESULT
# ==========================================

class SweepResult(BaseModel):
    """Outcome of one sweep pass, as returned by the manual trigger."""
    success: bool
    waiting_count: int = 0
    violated_count: int = 0
    processed: int = 0
    escalated: int = 0
    skipped: int = 0
    failed: int = 0
    conflicts: int = 0
    message: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    def to_response(self) -> dict[str, Any]:
        """Well-formed result object: message on success, error on failure."""
        data = self.model_dump(mode="json", exclude_none=True)
        return data
