"""
SLA API Routes.

Thin operational surface over the SLA engine:
- Manual sweep trigger
- Waiting / violated counts
- Live tracking info for one record
- Due-date preview
- Action log listing
- Scheduler health
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Path, Query
from pydantic import BaseModel, Field

from app.core.clock import system_clock
from app.core.database import get_sla_store
from app.core.exceptions import StepNotFoundError
from app.models.enums import EscalationActionKind
from app.services.business_calendar import get_business_calendar
from app.services.deadlines import compute_due_at, required_business_time
from app.services.scheduler import SWEEP_JOB_ID, get_scheduler
from app.services.sweeper import Sweeper, parse_record, trigger_sweep
from app.services.violations import ViolationEvaluator


router = APIRouter(prefix="/api/sla", tags=["SLA"])


# ==========================================
# PYDANTIC MODELS
# ==========================================

class DueAtRequest(BaseModel):
    """Request body for a due-date preview."""
    start_time: datetime = Field(..., description="Step start (naive = UTC)")
    sla_hours: float = Field(..., ge=0, description="Allotted hours per violation interval")
    violation_count: int = Field(0, ge=0, description="Escalation index (0 = first boundary)")


# ==========================================
# ADMIN
# ==========================================

@router.post(
    "/admin/run-sweep",
    summary="Run SLA Sweep",
    description="Manually run one sweep over all waiting / violated records"
)
async def run_sweep() -> dict:
    """
    Trigger a sweep outside the periodic schedule.

    Always returns a result object: success=False with an error message
    when the sweep could not run.
    """
    return await trigger_sweep()


@router.get(
    "/admin/scheduler",
    summary="Scheduler Health",
    description="Sweep job status, failure counts and paused jobs"
)
async def scheduler_health() -> dict:
    return get_scheduler().get_health_status()


@router.post(
    "/admin/scheduler/resume",
    summary="Resume Sweep Job",
    description="Resume the periodic sweep after it was paused for repeated failures"
)
async def resume_sweep_job() -> dict:
    sla_scheduler = get_scheduler()
    if not sla_scheduler.resume():
        raise HTTPException(status_code=409, detail="Scheduler is not running on this worker")
    return {"success": True, "job_id": SWEEP_JOB_ID}


# ==========================================
# REPORTING
# ==========================================

@router.get(
    "/summary",
    summary="SLA Summary",
    description="Count of records currently waiting and violated"
)
async def get_summary() -> dict:
    sweeper = Sweeper(get_sla_store())
    waiting = sweeper.waiting_count()
    violated = sweeper.violated_count()
    return {
        "waiting_count": waiting,
        "violated_count": violated,
        "active_count": waiting + violated,
    }


@router.get(
    "/records/{record_id}",
    summary="Record SLA Status",
    description="Stored SLA state of one record plus a live evaluation (not persisted)"
)
async def get_record_status(
    record_id: str = Path(..., description="External record key")
) -> dict:
    store = get_sla_store()
    row = store.get_record(record_id)
    if not row:
        raise HTTPException(status_code=404, detail="Record not found")

    record = parse_record(row)
    sweeper = Sweeper(store)
    step = sweeper.load_step(record)
    if step is None:
        raise StepNotFoundError(
            f"Step not found for record {record_id}",
            record_id=record_id,
            step_ref=record.activity_id or record.step_code
        )

    evaluation = ViolationEvaluator().evaluate(record, step, system_clock.now())
    live = evaluation.record

    return {
        "record": record.model_dump(mode="json"),
        "step": {
            "id": step.id,
            "code": step.code,
            "name": step.name,
            "sla_hours": step.sla_hours,
            "max_violations": step.max_violations,
            "violation_action": step.violation_action.value,
        },
        "live": {
            "evaluated": not evaluation.skipped,
            "skipped_reason": evaluation.skipped_reason,
            "elapsed_hours": (
                round(evaluation.elapsed_hours, 2)
                if evaluation.elapsed_hours is not None else None
            ),
            "violation_count": live.violation_count,
            "status": live.status.value,
            "remaining_hours": live.remaining_hours,
            "next_due_at": live.next_due_at.isoformat() if live.next_due_at else None,
            "pending_escalation": evaluation.is_new_violation,
        },
    }


@router.post(
    "/due-at",
    summary="Preview Due Date",
    description="Compute the violation boundary for a start time using business hours"
)
async def preview_due_at(request: DueAtRequest) -> dict:
    calendar = get_business_calendar()
    due_at = compute_due_at(
        request.start_time,
        request.sla_hours,
        request.violation_count,
        calendar
    )
    required = required_business_time(request.sla_hours, request.violation_count)
    return {
        "due_at": due_at.isoformat(),
        "due_at_business_time": calendar.to_business_time(due_at).isoformat(),
        "required_business_hours": required.total_seconds() / 3600,
    }


@router.get(
    "/action-logs",
    summary="List Action Logs",
    description="Escalation attempts, newest first, with paging and search"
)
async def list_action_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    action_type: Optional[EscalationActionKind] = Query(None, description="notify or auto_approve"),
    search: Optional[str] = Query(None, description="Matches record id, message or action type")
) -> dict:
    rows, total = get_sla_store().list_action_logs(
        page=page,
        page_size=page_size,
        action_type=action_type.value if action_type else None,
        search=search
    )
    return {
        "items": rows,
        "total": total,
        "page": page,
        "page_size": page_size,
    }
