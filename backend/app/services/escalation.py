"""
Escalation Dispatcher for the SLA engine.

Fires the external action configured for a step when a record crosses a
new violation boundary: Notify a stakeholder, or AutoApprove the record.

Key Features:
- Step-level action config, falling back to the workflow-level config
- Auto-approval picks the single / multiple sub-template by approval type
- Single-pass placeholder rendering over url, headers and body
- Bounded timeout; never raises, always returns a DispatchResult
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx

from app.core.clock import system_clock
from app.core.config import settings
from app.models.enums import EscalationActionKind
from app.models.schemas import (
    AutoApproveAction,
    EscalationAction,
    NotifyAction,
    StepDefinition,
    TrackedRecord,
    WorkflowDefinition,
)


logger = logging.getLogger(__name__)


PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

# Case-sensitive placeholder vocabulary, written as {name} in templates
TEMPLATE_VARIABLES = (
    "recordId",
    "stepId",
    "stepName",
    "stepCode",
    "violationCount",
    "slaHours",
    "timestamp",
    "workflowId",
    "workflowName",
    "model",
    "approvalType",
    "approvalCount",
)


# ==========================================
# TEMPLATE RENDERING
# ==========================================

def build_template_variables(
    record: TrackedRecord,
    step: StepDefinition,
    violation_count: int,
    now: datetime,
    approval_type: Optional[str] = None
) -> dict[str, str]:
    """Placeholder -> value map for one escalation attempt."""
    return {
        "recordId": record.record_id,
        "stepId": step.id,
        "stepName": step.name or "",
        "stepCode": step.code or "",
        "violationCount": str(violation_count),
        "slaHours": str(step.sla_hours or record.sla_hours),
        "timestamp": now.isoformat(),
        "workflowId": record.workflow_id or "",
        "workflowName": record.workflow_name or "",
        "model": record.model or "",
        "approvalType": approval_type or "",
        "approvalCount": str(violation_count),
    }


def render_string(value: str, variables: dict[str, str]) -> str:
    """
    Replace every known {placeholder} in one pass.

    Substituted values are never scanned again, and unknown
    placeholders are left as-is.
    """
    return PLACEHOLDER_PATTERN.sub(
        lambda match: variables.get(match.group(1), match.group(0)),
        value
    )


def render_template(template: Any, variables: dict[str, str]) -> Any:
    """Walk a JSON-like template once, rendering string leaves only."""
    if isinstance(template, str):
        return render_string(template, variables)
    if isinstance(template, dict):
        return {key: render_template(value, variables) for key, value in template.items()}
    if isinstance(template, list):
        return [render_template(item, variables) for item in template]
    return template


# ==========================================
# ACTION RESOLUTION
# ==========================================

def resolve_escalation_action(
    kind: EscalationActionKind,
    step: StepDefinition,
    workflow: Optional[WorkflowDefinition] = None
) -> Optional[EscalationAction]:
    """
    Resolve the action to fire for ``kind``.

    Tries in order:
    1. The step's own config
    2. The workflow's config

    Returns None when nothing usable is configured (including an
    auto-approval config without the sub-template for its approval type).
    """
    if kind == EscalationActionKind.NOTIFY:
        template = step.notify_api_config
        if template is None and workflow is not None:
            template = workflow.notify_api_config
        if template is None:
            return None
        return NotifyAction(template=template)

    config = step.auto_approve_api_config
    if config is None and workflow is not None:
        config = workflow.auto_approve_api_config
    if config is None:
        return None

    template = config.template_for_type()
    if template is None:
        logger.warning(
            f"No {config.approval_type.value} approval template for step {step.id}"
        )
        return None
    return AutoApproveAction(approval_type=config.approval_type, template=template)


# ==========================================
# DISPATCH
# ==========================================

@dataclass
class DispatchResult:
    """Result of an escalation attempt."""
    success: bool
    message: str
    status_code: Optional[int] = None


class EscalationDispatcher:
    """
    Sends escalation actions to the external system over HTTP.

    Holds no state besides its HTTP settings. ``transport`` lets tests
    plug in an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock=None
    ):
        self.timeout = timeout if timeout is not None else settings.escalation_timeout_seconds
        self.transport = transport
        self.clock = clock or system_clock

    def render_request(
        self,
        record: TrackedRecord,
        step: StepDefinition,
        action: EscalationAction,
        violation_count: int,
        now: datetime
    ) -> dict[str, Any]:
        """Rendered url / method / headers / body for an action."""
        approval_type = None
        if isinstance(action, AutoApproveAction):
            approval_type = action.approval_type.value

        variables = build_template_variables(
            record, step, violation_count, now, approval_type
        )
        template = action.template
        return {
            "url": render_string(template.url, variables),
            "method": template.method,
            "headers": render_template(template.headers, variables),
            "body": render_template(template.body, variables),
        }

    async def dispatch(
        self,
        record: TrackedRecord,
        step: StepDefinition,
        action: EscalationAction,
        violation_count: int,
        now: Optional[datetime] = None
    ) -> DispatchResult:
        """
        Perform the HTTP call for an action.

        Success is a 2xx status. Timeouts, network errors and non-2xx
        responses are reported as failures, never raised.
        """
        now = now or self.clock.now()
        kind = action.kind.value

        try:
            request = self.render_request(record, step, action, violation_count, now)

            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    request["method"],
                    request["url"],
                    headers=request["headers"],
                    json=request["body"] if request["body"] else None,
                )

            if 200 <= response.status_code < 300:
                logger.info(
                    f"Escalation {kind} sent for record {record.record_id} "
                    f"(violation {violation_count}): HTTP {response.status_code}"
                )
                return DispatchResult(
                    success=True,
                    message=f"{kind} sent: HTTP {response.status_code}",
                    status_code=response.status_code
                )

            logger.warning(
                f"Escalation {kind} rejected for record {record.record_id}: "
                f"HTTP {response.status_code}"
            )
            return DispatchResult(
                success=False,
                message=f"{kind} failed: HTTP {response.status_code} - {response.text[:200]}",
                status_code=response.status_code
            )

        except httpx.TimeoutException:
            logger.error(
                f"Escalation {kind} timed out for record {record.record_id} after {self.timeout}s"
            )
            return DispatchResult(
                success=False,
                message=f"{kind} failed: timed out after {self.timeout}s"
            )
        except Exception as e:
            logger.error(f"Escalation {kind} failed for record {record.record_id}: {e}")
            return DispatchResult(
                success=False,
                message=f"{kind} failed: {e.__class__.__name__}: {e}"
            )
