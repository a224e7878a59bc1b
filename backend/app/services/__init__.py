# Services - Business Logic Layer
"""
SLA Engine Services Module.

This module provides the core logic for:
- Business calendar and due-date arithmetic
- Violation evaluation
- Escalation dispatch and action logging
- The sweep and its background scheduler
"""

# Business Calendar
from .business_calendar import (
    BusinessCalendar,
    ensure_aware,
    get_business_calendar,
)

# Deadlines
from .deadlines import (
    required_business_time,
    compute_due_at,
)

# Violation Evaluation
from .violations import (
    ViolationEvaluation,
    ViolationEvaluator,
    effective_sla_hours,
)

# Escalation
from .escalation import (
    TEMPLATE_VARIABLES,
    DispatchResult,
    EscalationDispatcher,
    build_template_variables,
    render_string,
    render_template,
    resolve_escalation_action,
)

# Action Log
from .action_log import ActionLogRecorder

# Sweep
from .sweeper import (
    Sweeper,
    get_sweeper,
    trigger_sweep,
    parse_record,
)

# Background Job Scheduler
from .scheduler import (
    SweepFailureMonitor,
    SlaScheduler,
    get_scheduler,
    sla_sweep_job,
)


__all__ = [
    # Business Calendar
    "BusinessCalendar",
    "ensure_aware",
    "get_business_calendar",

    # Deadlines
    "required_business_time",
    "compute_due_at",

    # Violations
    "ViolationEvaluation",
    "ViolationEvaluator",
    "effective_sla_hours",

    # Escalation
    "TEMPLATE_VARIABLES",
    "DispatchResult",
    "EscalationDispatcher",
    "build_template_variables",
    "render_string",
    "render_template",
    "resolve_escalation_action",

    # Action Log
    "ActionLogRecorder",

    # Sweep
    "Sweeper",
    "get_sweeper",
    "trigger_sweep",
    "parse_record",

    # Scheduler
    "SweepFailureMonitor",
    "SlaScheduler",
    "get_scheduler",
    "sla_sweep_job",
]
