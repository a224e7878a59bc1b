"""
Action Log Recorder for the SLA engine.

Appends one immutable ActionLogEntry per escalation attempt (success,
failure or skip) so the audit trail stays complete even when no network
call happened.
"""
import logging
from typing import Optional

from app.core.database import SlaStore
from app.models.enums import EscalationActionKind
from app.models.schemas import ActionLogEntry


logger = logging.getLogger(__name__)


class ActionLogRecorder:
    """Append-only writer for the sla_action_logs table."""

    def __init__(self, store: SlaStore):
        self.store = store

    def record(
        self,
        record_key: str,
        workflow_id: Optional[str],
        step_id: Optional[str],
        action_kind: EscalationActionKind,
        violation_count: int,
        success: bool,
        message: Optional[str] = None
    ) -> ActionLogEntry:
        """
        Append one entry.

        A store failure is logged and the unsaved entry returned: the
        escalation already happened and must not be repeated because of it.
        """
        entry = ActionLogEntry(
            record_id=record_key,
            workflow_id=workflow_id,
            activity_id=step_id,
            action_type=action_kind,
            violation_count=violation_count,
            is_success=success,
            message=message,
        )

        try:
            saved = self.store.insert_action_log(entry.to_row())
        except Exception as e:
            logger.error(f"Failed to save SLA action log for record {record_key}: {e}")
            return entry

        if saved:
            return ActionLogEntry.model_validate(saved)
        return entry
