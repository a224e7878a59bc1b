"""
Sweeper for the SLA engine.

One pass over every active record (waiting or violated):

    load -> resolve step -> evaluate -> claim -> dispatch -> log -> persist

A newly crossed boundary is claimed with a compare-and-set on
violation_count before its action is dispatched; only the pass that wins
the claim escalates. The remaining tick columns are written afterwards with
the same guard. A failure on one record is logged and the pass moves on to
the next.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.clock import system_clock
from app.core.config import settings
from app.core.database import SlaStore, get_sla_store
from app.core.exceptions import ValidationError
from app.models.enums import EscalationActionKind, RecordStatus
from app.models.schemas import (
    StepDefinition,
    SweepResult,
    TrackedRecord,
    WorkflowDefinition,
)
from app.services.action_log import ActionLogRecorder
from app.services.escalation import EscalationDispatcher, resolve_escalation_action
from app.services.violations import ViolationEvaluator


logger = logging.getLogger(__name__)


# Per-record outcomes counted in SweepResult
OUTCOME_UPDATED = "updated"
OUTCOME_ESCALATED = "escalated"
OUTCOME_SKIPPED = "skipped"
OUTCOME_CONFLICT = "conflict"
OUTCOME_FAILED = "failed"


def parse_record(row: dict[str, Any]) -> TrackedRecord:
    """Validate a stored row, raising ValidationError on bad data (unparseable dates, ...)."""
    try:
        return TrackedRecord.model_validate(row)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(
            f"Invalid record data: {first.get('msg', str(e))}",
            field=field or None,
            value=first.get("input"),
            record_id=row.get("record_id")
        ) from e


class Sweeper:
    """
    Orchestrates a full evaluation pass over the active records.

    Store calls are synchronous (supabase-py); escalation calls are
    awaited, with at most ``concurrency`` records in flight.
    """

    def __init__(
        self,
        store: SlaStore,
        evaluator: Optional[ViolationEvaluator] = None,
        dispatcher: Optional[EscalationDispatcher] = None,
        recorder: Optional[ActionLogRecorder] = None,
        clock=None,
        concurrency: Optional[int] = None
    ):
        self.store = store
        self.evaluator = evaluator or ViolationEvaluator()
        self.clock = clock or system_clock
        self.dispatcher = dispatcher or EscalationDispatcher(clock=self.clock)
        self.recorder = recorder or ActionLogRecorder(store)
        self.concurrency = max(1, concurrency or settings.sweep_concurrency)

    # ==========================================
    # COUNTS
    # ==========================================

    def waiting_count(self) -> int:
        return self.store.count_records(RecordStatus.WAITING.value)

    def violated_count(self) -> int:
        return self.store.count_records(RecordStatus.VIOLATED.value)

    # ==========================================
    # LOOKUPS
    # ==========================================

    def load_step(self, record: TrackedRecord) -> Optional[StepDefinition]:
        """Step by id when the record carries one, else by (workflow, step code)."""
        row = None
        if record.activity_id:
            row = self.store.get_step(record.activity_id)
        if row is None and record.workflow_id and record.step_code:
            row = self.store.find_step(record.workflow_id, record.step_code)
        return StepDefinition.model_validate(row) if row else None

    def load_workflow(self, workflow_id: Optional[str]) -> Optional[WorkflowDefinition]:
        if not workflow_id:
            return None
        row = self.store.get_workflow(workflow_id)
        return WorkflowDefinition.model_validate(row) if row else None

    # ==========================================
    # ESCALATION
    # ==========================================

    async def fire_action(
        self,
        kind: EscalationActionKind,
        record: TrackedRecord,
        step: StepDefinition,
        workflow: Optional[WorkflowDefinition],
        violation_count: int,
        now: datetime
    ) -> bool:
        """Resolve, dispatch and log one action. Unconfigured actions are logged as failed."""
        action = resolve_escalation_action(kind, step, workflow)

        if action is None:
            logger.warning(
                f"No {kind.value} API configured for step {step.id} "
                f"(record {record.record_id}); skipping"
            )
            self.recorder.record(
                record.record_id, record.workflow_id, step.id, kind,
                violation_count, False,
                f"{kind.value} skipped: no API configured"
            )
            return False

        result = await self.dispatcher.dispatch(record, step, action, violation_count, now)
        self.recorder.record(
            record.record_id, record.workflow_id, step.id, kind,
            violation_count, result.success, result.message
        )
        return result.success

    async def escalate(
        self,
        record: TrackedRecord,
        step: StepDefinition,
        workflow: Optional[WorkflowDefinition],
        violation_count: int,
        now: datetime
    ) -> None:
        """
        Run the step's violation action for a newly crossed boundary.

        Auto-approval only fires once the count reaches max_violations.
        Below that a skipped auto_approve entry is logged and the notify
        action fires instead.
        """
        if step.violation_action == EscalationActionKind.AUTO_APPROVE:
            threshold = step.max_violations
            if violation_count >= threshold:
                await self.fire_action(
                    EscalationActionKind.AUTO_APPROVE, record, step, workflow, violation_count, now
                )
                return

            self.recorder.record(
                record.record_id, record.workflow_id, step.id,
                EscalationActionKind.AUTO_APPROVE, violation_count, False,
                f"auto_approve skipped: violation count {violation_count} < threshold {threshold}"
            )

        await self.fire_action(
            EscalationActionKind.NOTIFY, record, step, workflow, violation_count, now
        )

    # ==========================================
    # SWEEP
    # ==========================================

    async def process_record(self, row: dict[str, Any], now: datetime) -> str:
        """
        Evaluate one stored row and apply its outcome. Returns the outcome name.

        A new violation is claimed in the store (compare-and-set on
        violation_count) before anything is dispatched, so overlapping
        passes escalate each boundary once. The tick columns are written
        after the escalation outcome is logged.
        """
        try:
            record = parse_record(row)
        except ValidationError as e:
            logger.warning(f"Skipping malformed record {row.get('record_id')}: {e.message}")
            return OUTCOME_SKIPPED

        step = self.load_step(record)
        if step is None:
            logger.warning(
                f"Step not found for record {record.record_id} "
                f"(activity_id={record.activity_id}, step_code={record.step_code})"
            )
            return OUTCOME_SKIPPED

        evaluation = self.evaluator.evaluate(record, step, now)
        if evaluation.skipped:
            logger.warning(f"Skipping record {record.record_id}: {evaluation.skipped_reason}")
            return OUTCOME_SKIPPED

        expected_count = evaluation.previous_count
        if evaluation.is_new_violation:
            workflow = self.load_workflow(record.workflow_id)
            claimed = self.store.claim_violation(
                record.record_id,
                evaluation.previous_count,
                evaluation.violation_count,
                evaluation.record.status.value
            )
            if not claimed:
                logger.warning(
                    f"Violation {evaluation.violation_count} of record {record.record_id} "
                    f"already claimed or record completed; not escalating"
                )
                return OUTCOME_CONFLICT

            await self.escalate(evaluation.record, step, workflow, evaluation.violation_count, now)
            expected_count = evaluation.violation_count

        saved = self.store.save_record_state(evaluation.record, expected_count)
        if not saved:
            logger.warning(
                f"State write rejected for record {record.record_id}: "
                f"violation_count changed or record completed since it was read"
            )
            return OUTCOME_CONFLICT

        if evaluation.is_new_violation:
            logger.info(
                f"Updated violations for record {record.record_id}: "
                f"{evaluation.previous_count} -> {evaluation.violation_count}"
            )
            return OUTCOME_ESCALATED
        return OUTCOME_UPDATED

    async def run(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Sweep all active records at ``now`` (defaults to the clock).

        Raises DatabaseError only when the active records cannot be
        loaded; per-record failures are counted, not raised.
        """
        now = now or self.clock.now()
        started = time.monotonic()
        rows = self.store.list_active_records()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(row: dict[str, Any]) -> str:
            async with semaphore:
                try:
                    return await self.process_record(row, now)
                except Exception as e:
                    logger.error(
                        f"Failed to process record {row.get('record_id')}: {e}",
                        exc_info=True
                    )
                    return OUTCOME_FAILED

        outcomes = await asyncio.gather(*(guarded(row) for row in rows))

        result = SweepResult(
            success=True,
            processed=len(outcomes),
            escalated=outcomes.count(OUTCOME_ESCALATED),
            skipped=outcomes.count(OUTCOME_SKIPPED),
            failed=outcomes.count(OUTCOME_FAILED),
            conflicts=outcomes.count(OUTCOME_CONFLICT),
            started_at=now,
            duration_seconds=round(time.monotonic() - started, 3),
        )
        result.message = (
            f"Processed {result.processed} records: {result.escalated} escalated, "
            f"{result.skipped} skipped, {result.failed} failed, {result.conflicts} conflicts"
        )
        logger.info(f"SLA sweep completed in {result.duration_seconds}s. {result.message}")
        return result

    async def trigger(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """
        Manual entry point: run a sweep and report the current counts.

        Never raises; a failed sweep comes back as success=False with the error.
        A completed pass whose counts cannot be read stays success=True, with
        the count failure reported in ``error``.
        """
        try:
            result = await self.run(now)
        except Exception as e:
            logger.error(f"SLA sweep failed: {e}", exc_info=True)
            return SweepResult(success=False, error=str(e)).to_response()

        try:
            result.waiting_count = self.waiting_count()
            result.violated_count = self.violated_count()
        except Exception as e:
            logger.error(f"SLA sweep completed but record counts are unavailable: {e}")
            result.error = f"counts unavailable: {e}"
        return result.to_response()


def get_sweeper() -> Sweeper:
    """Sweeper bound to the Supabase-backed store."""
    return Sweeper(get_sla_store())


async def trigger_sweep() -> dict[str, Any]:
    """
    Manual sweep over the configured store.

    Store connection failures are reported like any other failed sweep.
    """
    try:
        sweeper = get_sweeper()
    except Exception as e:
        logger.error(f"SLA sweep could not start: {e}")
        return SweepResult(success=False, error=str(e)).to_response()
    return await sweeper.trigger()
