"""
Background Job Scheduler for the SLA engine.

Runs the SLA sweep on a fixed interval using APScheduler.

- One job, ``sla_sweep``, never more than one instance at a time
- Failure monitoring: repeated failed sweeps within 24h pause the job
  and raise a CRITICAL alert (log + optional ops webhook)
- Health status for the admin endpoint
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings


logger = logging.getLogger(__name__)


SWEEP_JOB_ID = "sla_sweep"


# ==========================================
# Sweep Failure Monitor
# ==========================================

class SweepFailureMonitor:
    """
    Counts failed sweeps over a rolling 24h window.

    Once ``failure_threshold`` failures accumulate the sweep is marked
    paused and an alert goes out, so a broken store does not leave
    violations unescalated for days.
    """

    window = timedelta(hours=24)

    def __init__(self, failure_threshold: int = 2, alert_webhook_url: Optional[str] = None):
        self.failure_threshold = failure_threshold
        self.alert_webhook_url = alert_webhook_url
        self.failures: List[datetime] = []
        self.paused = False

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def reset(self) -> None:
        self.failures = []
        self.paused = False

    async def record_failure(self, error: str) -> bool:
        """Note one failed sweep. Returns True when the sweep should now be paused."""
        now = datetime.now(timezone.utc)
        self.failures = [t for t in self.failures if t > now - self.window]
        self.failures.append(now)

        if self.failure_count < self.failure_threshold:
            return False

        self.paused = True
        await self._alert(error)
        return True

    async def _alert(self, error: str) -> None:
        logger.critical(
            f"CRITICAL: SLA sweep failed {self.failure_count} times in 24h, "
            f"pausing job {SWEEP_JOB_ID}. Last error: {error}"
        )
        if not self.alert_webhook_url:
            return

        payload = {
            "job_id": SWEEP_JOB_ID,
            "failure_count": self.failure_count,
            "error": error,
            "service": settings.app_name,
            "time": self.failures[-1].isoformat(),
        }
        try:
            async with httpx.AsyncClient(timeout=settings.escalation_timeout_seconds) as client:
                await client.post(self.alert_webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Ops alert webhook failed: {e}")

    def status(self) -> Dict[str, Any]:
        return {
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure": self.failures[-1].isoformat() if self.failures else None,
            "is_paused": self.paused,
        }


sweep_monitor = SweepFailureMonitor(
    failure_threshold=settings.job_failure_alert_threshold,
    alert_webhook_url=settings.ops_alert_webhook_url
)


class SlaScheduler:
    """
    Periodic trigger for the SLA sweep.

    Only one process in a deployment should start it (RUN_SCHEDULER=true);
    within the process APScheduler never overlaps two sweeps.
    """

    def __init__(self, interval_minutes: Optional[int] = None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.interval_minutes = interval_minutes or settings.sweep_interval_minutes

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
            timezone="UTC"
        )
        self.scheduler.add_job(
            sla_sweep_job,
            IntervalTrigger(minutes=self.interval_minutes),
            id=SWEEP_JOB_ID,
            name="SLA Sweep",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(
            f"SLA scheduler started (every {self.interval_minutes} min, "
            f"next run at {self.scheduler.get_job(SWEEP_JOB_ID).next_run_time})"
        )

    def stop(self) -> None:
        if self.is_running:
            self.scheduler.shutdown(wait=True)
            logger.info("SLA scheduler stopped")

    def job_status(self) -> Optional[Dict[str, Any]]:
        job = self.scheduler.get_job(SWEEP_JOB_ID) if self.scheduler else None
        if job is None:
            return None
        return {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        }

    def pause(self) -> bool:
        """Stop scheduling sweeps until resumed. False when not running here."""
        if not self.is_running:
            return False
        self.scheduler.pause_job(SWEEP_JOB_ID)
        logger.warning(f"Paused job: {SWEEP_JOB_ID}")
        return True

    def resume(self) -> bool:
        """Resume sweeps and clear the failure window. False when not running here."""
        if not self.is_running:
            return False
        self.scheduler.resume_job(SWEEP_JOB_ID)
        sweep_monitor.reset()
        logger.info(f"Resumed job: {SWEEP_JOB_ID}")
        return True

    def get_health_status(self) -> Dict[str, Any]:
        failures = sweep_monitor.status()
        return {
            "status": "degraded" if failures["failure_count"] else "healthy",
            "is_running": self.is_running,
            "interval_minutes": self.interval_minutes,
            "job": self.job_status(),
            "failures": failures,
        }


async def sla_sweep_job() -> Dict[str, Any]:
    """
    One periodic SLA sweep.

    A sweep that cannot load the active records counts as a failure;
    per-record failures do not.
    """
    from app.services.sweeper import get_sweeper

    try:
        result = await get_sweeper().run()
    except Exception as e:
        logger.error(f"SLA sweep failed: {e}", exc_info=True)
        if await sweep_monitor.record_failure(str(e)):
            get_scheduler().pause()
        raise

    sweep_monitor.reset()
    return result.to_response()


scheduler = SlaScheduler()


def get_scheduler() -> SlaScheduler:
    """Get the global scheduler instance."""
    return scheduler
