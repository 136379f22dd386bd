"""Periodic incremental sync driven by APScheduler."""

from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.job import Job

from ..config import SyncMode
from ..core import ReconciliationService
from ..utils.logging import get_logger


SYNC_JOB_ID = "incremental_sync"


class SchedulerError(Exception):
    """Raised when scheduler operations fail."""
    pass


class SyncScheduler:
    """Runs an incremental sync every ``interval_minutes``, first run at start."""

    def __init__(self, service: ReconciliationService, interval_minutes: int):
        """Initialize sync scheduler.

        Args:
            service: Reconciliation service the job triggers
            interval_minutes: Minutes between runs; 0 disables scheduling
        """
        self.service = service
        self.interval_minutes = interval_minutes
        self.logger = get_logger(self.__class__.__name__)

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300
            }
        )
        self.job: Optional[Job] = None

        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed, EVENT_JOB_MISSED)

    @property
    def enabled(self) -> bool:
        return self.interval_minutes > 0

    def start(self):
        """Start the scheduler. Does nothing when the interval is 0."""
        if not self.enabled:
            self.logger.info("Scheduled sync disabled")
            return
        if self.scheduler.running:
            self.logger.warning("Scheduler is already running")
            return

        try:
            self.scheduler.start()
            self.job = self.scheduler.add_job(
                self._scheduled_sync,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=SYNC_JOB_ID,
                name="Incremental sync",
                next_run_time=datetime.now(timezone.utc),
                replace_existing=True
            )
        except Exception as e:
            self.logger.error("Failed to start scheduler", error=str(e))
            raise SchedulerError(f"Failed to start scheduler: {e}")

        self.logger.info("Scheduled incremental sync", interval_minutes=self.interval_minutes)

    def stop(self):
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        self.job = None
        self.logger.info("Scheduler stopped")

    def next_run_time(self) -> Optional[datetime]:
        if self.job is None:
            return None
        return self.job.next_run_time

    async def _scheduled_sync(self):
        result = await self.service.run(SyncMode.INCREMENTAL)
        if result.skipped:
            self.logger.info("Scheduled sync skipped, a run is in progress")

    def _job_executed(self, event):
        self.logger.debug("Scheduled job executed", job_id=event.job_id)

    def _job_error(self, event):
        self.logger.error("Scheduled job failed", job_id=event.job_id, error=str(event.exception))

    def _job_missed(self, event):
        self.logger.warning("Scheduled job missed", job_id=event.job_id)
