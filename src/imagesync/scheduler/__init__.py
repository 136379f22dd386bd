"""Scheduling for periodic sync runs."""

from .job_scheduler import SyncScheduler, SchedulerError, SYNC_JOB_ID

__all__ = [
    "SyncScheduler",
    "SchedulerError",
    "SYNC_JOB_ID"
]
