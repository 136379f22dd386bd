"""Turning execution outcomes and fatal errors into run results."""

from typing import Iterable, Optional

from ..api_clients.base import SourceEntry, DestinationEntry
from .models import ExecutionOutcome, RunResult


UP_TO_DATE_MESSAGE = "Files are already up to date, nothing to sync."
SKIPPED_MESSAGE = "A sync run is already in progress; this request was skipped."


class ListingTotals:
    """Counts and byte totals of both listings, reported with every result."""

    def __init__(self, source: Iterable[SourceEntry] = (), destination: Iterable[DestinationEntry] = ()):
        self.update(source, destination)

    def update(self, source: Iterable[SourceEntry], destination: Iterable[DestinationEntry]):
        """Recount from fresh listings."""
        source = list(source)
        destination = list(destination)
        self.source_count = len(source)
        self.source_bytes = sum(entry.size for entry in source)
        self.dest_count = len(destination)
        self.dest_bytes = sum(entry.size for entry in destination)

    def as_fields(self) -> dict:
        return {
            "source_total_count": self.source_count,
            "source_total_bytes": self.source_bytes,
            "dest_total_count": self.dest_count,
            "dest_total_bytes": self.dest_bytes,
        }


def summary_message(outcome: ExecutionOutcome) -> str:
    """Summarize counts per category, including failures."""
    message = (
        f"Uploaded: {outcome.uploaded} (failed: {outcome.upload_failed}), "
        f"deleted: {outcome.deleted} (failed: {outcome.delete_failed})"
    )
    if outcome.cancelled:
        message += "; run was cancelled before all operations completed"
    return message


def build_result(
    mode: str,
    outcome: ExecutionOutcome,
    duration: float,
    totals: Optional[ListingTotals] = None
) -> RunResult:
    """Aggregate an executed plan into the run's result.

    The run is successful only when no individual operation failed and it
    was not cancelled.
    """
    totals = totals or ListingTotals()
    return RunResult(
        success=outcome.failures == 0 and not outcome.cancelled,
        message=summary_message(outcome),
        mode=mode,
        uploaded=outcome.uploaded,
        deleted=outcome.deleted,
        upload_failed=outcome.upload_failed,
        delete_failed=outcome.delete_failed,
        upload_bytes=outcome.upload_bytes,
        duration=duration,
        cancelled=outcome.cancelled,
        **totals.as_fields()
    )


def up_to_date_result(mode: str, duration: float, totals: Optional[ListingTotals] = None) -> RunResult:
    """Result of a run whose plan was empty. The executor never ran."""
    totals = totals or ListingTotals()
    return RunResult(
        success=True,
        message=UP_TO_DATE_MESSAGE,
        mode=mode,
        duration=duration,
        **totals.as_fields()
    )


def failure_result(
    mode: str,
    error: Exception,
    duration: float,
    totals: Optional[ListingTotals] = None,
    message: Optional[str] = None
) -> RunResult:
    """Result of a run stopped by a fatal error; the message names the failed precondition."""
    totals = totals or ListingTotals()
    return RunResult(
        success=False,
        message=message or str(error),
        mode=mode,
        duration=duration,
        error=f"{type(error).__name__}: {error}",
        **totals.as_fields()
    )


def skipped_result(mode: str) -> RunResult:
    return RunResult(success=False, message=SKIPPED_MESSAGE, mode=mode, skipped=True)
