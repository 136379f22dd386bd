"""Data structures produced and consumed by the reconciliation engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional

from ..api_clients.base import SourceEntry, DestinationEntry


class RunState(str, Enum):
    """States a reconciliation run moves through."""
    IDLE = "idle"
    VALIDATING = "validating"
    CONNECTING = "connecting"
    LISTING = "listing"
    DIFFING = "diffing"
    EXECUTING = "executing"
    REPORTING = "reporting"


class TransferKind(str, Enum):
    UPLOAD = "upload"
    DELETE = "delete"


@dataclass
class ReconciliationPlan:
    """What a run has to do: images to upload and files to delete."""

    to_upload: List[SourceEntry] = field(default_factory=list)
    to_delete: List[DestinationEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_upload and not self.to_delete

    @property
    def upload_bytes(self) -> int:
        """Total size of the planned uploads."""
        return sum(entry.size for entry in self.to_upload)

    def without_deletes(self) -> "ReconciliationPlan":
        """Same uploads, deletes dropped (incremental runs)."""
        return ReconciliationPlan(to_upload=list(self.to_upload), to_delete=[])


@dataclass(frozen=True)
class TransferOutcome:
    """Result of one worker: a single upload or delete."""

    kind: TransferKind
    name: str
    success: bool
    size: int = 0
    error: Optional[Exception] = None


@dataclass
class ExecutionOutcome:
    """Counts collected by the plan executor."""

    uploaded: int = 0
    deleted: int = 0
    upload_failed: int = 0
    delete_failed: int = 0
    upload_bytes: int = 0
    cancelled: bool = False

    @property
    def mutations(self) -> int:
        """Successful operations that changed the destination."""
        return self.uploaded + self.deleted

    @property
    def failures(self) -> int:
        return self.upload_failed + self.delete_failed

    def record(self, outcome: TransferOutcome):
        """Fold one worker outcome into the counts."""
        if outcome.kind == TransferKind.UPLOAD:
            if outcome.success:
                self.uploaded += 1
                self.upload_bytes += outcome.size
            else:
                self.upload_failed += 1
        else:
            if outcome.success:
                self.deleted += 1
            else:
                self.delete_failed += 1


@dataclass(frozen=True)
class RunResult:
    """Summary of one reconciliation run."""

    success: bool
    message: str
    mode: str = ""
    uploaded: int = 0
    deleted: int = 0
    upload_failed: int = 0
    delete_failed: int = 0
    upload_bytes: int = 0
    duration: float = 0.0
    source_total_count: int = 0
    source_total_bytes: int = 0
    dest_total_count: int = 0
    dest_total_bytes: int = 0
    error: Optional[str] = None
    skipped: bool = False
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON payload pushed to the front end."""
        return {
            "success": self.success,
            "message": self.message,
            "mode": self.mode,
            "uploaded": self.uploaded,
            "deleted": self.deleted,
            "upload_failed": self.upload_failed,
            "delete_failed": self.delete_failed,
            "upload_bytes": self.upload_bytes,
            "duration": round(self.duration, 3),
            "source_total_count": self.source_total_count,
            "source_total_bytes": self.source_total_bytes,
            "dest_total_count": self.dest_total_count,
            "dest_total_bytes": self.dest_total_bytes,
            "error": self.error,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
        }
