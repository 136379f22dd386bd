"""Transfer statistics collection."""

import threading
from dataclasses import dataclass, asdict
from typing import Dict, Any

from ..utils.logging import get_logger


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of the transfer counters."""

    uploads: int = 0
    deletes: int = 0
    upload_bytes: int = 0
    download_bytes: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert snapshot to dictionary."""
        return asdict(self)


class TransferStats:
    """Thread-safe counters for traffic generated by the remote adapters.

    Workers update these concurrently, so every mutation goes through the lock.
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._uploads = 0
        self._deletes = 0
        self._upload_bytes = 0
        self._download_bytes = 0
        self._failed = 0

    def add_upload(self, num_bytes: int):
        """Count one upload of ``num_bytes`` bytes."""
        with self._lock:
            self._uploads += 1
            self._upload_bytes += num_bytes

    def add_delete(self):
        with self._lock:
            self._deletes += 1

    def add_download(self, num_bytes: int):
        """Count downloaded bytes (listings and image bodies alike)."""
        with self._lock:
            self._download_bytes += num_bytes

    def add_failure(self):
        with self._lock:
            self._failed += 1

    def snapshot(self) -> StatsSnapshot:
        """Return a consistent copy of all counters."""
        with self._lock:
            return StatsSnapshot(
                uploads=self._uploads,
                deletes=self._deletes,
                upload_bytes=self._upload_bytes,
                download_bytes=self._download_bytes,
                failed=self._failed
            )

    def reset(self):
        with self._lock:
            self._uploads = 0
            self._deletes = 0
            self._upload_bytes = 0
            self._download_bytes = 0
            self._failed = 0
        self.logger.debug("Transfer statistics reset")


def format_bytes(num_bytes: int) -> str:
    """Render a byte count with a binary unit, e.g. ``1.50 KB``."""
    unit = 1024
    if num_bytes < unit:
        return f"{num_bytes} B"
    div, exp = unit, 0
    n = num_bytes // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{num_bytes / div:.2f} {'KMGTPE'[exp]}B"
