"""Performance and traffic statistics package."""

from .metrics import TransferStats, StatsSnapshot, format_bytes

__all__ = [
    "TransferStats",
    "StatsSnapshot",
    "format_bytes",
]
