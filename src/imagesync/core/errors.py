"""Run-level error taxonomy of the reconciliation engine."""

from ..config.loader import ConfigurationError


class SyncEngineError(Exception):
    """Base exception for sync engine errors."""
    pass


class ConnectivityError(SyncEngineError):
    """Either remote could not be reached or refused the listing. Fatal to the run."""
    pass


class ItemTransferError(SyncEngineError):
    """A single fetch, put or delete failed. Counted, never fatal."""

    def __init__(self, operation: str, name: str, reason: str):
        super().__init__(f"{operation} of {name} failed: {reason}")
        self.operation = operation
        self.name = name
        self.reason = reason


class ConcurrencyRejection(SyncEngineError):
    """A run was requested while another one is still executing."""
    pass


class RunCancelled(SyncEngineError):
    """The run was cancelled before it reached the executor."""
    pass


__all__ = [
    "SyncEngineError",
    "ConfigurationError",
    "ConnectivityError",
    "ItemTransferError",
    "ConcurrencyRejection",
    "RunCancelled",
]
