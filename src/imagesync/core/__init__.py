"""Core reconciliation engine."""

from .models import (
    RunState,
    TransferKind,
    ReconciliationPlan,
    TransferOutcome,
    ExecutionOutcome,
    RunResult
)
from .errors import (
    SyncEngineError,
    ConfigurationError,
    ConnectivityError,
    ItemTransferError,
    ConcurrencyRejection,
    RunCancelled
)
from .differ import diff
from .cache import AsyncRWLock, DestinationCache
from .events import EventHub, Message, RunReporter, MESSAGE_LOG, MESSAGE_STATUS, MESSAGE_RESULT
from .executor import PlanExecutor
from .results import ListingTotals, build_result, summary_message, UP_TO_DATE_MESSAGE, SKIPPED_MESSAGE
from .service import ReconciliationService, TriggerResponse

__all__ = [
    "RunState",
    "TransferKind",
    "ReconciliationPlan",
    "TransferOutcome",
    "ExecutionOutcome",
    "RunResult",

    "SyncEngineError",
    "ConfigurationError",
    "ConnectivityError",
    "ItemTransferError",
    "ConcurrencyRejection",
    "RunCancelled",

    "diff",
    "AsyncRWLock",
    "DestinationCache",
    "EventHub",
    "Message",
    "RunReporter",
    "MESSAGE_LOG",
    "MESSAGE_STATUS",
    "MESSAGE_RESULT",
    "PlanExecutor",
    "ListingTotals",
    "build_result",
    "summary_message",
    "UP_TO_DATE_MESSAGE",
    "SKIPPED_MESSAGE",

    "ReconciliationService",
    "TriggerResponse"
]
