"""Run coordinator: drives one reconciliation from validation to report."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Coroutine, List, Optional, Tuple, TypeVar, Union

from ..api_clients import APIClientFactory, RemoteError, SourceClient, DestinationClient
from ..api_clients.base import SourceEntry, DestinationEntry
from ..config import ConfigManager, SyncConfig, SyncMode
from ..performance import TransferStats, StatsSnapshot, format_bytes
from ..utils.logging import get_logger
from .cache import DestinationCache
from .differ import diff
from .errors import ConfigurationError, ConnectivityError, ConcurrencyRejection, RunCancelled
from .events import EventHub, RunReporter
from .executor import PlanExecutor
from .models import RunState, RunResult, ExecutionOutcome
from .results import (
    ListingTotals,
    UP_TO_DATE_MESSAGE,
    SKIPPED_MESSAGE,
    build_result,
    up_to_date_result,
    failure_result,
    skipped_result,
)


T = TypeVar("T")


@dataclass(frozen=True)
class TriggerResponse:
    """Answer to a request to start a run in the background."""

    accepted: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "TriggerResponse":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: str) -> "TriggerResponse":
        return cls(accepted=False, reason=reason)

    @property
    def status(self) -> str:
        return "accepted" if self.accepted else "rejected"


class ReconciliationService:
    """Coordinates reconciliation runs for one NodeImage account and one WebDAV folder.

    At most one run executes at a time. A request arriving while a run is in
    progress is rejected straight away rather than queued.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        factory: Optional[APIClientFactory] = None,
        hub: Optional[EventHub] = None,
        stats: Optional[TransferStats] = None,
        cache: Optional[DestinationCache] = None
    ):
        """Initialize the reconciliation service.

        Args:
            config_manager: Source of the per-run configuration snapshot
            factory: Creates the remote adapters for each run
            hub: Push channel progress is published on
            stats: Process-wide transfer counters shared with the adapters
            cache: Destination listing cache kept across runs
        """
        self.config_manager = config_manager
        self.factory = factory or APIClientFactory()
        self.hub = hub or EventHub()
        self.stats = stats or TransferStats()
        self.cache = cache or DestinationCache()
        self.logger = get_logger(self.__class__.__name__)
        self.reporter = RunReporter(self.hub, self.logger)

        self._run_lock = asyncio.Lock()
        self._state = RunState.IDLE
        self._last_result: Optional[RunResult] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._background: Optional[asyncio.Task] = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def last_result(self) -> Optional[RunResult]:
        """Result of the last run that was not skipped."""
        return self._last_result

    def stats_snapshot(self) -> StatsSnapshot:
        return self.stats.snapshot()

    async def trigger_run(self, mode: Union[SyncMode, str]) -> TriggerResponse:
        """Start a run in the background unless one is already executing."""
        mode = SyncMode(mode)
        try:
            await self._acquire()
        except ConcurrencyRejection as e:
            self.reporter.warning(str(e), mode=mode.value)
            return TriggerResponse.reject("already_running")

        self._background = asyncio.create_task(self._run_holding_lock(mode, None))
        self.logger.info("Sync run accepted", mode=mode.value)
        return TriggerResponse.accept()

    async def run(self, mode: Union[SyncMode, str], cancel_event: Optional[asyncio.Event] = None) -> RunResult:
        """Run one reconciliation and wait for its result.

        Returns a skipped result immediately when another run holds the lock.
        """
        mode = SyncMode(mode)
        try:
            await self._acquire()
        except ConcurrencyRejection as e:
            self.reporter.warning(str(e), mode=mode.value)
            return skipped_result(mode.value)

        return await self._run_holding_lock(mode, cancel_event)

    def cancel(self) -> bool:
        """Ask the active run to stop. Returns False when nothing is running."""
        if not self.is_running or self._cancel_event is None:
            return False
        self._cancel_event.set()
        self.logger.info("Cancellation requested")
        return True

    async def wait_background(self):
        """Wait for a run started by ``trigger_run`` to finish."""
        if self._background is not None:
            await self._background

    async def _acquire(self):
        if self._run_lock.locked():
            raise ConcurrencyRejection(SKIPPED_MESSAGE)
        # an unheld asyncio.Lock is acquired without yielding
        await self._run_lock.acquire()

    async def _run_holding_lock(self, mode: SyncMode, cancel_event: Optional[asyncio.Event]) -> RunResult:
        try:
            self.reporter.status("syncing")
            self._cancel_event = cancel_event or asyncio.Event()
            result = await self._execute_run(mode, self._cancel_event)
            self._last_result = result
            return result
        finally:
            self._cancel_event = None
            self._set_state(RunState.IDLE)
            self._run_lock.release()

    async def _execute_run(self, mode: SyncMode, cancel_event: asyncio.Event) -> RunResult:
        started = time.monotonic()
        totals = ListingTotals()
        outcome = ExecutionOutcome()
        self.reporter.info("Starting sync", mode=mode.value)

        try:
            self._set_state(RunState.VALIDATING)
            config = self._validate(mode)

            source = self.factory.create_source(config, mode, self.stats)
            destination = self.factory.create_destination(config, self.stats)
            async with source, destination:
                result = await self._reconcile(mode, config, source, destination, cancel_event, started, totals, outcome)

        except RunCancelled:
            outcome.cancelled = True
            result = build_result(mode.value, outcome, time.monotonic() - started, totals)

        except (ConfigurationError, ConnectivityError) as e:
            result = failure_result(mode.value, e, time.monotonic() - started, totals)

        except asyncio.CancelledError:
            # the caller gave up on the run; record what happened before passing it on
            outcome.cancelled = True
            result = build_result(mode.value, outcome, time.monotonic() - started, totals)
            self._last_result = result
            self.reporter.warning(result.message, duration=f"{result.duration:.2f}s")
            self.reporter.result(result.to_dict())
            raise

        except Exception as e:
            self.logger.exception("Unexpected error during sync", mode=mode.value)
            result = failure_result(mode.value, e, time.monotonic() - started, totals, f"Sync failed unexpectedly: {e}")

        self._set_state(RunState.REPORTING)
        if result.success:
            self.reporter.info(result.message, duration=f"{result.duration:.2f}s")
        else:
            self.reporter.error(result.message, duration=f"{result.duration:.2f}s")
        self.reporter.result(result.to_dict())
        return result

    def _validate(self, mode: SyncMode) -> SyncConfig:
        """Snapshot the configuration and check the credentials ``mode`` needs."""
        config = self.config_manager.snapshot()
        missing = config.missing_for_mode(mode)
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
        return config

    async def _reconcile(
        self,
        mode: SyncMode,
        config: SyncConfig,
        source: SourceClient,
        destination: DestinationClient,
        cancel_event: asyncio.Event,
        started: float,
        totals: ListingTotals,
        outcome: ExecutionOutcome
    ) -> RunResult:
        root = config.webdav_folder

        self._set_state(RunState.CONNECTING)
        await self._unless_cancelled(self._connect(mode, root, source, destination), cancel_event)
        self.reporter.info("Connected to NodeImage and WebDAV")

        self._set_state(RunState.LISTING)
        source_entries, dest_entries = await self._unless_cancelled(
            self._list(mode, root, source, destination), cancel_event
        )
        totals.update(source_entries, dest_entries)
        self.reporter.info(
            "Listings fetched",
            source_files=totals.source_count,
            source_size=format_bytes(totals.source_bytes),
            dest_files=totals.dest_count,
            dest_size=format_bytes(totals.dest_bytes)
        )

        self._set_state(RunState.DIFFING)
        plan = diff(source_entries, dest_entries)
        if mode == SyncMode.INCREMENTAL:
            plan = plan.without_deletes()

        if plan.is_empty:
            self.reporter.info(UP_TO_DATE_MESSAGE)
            return up_to_date_result(mode.value, time.monotonic() - started, totals)

        if cancel_event.is_set():
            raise RunCancelled("Sync was cancelled before any operation ran")

        self.reporter.info(
            "Plan computed",
            to_upload=len(plan.to_upload),
            upload_size=format_bytes(plan.upload_bytes),
            to_delete=len(plan.to_delete)
        )

        self._set_state(RunState.EXECUTING)
        deadline = None
        if config.run_timeout is not None:
            deadline = max(config.run_timeout - (time.monotonic() - started), 0)

        executor = PlanExecutor(source, destination, root, self.reporter)
        try:
            await executor.execute(plan, config.concurrency, cancel_event, deadline, outcome)
        finally:
            # also reached when the run is cancelled from outside mid-batch
            if outcome.mutations > 0:
                await self.cache.invalidate()

        return build_result(mode.value, outcome, time.monotonic() - started, totals)

    async def _unless_cancelled(self, stage: Coroutine[Any, Any, T], cancel_event: asyncio.Event) -> T:
        """Await one pre-execution stage, abandoning it as soon as ``cancel_event`` is set."""
        if cancel_event.is_set():
            stage.close()
            raise RunCancelled("Sync was cancelled before any operation ran")

        stage_task = asyncio.create_task(stage)
        waiter = asyncio.create_task(cancel_event.wait())
        try:
            await asyncio.wait({stage_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not stage_task.done():
                stage_task.cancel()
                await asyncio.gather(stage_task, return_exceptions=True)

        if stage_task.cancelled():
            self.logger.info("Stage abandoned after cancellation", state=self._state.value)
            raise RunCancelled("Sync was cancelled before any operation ran")
        return stage_task.result()

    async def _connect(self, mode: SyncMode, root: str, source: SourceClient, destination: DestinationClient):
        try:
            await destination.connect_or_verify(root)
        except RemoteError as e:
            raise ConnectivityError(f"Cannot access WebDAV folder {root}: {e}") from e

        # incremental runs only need the API key, which has no cheap check
        if mode == SyncMode.FULL:
            try:
                await source.verify()
            except RemoteError as e:
                raise ConnectivityError(f"NodeImage verification failed: {e}") from e

    async def _list(
        self,
        mode: SyncMode,
        root: str,
        source: SourceClient,
        destination: DestinationClient
    ) -> Tuple[List[SourceEntry], List[DestinationEntry]]:
        """Fetch both listings concurrently, serving the destination from cache when possible."""
        if mode == SyncMode.FULL:
            await self.cache.invalidate()

        cached = await self.cache.get()
        if cached is not None:
            self.reporter.info("Using cached WebDAV listing", files=len(cached))
            return await self._list_source(source), cached

        listings = [
            asyncio.create_task(self._list_source(source)),
            asyncio.create_task(self._list_destination(root, destination)),
        ]
        try:
            source_entries, dest_entries = await asyncio.gather(*listings)
        except BaseException:
            # a failed or cancelled listing must not leave its sibling running
            for task in listings:
                task.cancel()
            await asyncio.gather(*listings, return_exceptions=True)
            raise
        await self.cache.set(dest_entries)
        return source_entries, dest_entries

    async def _list_source(self, source: SourceClient) -> List[SourceEntry]:
        try:
            return await source.list_entries()
        except RemoteError as e:
            raise ConnectivityError(f"Failed to list NodeImage images: {e}") from e

    async def _list_destination(self, root: str, destination: DestinationClient) -> List[DestinationEntry]:
        try:
            return await destination.list_entries(root)
        except RemoteError as e:
            raise ConnectivityError(f"Failed to list WebDAV folder {root}: {e}") from e

    def _set_state(self, state: RunState):
        if state == self._state:
            return
        self._state = state
        self.reporter.status(state.value)
        self.logger.debug("Run state changed", state=state.value)
