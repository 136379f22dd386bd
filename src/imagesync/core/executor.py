"""Concurrent execution of a reconciliation plan."""

import asyncio
import posixpath
from typing import Optional, Set

from ..api_clients.base import SourceClient, DestinationClient, SourceEntry, DestinationEntry
from ..utils.logging import get_logger
from .errors import ItemTransferError
from .events import EventHub, RunReporter
from .models import ReconciliationPlan, ExecutionOutcome, TransferOutcome, TransferKind


DEFAULT_CONCURRENCY = 5


class PlanExecutor:
    """Runs uploads and deletes behind one admission gate.

    Every planned item is attempted; a failing item is recorded and never
    stops the others. Nothing is retried.
    """

    def __init__(
        self,
        source: SourceClient,
        destination: DestinationClient,
        root: str,
        reporter: Optional[RunReporter] = None
    ):
        """Initialize plan executor.

        Args:
            source: Adapter images are fetched from
            destination: Adapter images are written to and deleted from
            root: Destination folder uploads are placed in
            reporter: Progress reporter; a private one is created when None
        """
        self.source = source
        self.destination = destination
        self.root = root
        self.logger = get_logger(self.__class__.__name__)
        self.reporter = reporter or RunReporter(EventHub(), self.logger)

    async def execute(
        self,
        plan: ReconciliationPlan,
        max_concurrency: int = DEFAULT_CONCURRENCY,
        cancel_event: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
        outcome: Optional[ExecutionOutcome] = None
    ) -> ExecutionOutcome:
        """Execute ``plan`` with at most ``max_concurrency`` operations in flight.

        Args:
            plan: Uploads and deletes to perform
            max_concurrency: Size of the admission gate shared by both kinds
            cancel_event: When set, stop admitting work and abort in-flight work
            deadline: Seconds after which the batch is cancelled the same way
            outcome: Accumulator to record into. A caller passing its own can
                read the completed counts even when this coroutine is cancelled

        Returns:
            ExecutionOutcome with counts of the operations that completed
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        if outcome is None:
            outcome = ExecutionOutcome()
        gate = asyncio.Semaphore(max_concurrency)
        admission_closed = asyncio.Event()

        async def admitted(coro_factory, entry) -> Optional[TransferOutcome]:
            async with gate:
                if admission_closed.is_set():
                    return None
                return await coro_factory(entry)

        tasks: Set[asyncio.Task] = set()
        for entry in plan.to_upload:
            tasks.add(asyncio.create_task(admitted(self._upload, entry)))
        for entry in plan.to_delete:
            tasks.add(asyncio.create_task(admitted(self._delete, entry)))

        self.logger.debug(
            "Executing plan",
            uploads=len(plan.to_upload),
            deletes=len(plan.to_delete),
            max_concurrency=max_concurrency
        )

        cancel_waiter: Optional[asyncio.Task] = None
        if cancel_event is not None:
            cancel_waiter = asyncio.create_task(cancel_event.wait())

        loop = asyncio.get_running_loop()
        stop_at = loop.time() + deadline if deadline is not None else None
        pending = set(tasks)

        try:
            while pending:
                timeout = None
                if stop_at is not None:
                    timeout = max(stop_at - loop.time(), 0)

                waiting = pending | {cancel_waiter} if cancel_waiter else pending
                done, _ = await asyncio.wait(waiting, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    self._collect(outcome, task.result())

                if not done or (cancel_waiter is not None and cancel_waiter.done()):
                    outcome.cancelled = True
                    break

            if outcome.cancelled and pending:
                admission_closed.set()
                for task in pending:
                    task.cancel()
                results = await asyncio.gather(*pending, return_exceptions=True)
                for result in results:
                    if isinstance(result, TransferOutcome):
                        self._collect(outcome, result)
                self.reporter.warning("Run cancelled, remaining operations were aborted", aborted=len(pending))
        except asyncio.CancelledError:
            outcome.cancelled = True
            for task in pending:
                if task.done() and not task.cancelled():
                    self._collect(outcome, task.result())
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            # cancelled from outside: do not leak workers
            for task in tasks:
                if not task.done():
                    task.cancel()

        return outcome

    def _collect(self, outcome: ExecutionOutcome, result: Optional[TransferOutcome]):
        """Count one worker result and log it."""
        if result is None:
            return
        outcome.record(result)
        if result.success:
            if result.kind == TransferKind.UPLOAD:
                self.reporter.info(f"Uploaded {result.name}")
            else:
                self.reporter.info(f"Deleted {result.name}")
        else:
            self.reporter.error(f"{result.kind.value.capitalize()} failed for {result.name}: {result.error}")

    async def _upload(self, entry: SourceEntry) -> TransferOutcome:
        """Fetch one image and write it under the destination root."""
        try:
            data = await self.source.fetch(entry)
        except Exception as e:
            return self._failure(TransferKind.UPLOAD, entry.name, ItemTransferError("download", entry.name, str(e)))

        target = posixpath.join(self.root, entry.name)
        try:
            await self.destination.put(target, data, len(data))
        except Exception as e:
            return self._failure(TransferKind.UPLOAD, entry.name, ItemTransferError("upload", entry.name, str(e)))

        return TransferOutcome(kind=TransferKind.UPLOAD, name=entry.name, success=True, size=len(data))

    async def _delete(self, entry: DestinationEntry) -> TransferOutcome:
        """Delete one destination file by its remote path."""
        try:
            await self.destination.delete(entry.ref)
        except Exception as e:
            return self._failure(TransferKind.DELETE, entry.name, ItemTransferError("delete", entry.name, str(e)))

        return TransferOutcome(kind=TransferKind.DELETE, name=entry.name, success=True)

    @staticmethod
    def _failure(kind: TransferKind, name: str, error: ItemTransferError) -> TransferOutcome:
        return TransferOutcome(kind=kind, name=name, success=False, error=error)
