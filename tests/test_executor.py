"""Tests for the concurrent plan executor."""

import asyncio

import pytest

from imagesync.core import EventHub, ExecutionOutcome, PlanExecutor, ReconciliationPlan, RunReporter, MESSAGE_LOG
from imagesync.utils.logging import get_logger

from fakes import FakeSource, FakeDestination, InFlightTracker, image, stored


def drain(queue):
    messages = []
    while not queue.empty():
        messages.append(queue.get_nowait())
    return messages


class TestPlanExecutor:
    """Bounded-concurrency uploads and deletes with per-item isolation."""

    @pytest.mark.asyncio
    async def test_uploads_and_deletes(self):
        source = FakeSource([image("a.jpg", 10), image("b.jpg", 20)])
        destination = FakeDestination({"old.jpg": 5})
        plan = ReconciliationPlan(
            to_upload=[image("a.jpg", 10), image("b.jpg", 20)],
            to_delete=[stored("old.jpg", 5)]
        )

        outcome = await PlanExecutor(source, destination, "/images").execute(plan, max_concurrency=3)

        assert outcome.uploaded == 2
        assert outcome.deleted == 1
        assert outcome.upload_bytes == 30
        assert outcome.failures == 0
        assert not outcome.cancelled
        assert sorted(destination.puts) == ["/images/a.jpg", "/images/b.jpg"]
        assert destination.deletes == ["/images/old.jpg"]

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_other_items(self):
        uploads = [image("a.jpg", 10), image("b.jpg", 20), image("c.jpg", 30)]
        source = FakeSource(uploads, fail_fetch=["b.jpg"])
        destination = FakeDestination({"x.jpg": 1, "y.jpg": 1}, fail_put=["c.jpg"], fail_delete=["x.jpg"])
        plan = ReconciliationPlan(to_upload=uploads, to_delete=[stored("x.jpg", 1), stored("y.jpg", 1)])

        outcome = await PlanExecutor(source, destination, "/images").execute(plan, max_concurrency=2)

        assert outcome.uploaded == 1
        assert outcome.upload_failed == 2
        assert outcome.deleted == 1
        assert outcome.delete_failed == 1
        assert outcome.upload_bytes == 10
        # every item was attempted
        assert sorted(source.fetched) == ["a.jpg", "b.jpg", "c.jpg"]
        assert destination.deletes == ["/images/y.jpg"]

    @pytest.mark.asyncio
    async def test_failures_are_reported_with_item_name(self):
        hub = EventHub()
        queue = hub.subscribe()
        reporter = RunReporter(hub, get_logger("test_executor"))
        source = FakeSource([image("broken.jpg")], fail_fetch=["broken.jpg"])
        plan = ReconciliationPlan(to_upload=[image("broken.jpg")])

        await PlanExecutor(source, FakeDestination(), "/images", reporter).execute(plan)

        lines = [m.content for m in drain(queue) if m.type == MESSAGE_LOG]
        assert any(line.startswith("[ERROR]") and "broken.jpg" in line for line in lines)

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_limit(self):
        tracker = InFlightTracker()
        uploads = [image(f"{n}.jpg") for n in range(5)]
        source = FakeSource(uploads, delay=0.01, tracker=tracker)
        destination = FakeDestination(delay=0.01, tracker=tracker)

        outcome = await PlanExecutor(source, destination, "/images").execute(
            ReconciliationPlan(to_upload=uploads), max_concurrency=2
        )

        assert outcome.uploaded == 5
        assert tracker.peak == 2
        assert tracker.current == 0

    @pytest.mark.asyncio
    async def test_single_slot_runs_sequentially(self):
        tracker = InFlightTracker()
        uploads = [image(f"{n}.jpg") for n in range(3)]
        source = FakeSource(uploads, delay=0.01, tracker=tracker)
        destination = FakeDestination(delay=0.01, tracker=tracker)

        await PlanExecutor(source, destination, "/images").execute(
            ReconciliationPlan(to_upload=uploads), max_concurrency=1
        )

        assert tracker.peak == 1

    @pytest.mark.asyncio
    async def test_empty_plan_returns_zero_counts(self):
        outcome = await PlanExecutor(FakeSource(), FakeDestination(), "/images").execute(ReconciliationPlan())

        assert outcome.mutations == 0
        assert outcome.failures == 0

    @pytest.mark.asyncio
    async def test_invalid_concurrency_is_rejected(self):
        with pytest.raises(ValueError):
            await PlanExecutor(FakeSource(), FakeDestination(), "/images").execute(
                ReconciliationPlan(), max_concurrency=0
            )

    @pytest.mark.asyncio
    async def test_cancel_event_aborts_remaining_work(self):
        uploads = [image(f"{n}.jpg") for n in range(3)]
        source = FakeSource(uploads, delay=0.5)
        destination = FakeDestination()
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        outcome = await PlanExecutor(source, destination, "/images").execute(
            ReconciliationPlan(to_upload=uploads), max_concurrency=1, cancel_event=cancel
        )

        assert outcome.cancelled
        assert outcome.uploaded == 0
        assert destination.puts == []

    @pytest.mark.asyncio
    async def test_deadline_keeps_completed_counts(self):
        fast = image("fast.jpg")
        slow = image("slow.jpg")

        class MixedSource(FakeSource):
            async def fetch(self, entry):
                await asyncio.sleep(0 if entry.name == "fast.jpg" else 1.0)
                return b"x" * entry.size

        destination = FakeDestination()
        outcome = await PlanExecutor(MixedSource([fast, slow]), destination, "/images").execute(
            ReconciliationPlan(to_upload=[fast, slow]), max_concurrency=2, deadline=0.2
        )

        assert outcome.cancelled
        assert outcome.uploaded == 1
        assert destination.puts == ["/images/fast.jpg"]

    @pytest.mark.asyncio
    async def test_unset_cancel_event_changes_nothing(self):
        uploads = [image("a.jpg")]
        outcome = await PlanExecutor(FakeSource(uploads), FakeDestination(), "/images").execute(
            ReconciliationPlan(to_upload=uploads), cancel_event=asyncio.Event()
        )

        assert outcome.uploaded == 1
        assert not outcome.cancelled

    @pytest.mark.asyncio
    async def test_outside_cancellation_keeps_completed_counts(self):
        source = FakeSource(item_delays={"slow.jpg": 1.0})
        destination = FakeDestination()
        plan = ReconciliationPlan(to_upload=[image("fast.jpg", 10), image("slow.jpg", 20)], to_delete=[])
        outcome = ExecutionOutcome()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                PlanExecutor(source, destination, "/images").execute(plan, max_concurrency=2, outcome=outcome),
                0.3
            )

        assert outcome.uploaded == 1
        assert outcome.upload_bytes == 10
        assert outcome.mutations == 1
        assert outcome.cancelled
        assert destination.puts == ["/images/fast.jpg"]
