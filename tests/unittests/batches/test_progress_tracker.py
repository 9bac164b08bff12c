"""Unit tests for live batch progress and its store fallback."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from locallift.batches.batch_models import (
    BatchStatus,
    ErrorClass,
    ItemDisposition,
    ItemResult,
    WorkloadName,
)
from locallift.batches.progress_tracker import ProgressTracker
from tests.unittests.fakes import InMemoryBatchJobStore


class SteppingClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def make_result(success: bool = True) -> ItemResult:
    return ItemResult(
        item_id=uuid4(),
        tenant_id="tenant-a",
        label="pizza (Austin, TX)",
        success=success,
        value={"rank": 3} if success else None,
        error_code=None if success else ErrorClass.PERMANENT,
        error=None if success else "HTTP 400: bad request",
        disposition=ItemDisposition.SUCCEEDED if success else ItemDisposition.FAILED_PERMANENTLY,
        processed_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def store():
    return InMemoryBatchJobStore()


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def tracker(store, clock):
    return ProgressTracker(store, retain_finished=2, clock=clock)


async def start_batch(store, total_items=5):
    return await store.create_batch_job(WorkloadName.RANK_CHECKS, total_items=total_items)


@pytest.mark.asyncio
async def test_begin_uses_initial_estimate(tracker, store):
    batch = await start_batch(store)

    snapshot = tracker.begin(batch, initial_estimate_seconds=120)

    assert snapshot.status is BatchStatus.RUNNING
    assert snapshot.total_items == 5
    assert snapshot.progress_percent == 0.0
    assert snapshot.estimated_seconds_remaining == 120


@pytest.mark.asyncio
async def test_eta_is_average_time_per_processed_item(tracker, store, clock):
    batch = await start_batch(store)
    tracker.begin(batch)

    clock.now += 8
    tracker.record(batch.id, make_result())
    clock.now += 12
    tracker.record(batch.id, make_result(success=False))

    snapshot = await tracker.get(batch.id)
    assert snapshot.processed_items == 2
    assert snapshot.failed_items == 1
    assert snapshot.succeeded_items == 1
    assert snapshot.progress_percent == 40.0
    # 3 remaining items, 20 seconds for 2 items
    assert snapshot.estimated_seconds_remaining == 30.0
    assert len(snapshot.results) == 2


@pytest.mark.asyncio
async def test_current_item_is_visible_while_running(tracker, store):
    batch = await start_batch(store)
    tracker.begin(batch)

    tracker.mark_current(batch.id, "pizza (Austin, TX)")

    snapshot = await tracker.get(batch.id)
    assert snapshot.current_item == "pizza (Austin, TX)"


@pytest.mark.asyncio
async def test_finish_freezes_snapshot(tracker, store):
    batch = await start_batch(store, total_items=1)
    tracker.begin(batch)
    tracker.mark_current(batch.id, "pizza (Austin, TX)")
    tracker.record(batch.id, make_result())

    finalized = await store.finalize_batch(batch.id, BatchStatus.COMPLETED)
    tracker.finish(finalized)

    snapshot = await tracker.get(batch.id)
    assert snapshot.status is BatchStatus.COMPLETED
    assert snapshot.current_item is None
    assert snapshot.estimated_seconds_remaining == 0.0
    assert snapshot.progress_percent == 100.0
    assert snapshot.completed_at is not None


@pytest.mark.asyncio
async def test_get_returns_a_copy(tracker, store):
    batch = await start_batch(store)
    tracker.begin(batch)

    snapshot = await tracker.get(batch.id)
    snapshot.processed_items = 99
    snapshot.results.append(make_result())

    fresh = await tracker.get(batch.id)
    assert fresh.processed_items == 0
    assert fresh.results == []


@pytest.mark.asyncio
async def test_unknown_batch_falls_back_to_store(store, clock):
    batch = await start_batch(store, total_items=4)
    for success in (True, False):
        await store.record_item_result(batch.id, make_result(success))

    # A fresh tracker, as after a process restart
    tracker = ProgressTracker(
        store, clock=clock, now=lambda: batch.started_at + timedelta(seconds=20)
    )
    snapshot = await tracker.get(batch.id)

    assert snapshot.status is BatchStatus.RUNNING
    assert snapshot.processed_items == 2
    assert snapshot.failed_items == 1
    assert snapshot.progress_percent == 50.0
    # 10 seconds per processed item, 2 items left
    assert snapshot.estimated_seconds_remaining == 20.0
    assert len(snapshot.results) == 2


@pytest.mark.asyncio
async def test_store_fallback_has_no_estimate_before_the_first_item(store, clock):
    batch = await start_batch(store, total_items=4)

    tracker = ProgressTracker(
        store, clock=clock, now=lambda: batch.started_at + timedelta(seconds=20)
    )
    snapshot = await tracker.get(batch.id)

    assert snapshot.processed_items == 0
    assert snapshot.estimated_seconds_remaining is None


@pytest.mark.asyncio
async def test_finished_snapshots_are_evicted_beyond_retention(tracker, store):
    batches = []
    for _ in range(3):
        batch = await start_batch(store, total_items=0)
        tracker.begin(batch)
        tracker.finish(await store.finalize_batch(batch.id, BatchStatus.COMPLETED))
        batches.append(batch)

    assert batches[0].id not in tracker._snapshots
    # Still answerable from the store
    snapshot = await tracker.get(batches[0].id)
    assert snapshot.status is BatchStatus.COMPLETED
    assert snapshot.progress_percent == 100.0


@pytest.mark.asyncio
async def test_missing_batch_is_none(tracker):
    assert await tracker.get(uuid4()) is None
