"""Tests for the SQLAlchemy batch job store, run against SQLite."""

import contextlib
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from locallift.batches.batch_job_repo import BatchJobRepository
from locallift.batches.batch_models import (
    BatchStatus,
    ErrorClass,
    ItemDisposition,
    ItemResult,
    WorkloadName,
)
from locallift.batches.errors import StoreUnavailableError
from locallift.main.exceptions import BatchConflictException


@pytest.fixture
def repo(session_factory):
    return BatchJobRepository(session_factory)


def make_result(item_id=None, success=True) -> ItemResult:
    return ItemResult(
        item_id=item_id or uuid4(),
        tenant_id="tenant-a",
        label="pizza (Austin, TX)",
        success=success,
        value={"rank": 4, "change": "UP"} if success else None,
        error_code=None if success else ErrorClass.TRANSIENT,
        error=None if success else "Gave up after 4 attempts: HTTP 503: unavailable",
        disposition=ItemDisposition.SUCCEEDED if success else ItemDisposition.RETRY_LATER,
        processed_at=datetime.now(timezone.utc),
    )


@pytest.mark.asyncio
async def test_create_batch_job_starts_running(repo):
    job = await repo.create_batch_job(
        WorkloadName.RANK_CHECKS, total_items=7, filters={"tenant_id": "tenant-a"}
    )

    assert job.status is BatchStatus.RUNNING
    assert job.total_items == 7
    assert job.processed_items == 0
    assert job.started_at is not None
    assert job.started_at.tzinfo is not None

    running = await repo.get_running_batch(WorkloadName.RANK_CHECKS)
    assert running.id == job.id


@pytest.mark.asyncio
async def test_only_one_running_batch_per_workload(repo):
    await repo.create_batch_job(WorkloadName.RANK_CHECKS, total_items=1)

    with pytest.raises(BatchConflictException):
        await repo.create_batch_job(WorkloadName.RANK_CHECKS, total_items=1)

    # A different workload is independent
    other = await repo.create_batch_job(WorkloadName.POST_PUBLISHING, total_items=1)
    assert other.status is BatchStatus.RUNNING


@pytest.mark.asyncio
async def test_finished_batches_do_not_block_a_new_one(repo):
    first = await repo.create_batch_job(WorkloadName.RANK_CHECKS, total_items=1)
    await repo.finalize_batch(first.id, BatchStatus.COMPLETED)

    second = await repo.create_batch_job(WorkloadName.RANK_CHECKS, total_items=1)

    assert second.id != first.id
    recent = await repo.list_recent_batches(WorkloadName.RANK_CHECKS)
    assert [job.id for job in recent] == [second.id, first.id]


@pytest.mark.asyncio
async def test_record_item_result_counts_each_item_once(repo):
    job = await repo.create_batch_job(WorkloadName.RANK_CHECKS, total_items=3)
    item_id = uuid4()

    await repo.record_item_result(job.id, make_result(item_id, success=False))
    await repo.record_item_result(job.id, make_result())
    # Re-recording the same item replaces the result without counting it again
    await repo.record_item_result(job.id, make_result(item_id, success=False))

    stored = await repo.get_batch_job(job.id)
    assert stored.processed_items == 2
    assert stored.failed_items == 1

    results = await repo.list_item_results(job.id)
    assert len(results) == 2
    failed = next(result for result in results if not result.success)
    assert failed.error_code is ErrorClass.TRANSIENT
    assert failed.disposition is ItemDisposition.RETRY_LATER
    succeeded = next(result for result in results if result.success)
    assert succeeded.value == {"rank": 4, "change": "UP"}


@pytest.mark.asyncio
async def test_results_for_a_finished_batch_are_not_counted(repo):
    job = await repo.create_batch_job(WorkloadName.RANK_CHECKS, total_items=3)
    item_id = uuid4()
    assert await repo.record_item_result(job.id, make_result(item_id)) is True

    await repo.finalize_batch(job.id, BatchStatus.CANCELLED, "Cancelled elsewhere")

    assert await repo.record_item_result(job.id, make_result()) is False
    assert await repo.record_item_result(job.id, make_result(item_id, success=False)) is False
    stored = await repo.get_batch_job(job.id)
    assert stored.status is BatchStatus.CANCELLED
    assert stored.processed_items == 1
    assert stored.failed_items == 0
    assert len(await repo.list_item_results(job.id)) == 1


@pytest.mark.asyncio
async def test_finalize_is_compare_and_set(repo):
    job = await repo.create_batch_job(WorkloadName.RANK_CHECKS, total_items=2)

    finalized = await repo.finalize_batch(job.id, BatchStatus.FAILED, "2 of 2 items failed")
    again = await repo.finalize_batch(job.id, BatchStatus.COMPLETED)

    assert finalized.status is BatchStatus.FAILED
    assert finalized.error_summary == "2 of 2 items failed"
    assert finalized.completed_at is not None
    assert again is None
    stored = await repo.get_batch_job(job.id)
    assert stored.status is BatchStatus.FAILED
    assert await repo.get_running_batch(WorkloadName.RANK_CHECKS) is None


@pytest.mark.asyncio
async def test_missing_batch_is_none(repo):
    assert await repo.get_batch_job(uuid4()) is None
    assert await repo.finalize_batch(uuid4(), BatchStatus.COMPLETED) is None


@pytest.mark.asyncio
async def test_unreachable_database_raises_store_unavailable():
    @contextlib.asynccontextmanager
    async def refusing_session():
        raise OSError("connection refused")
        yield

    repo = BatchJobRepository(refusing_session)

    with pytest.raises(StoreUnavailableError):
        await repo.get_running_batch(WorkloadName.RANK_CHECKS)
