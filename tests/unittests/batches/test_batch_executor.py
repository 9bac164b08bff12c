"""Unit tests for the generic batch executor."""

import asyncio
from unittest.mock import patch

import pytest

from locallift.batches.batch_models import BatchStatus, ErrorClass, ItemDisposition, WorkloadName
from locallift.batches.errors import CredentialError, ExternalApiError
from locallift.batches.executor import BatchExecutor
from locallift.batches.progress_tracker import ProgressTracker
from tests.unittests.fakes import InMemoryBatchJobStore, ScriptedWorkload, make_items


def rate_limited():
    return ExternalApiError("Too Many Requests", 429)


def bad_request():
    return ExternalApiError("Bad Request", 400)


def unavailable():
    return ExternalApiError("Service Unavailable", 503)


@pytest.fixture
def store():
    return InMemoryBatchJobStore()


@pytest.fixture
def tracker(store):
    return ProgressTracker(store)


async def run_batch(workload, store, tracker, cancel_event=None):
    items = workload.items
    batch = await store.create_batch_job(workload.name, total_items=len(items))
    tracker.begin(batch)
    executor = BatchExecutor(workload, store, tracker)
    finished = await executor.run(batch, items, cancel_event or asyncio.Event())
    return batch, finished


@pytest.mark.asyncio
async def test_rate_limited_item_recovers_and_batch_completes(store, tracker):
    items = make_items(["a"] * 5)
    workload = ScriptedWorkload(items, script={"a-2": [rate_limited(), rate_limited()]})

    batch, finished = await run_batch(workload, store, tracker)

    assert finished.status is BatchStatus.COMPLETED
    assert finished.processed_items == 5
    assert finished.failed_items == 0
    assert finished.error_summary is None
    assert workload.calls.count("a-2") == 3
    assert len(workload.successes) == 5


@pytest.mark.asyncio
async def test_all_items_failing_permanently_fails_the_batch(store, tracker):
    items = make_items(["a", "b", "c"])
    workload = ScriptedWorkload(
        items, script={item.payload: [bad_request()] for item in items}
    )

    _, finished = await run_batch(workload, store, tracker)

    assert finished.status is BatchStatus.FAILED
    assert finished.processed_items == 3
    assert finished.failed_items == 3
    assert finished.error_summary == "3 of 3 items failed"
    # Permanent errors are never retried
    assert len(workload.calls) == 3
    assert all(
        failure.disposition is ItemDisposition.FAILED_PERMANENTLY
        for _, failure in workload.failures
    )


@pytest.mark.asyncio
async def test_partial_failure_still_completes(store, tracker):
    items = make_items(["a", "a", "b"])
    workload = ScriptedWorkload(items, script={"a-1": [bad_request()]})

    _, finished = await run_batch(workload, store, tracker)

    assert finished.status is BatchStatus.COMPLETED
    assert finished.failed_items == 1
    assert finished.error_summary == "1 of 3 items failed"


@pytest.mark.asyncio
async def test_throwing_item_does_not_stop_its_siblings(store, tracker):
    items = make_items(["a", "a", "a", "b", "a"])
    workload = ScriptedWorkload(items, script={"a-1": [KeyError("payload")]})

    batch, finished = await run_batch(workload, store, tracker)

    results = {result.label: result for result in await store.list_item_results(batch.id)}
    assert set(results) == {"a-0", "a-1", "a-2", "b-3", "a-4"}
    assert results["a-2"].success and results["a-4"].success and results["b-3"].success

    failed = results["a-1"]
    assert failed.success is False
    assert failed.error_code is ErrorClass.UNEXPECTED
    assert failed.error == "Unexpected error (KeyError)"
    assert failed.disposition is ItemDisposition.RETRY_LATER
    assert finished.status is BatchStatus.COMPLETED


@pytest.mark.asyncio
async def test_exhausted_item_is_failed_permanently_at_max_attempts(store, tracker):
    items = make_items(["a"], attempt_count=2, max_attempts=3)
    workload = ScriptedWorkload(items, script={"a-0": [unavailable() for _ in range(5)]})

    _, finished = await run_batch(workload, store, tracker)

    [(item_id, failure)] = workload.failures
    [item] = items
    assert item_id == item.id
    assert failure.disposition is ItemDisposition.FAILED_PERMANENTLY
    assert failure.error_class is ErrorClass.TRANSIENT
    assert failure.message.startswith("Gave up after 3 attempts")
    # The failed attempt recorded by on_failure brings the item to its cap
    assert item.attempt_count + 1 == item.max_attempts
    assert finished.status is BatchStatus.FAILED


@pytest.mark.asyncio
async def test_transient_failure_with_attempts_left_stays_eligible(store, tracker):
    items = make_items(["a", "a"], attempt_count=0, max_attempts=3)
    workload = ScriptedWorkload(items, script={"a-0": [unavailable() for _ in range(5)]})

    await run_batch(workload, store, tracker)

    [(_, failure)] = workload.failures
    assert failure.disposition is ItemDisposition.RETRY_LATER


@pytest.mark.asyncio
async def test_credential_failure_is_final_and_not_retried(store, tracker):
    items = make_items(["a"])
    workload = ScriptedWorkload(items, script={"a-0": [CredentialError("revoked")]})

    await run_batch(workload, store, tracker)

    [(_, failure)] = workload.failures
    assert failure.error_class is ErrorClass.CREDENTIAL
    assert failure.disposition is ItemDisposition.FAILED_PERMANENTLY
    assert workload.calls == ["a-0"]


@pytest.mark.asyncio
async def test_processed_items_only_grow_and_reach_total(store, tracker):
    items = make_items(["a", "b", "a", "c", "b", "a"])
    workload = ScriptedWorkload(items, script={"b-1": [bad_request()]})

    batch, finished = await run_batch(workload, store, tracker)

    history = store.processed_history[batch.id]
    assert history == sorted(history)
    assert history[-1] == finished.total_items == 6
    assert finished.processed_items == finished.failed_items + len(workload.successes)


@pytest.mark.asyncio
async def test_items_of_one_tenant_run_in_source_order(store, tracker):
    items = make_items(["a", "b", "a", "b", "a"])
    workload = ScriptedWorkload(items)

    await run_batch(workload, store, tracker)

    assert [call for call in workload.calls if call.startswith("a")] == ["a-0", "a-2", "a-4"]
    assert [call for call in workload.calls if call.startswith("b")] == ["b-1", "b-3"]


@pytest.mark.asyncio
async def test_tenant_groups_run_concurrently(store, tracker):
    items = make_items(["a", "b"])
    b_started = asyncio.Event()

    async def on_call(item):
        if item.tenant_id == "a":
            # Would dead-lock if tenant groups ran one after the other
            await asyncio.wait_for(b_started.wait(), timeout=1)
        else:
            b_started.set()

    workload = ScriptedWorkload(items, on_call=on_call)

    _, finished = await run_batch(workload, store, tracker)

    assert finished.status is BatchStatus.COMPLETED
    assert finished.failed_items == 0


@pytest.mark.asyncio
async def test_cancellation_stops_before_the_next_item(store, tracker):
    items = make_items(["a", "a", "a"])
    cancel_event = asyncio.Event()
    workload = ScriptedWorkload(items, on_call=lambda item: cancel_event.set())

    _, finished = await run_batch(workload, store, tracker, cancel_event=cancel_event)

    assert workload.calls == ["a-0"]
    assert finished.status is BatchStatus.CANCELLED
    assert finished.processed_items == 1


@pytest.mark.asyncio
async def test_cancel_after_last_item_still_completes(store, tracker):
    items = make_items(["a"])
    cancel_event = asyncio.Event()
    workload = ScriptedWorkload(items, on_call=lambda item: cancel_event.set())

    _, finished = await run_batch(workload, store, tracker, cancel_event=cancel_event)

    assert finished.status is BatchStatus.COMPLETED


@pytest.mark.asyncio
async def test_unreachable_store_aborts_the_batch(store, tracker):
    items = make_items(["a", "a", "a", "a"])
    store.fail_record_after = 1
    workload = ScriptedWorkload(items)

    batch, finished = await run_batch(workload, store, tracker)

    assert finished.status is BatchStatus.FAILED
    assert finished.error_summary.startswith("Store unavailable")
    assert len(workload.calls) < 4
    snapshot = await tracker.get(batch.id)
    assert snapshot.status is BatchStatus.FAILED


@pytest.mark.asyncio
async def test_failure_while_persisting_a_failure_is_isolated(store, tracker):
    items = make_items(["a", "a"])
    workload = ScriptedWorkload(items, script={"a-0": [bad_request()]})

    async def broken_on_failure(batch_id, item, failure):
        raise RuntimeError("constraint violated")

    workload.on_failure = broken_on_failure

    with patch("locallift.batches.executor.logger") as mock_logger:
        _, finished = await run_batch(workload, store, tracker)

    assert finished.processed_items == 2
    assert finished.failed_items == 1
    assert any(
        "Could not persist failure" in call.args[0]
        for call in mock_logger.exception.call_args_list
    )


@pytest.mark.asyncio
async def test_failure_to_save_a_success_is_final_and_not_retried(store, tracker):
    items = make_items(["a", "a"], max_attempts=3)
    workload = ScriptedWorkload(items)

    async def broken_on_success(batch_id, item, value):
        if item.payload == "a-0":
            raise RuntimeError("disk full")
        return {"value": value}

    workload.on_success = broken_on_success

    with patch("locallift.batches.executor.logger"):
        batch, finished = await run_batch(workload, store, tracker)

    # The external call happened once and is not repeated
    assert workload.calls == ["a-0", "a-1"]
    assert finished.status is BatchStatus.COMPLETED
    assert finished.failed_items == 1
    [(item_id, failure)] = workload.failures
    assert item_id == items[0].id
    assert failure.error_class is ErrorClass.UNEXPECTED
    assert failure.disposition is ItemDisposition.FAILED_PERMANENTLY
    assert "RuntimeError" in failure.message
    result = store.results[batch.id][items[0].id]
    assert result.disposition is ItemDisposition.FAILED_PERMANENTLY


@pytest.mark.asyncio
async def test_progress_snapshot_carries_every_result(store, tracker):
    items = make_items(["a", "b", "c"])
    workload = ScriptedWorkload(items, name=WorkloadName.POST_PUBLISHING)

    batch, _ = await run_batch(workload, store, tracker)

    snapshot = await tracker.get(batch.id)
    assert snapshot.workload is WorkloadName.POST_PUBLISHING
    assert snapshot.progress_percent == 100.0
    assert sorted(result.value["value"] for result in snapshot.results) == [
        "ok:a-0",
        "ok:b-1",
        "ok:c-2",
    ]
