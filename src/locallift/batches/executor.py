import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, Optional, Sequence, TypeVar
from uuid import UUID

from locallift.batches.batch_models import (
    BatchJob,
    BatchStatus,
    ErrorClass,
    ItemDisposition,
    ItemResult,
    WorkItem,
)
from locallift.batches.batch_store import BatchJobStore
from locallift.batches.errors import StoreUnavailableError
from locallift.batches.progress_tracker import ProgressTracker
from locallift.batches.rate_limiter import TenantRateLimiter
from locallift.batches.retry_policy import RetryPolicy
from locallift.batches.work_source import TenantGroup, group_by_tenant
from locallift.batches.workload import (
    BatchWorkload,
    ItemFailure,
    decide_disposition,
    describe_error,
)
from locallift.main.logging import get_logger
from locallift.main.request_context import request_context

logger = get_logger(__name__)

PayloadT = TypeVar("PayloadT")


@dataclass
class _RunCounters:
    processed: int = 0
    failed: int = 0


class BatchExecutor(Generic[PayloadT]):
    """Drives one batch of a workload to a terminal status.

    Tenant groups run concurrently; items of one tenant run one after the
    other, each paced by the rate limiter and wrapped in the retry policy.
    A failing item never stops the batch. Only an unreachable store does.
    """

    def __init__(
        self,
        workload: BatchWorkload[PayloadT],
        store: BatchJobStore,
        progress: ProgressTracker,
        rate_limiter: Optional[TenantRateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        profile = workload.profile
        self.workload = workload
        self.store = store
        self.progress = progress
        self.rate_limiter = rate_limiter or TenantRateLimiter(
            min_interval_seconds=profile.min_interval_seconds,
            jitter_seconds=profile.jitter_seconds,
            warn_threshold=profile.tenant_warn_threshold,
        )
        self.retry_policy = retry_policy or RetryPolicy(profile.retry, classify=workload.classify)

    async def run(
        self,
        batch: BatchJob,
        items: Sequence[WorkItem[PayloadT]],
        cancel_event: asyncio.Event,
    ) -> BatchJob:
        groups = group_by_tenant(items)
        counters = _RunCounters()
        fatal_error: Optional[str] = None

        logger.info(
            f"Starting {self.workload.name.value} batch with {len(items)} items",
            extra={
                "batch_id": str(batch.id),
                "workload": self.workload.name.value,
                "total_items": len(items),
                "tenant_groups": len(groups),
            },
        )

        try:
            async with asyncio.TaskGroup() as task_group:
                for group in groups:
                    task_group.create_task(
                        self._run_group(batch.id, group, cancel_event, counters)
                    )
        except* StoreUnavailableError as error_group:
            fatal_error = f"Store unavailable: {error_group.exceptions[0]}"
            logger.error(
                "Batch aborted, store unavailable",
                extra={"batch_id": str(batch.id), "error": fatal_error},
            )

        status, error_summary = self._final_status(
            batch, counters, cancel_event.is_set(), fatal_error
        )
        return await self._finalize(batch, status, error_summary, counters)

    async def _run_group(
        self,
        batch_id: UUID,
        group: TenantGroup[PayloadT],
        cancel_event: asyncio.Event,
        counters: _RunCounters,
    ) -> None:
        with request_context(
            batch_id=str(batch_id),
            workload=self.workload.name.value,
            tenant_id=group.tenant_id,
        ):
            for position, item in enumerate(group.items):
                if cancel_event.is_set():
                    logger.info(
                        "Cancellation requested, stopping tenant group",
                        extra={"remaining_items": len(group) - position},
                    )
                    return

                result = await self._process_item(batch_id, item)
                if not await self.store.record_item_result(batch_id, result):
                    # Finalized elsewhere, e.g. cancelled from another process
                    logger.warning(
                        "Batch is no longer running, stopping",
                        extra={
                            "item_id": str(item.id),
                            "remaining_items": len(group) - position - 1,
                        },
                    )
                    cancel_event.set()
                    return
                counters.processed += 1
                if not result.success:
                    counters.failed += 1
                self.progress.record(batch_id, result)

    async def _process_item(self, batch_id: UUID, item: WorkItem[PayloadT]) -> ItemResult:
        label = self.workload.describe(item)
        self.progress.mark_current(batch_id, label)
        await self.rate_limiter.wait(item.tenant_id)

        try:
            value = await self.retry_policy.execute(
                lambda: self.workload.call(item), context=label
            )
        except StoreUnavailableError:
            raise
        except Exception as exc:
            error_class = self.workload.classify(exc)
            failure = ItemFailure(
                error_class=error_class,
                message=describe_error(exc, error_class),
                disposition=decide_disposition(item, error_class),
            )
            return await self._handle_failure(batch_id, item, label, failure)

        try:
            stored_value = await self.workload.on_success(batch_id, item, value)
        except StoreUnavailableError:
            raise
        except Exception as exc:
            # The external side effect already happened, calling again would repeat it
            failure = ItemFailure(
                error_class=ErrorClass.UNEXPECTED,
                message=f"Succeeded but the result could not be saved ({type(exc).__name__})",
                disposition=ItemDisposition.FAILED_PERMANENTLY,
            )
            return await self._handle_failure(batch_id, item, label, failure)

        logger.debug("Item succeeded", extra={"item_id": str(item.id), "label": label})
        return ItemResult(
            item_id=item.id,
            tenant_id=item.tenant_id,
            label=label,
            success=True,
            value=stored_value,
            disposition=ItemDisposition.SUCCEEDED,
            processed_at=datetime.now(timezone.utc),
        )

    async def _handle_failure(
        self,
        batch_id: UUID,
        item: WorkItem[PayloadT],
        label: str,
        failure: ItemFailure,
    ) -> ItemResult:
        error_class = failure.error_class
        log_extra = {
            "item_id": str(item.id),
            "label": label,
            "error_code": error_class.value,
            "disposition": failure.disposition.value,
            "attempt_count": item.attempt_count + 1,
            "max_attempts": item.max_attempts,
        }
        if error_class is ErrorClass.UNEXPECTED:
            logger.exception(f"Unexpected error processing {label}", extra=log_extra)
        else:
            logger.warning(f"Failed to process {label}: {failure.message}", extra=log_extra)

        self.rate_limiter.penalize(item.tenant_id, self.workload.profile.error_cooldown_seconds)

        try:
            await self.workload.on_failure(batch_id, item, failure)
        except StoreUnavailableError:
            raise
        except Exception:
            logger.exception(
                f"Could not persist failure of {label}", extra={"item_id": str(item.id)}
            )

        return ItemResult(
            item_id=item.id,
            tenant_id=item.tenant_id,
            label=label,
            success=False,
            error_code=error_class,
            error=failure.message,
            disposition=failure.disposition,
            processed_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _final_status(
        batch: BatchJob,
        counters: _RunCounters,
        cancelled: bool,
        fatal_error: Optional[str],
    ) -> tuple[BatchStatus, Optional[str]]:
        if fatal_error is not None:
            return BatchStatus.FAILED, fatal_error

        summary = None
        if counters.failed:
            summary = f"{counters.failed} of {batch.total_items} items failed"

        if cancelled and counters.processed < batch.total_items:
            return BatchStatus.CANCELLED, summary
        if counters.processed > 0 and counters.failed == counters.processed:
            return BatchStatus.FAILED, summary
        return BatchStatus.COMPLETED, summary

    async def _finalize(
        self,
        batch: BatchJob,
        status: BatchStatus,
        error_summary: Optional[str],
        counters: _RunCounters,
    ) -> BatchJob:
        try:
            finalized = await self.store.finalize_batch(batch.id, status, error_summary)
            if finalized is None:
                # Someone else moved the job out of running, keep their verdict
                finalized = await self.store.get_batch_job(batch.id)
        except StoreUnavailableError as exc:
            logger.error(
                "Could not persist final batch status",
                extra={"batch_id": str(batch.id), "status": status.value, "error": str(exc)},
            )
            finalized = None

        if finalized is None:
            finalized = batch.model_copy(
                update={
                    "status": status,
                    "error_summary": error_summary,
                    "processed_items": counters.processed,
                    "failed_items": counters.failed,
                    "completed_at": datetime.now(timezone.utc),
                }
            )

        self.progress.finish(finalized)
        logger.info(
            f"{self.workload.name.value} batch finished with status {finalized.status.value}",
            extra={
                "batch_id": str(batch.id),
                "workload": self.workload.name.value,
                "status": finalized.status.value,
                "processed_items": finalized.processed_items,
                "failed_items": finalized.failed_items,
                "error_summary": finalized.error_summary,
            },
        )
        return finalized
