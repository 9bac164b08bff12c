import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Generic, Optional, TypeVar
from uuid import UUID

from locallift.batches.batch_models import (
    BatchFilter,
    BatchJob,
    BatchStartResult,
    BatchStartStatus,
    BatchStatus,
    ProgressSnapshot,
)
from locallift.batches.batch_store import BatchJobStore
from locallift.batches.executor import BatchExecutor
from locallift.batches.progress_tracker import ProgressTracker
from locallift.batches.work_source import group_by_tenant
from locallift.batches.workload import BatchWorkload
from locallift.main.exceptions import BatchConflictException, NotFoundException
from locallift.main.logging import get_logger

logger = get_logger(__name__)

PayloadT = TypeVar("PayloadT")

ORPHANED_BATCH_MESSAGE = "Batch orphaned: no progress for {minutes} minutes"


def estimate_duration_minutes(largest_group: int, seconds_per_item: float) -> int:
    """Tenant groups run in parallel, so the largest group bounds the runtime."""
    if largest_group <= 0:
        return 0
    return max(1, math.ceil(largest_group * seconds_per_item / 60))


class BatchController(Generic[PayloadT]):
    """Entry point for starting, observing and cancelling batches of one workload.

    At most one batch per workload runs at a time. The check happens under a
    local lock and is backed by the store's own uniqueness guarantee, so two
    processes racing to start still end with one winner and one conflict.

    A running job in the store that this process does not own, and that has
    not been touched for ``stale_after``, is treated as orphaned by a crashed
    process and finalized as failed before a new batch is started.
    """

    def __init__(
        self,
        workload: BatchWorkload[PayloadT],
        store: BatchJobStore,
        progress: ProgressTracker,
        executor: Optional[BatchExecutor[PayloadT]] = None,
        stale_after: timedelta = timedelta(minutes=30),
    ):
        self.workload = workload
        self.store = store
        self.progress = progress
        self.executor = executor or BatchExecutor(workload, store, progress)
        self.stale_after = stale_after
        self._lock = asyncio.Lock()
        self._tasks: dict[UUID, asyncio.Task] = {}
        self._cancel_events: dict[UUID, asyncio.Event] = {}

    @property
    def workload_name(self) -> str:
        return self.workload.name.value

    async def start(self, batch_filter: Optional[BatchFilter] = None) -> BatchStartResult:
        batch_filter = batch_filter or BatchFilter()

        async with self._lock:
            items = list(await self.workload.load_items(batch_filter))
            if not items:
                logger.info(
                    f"No eligible {self.workload_name} items, nothing to start",
                    extra={"workload": self.workload_name},
                )
                return BatchStartResult(
                    total_items=0,
                    estimated_duration_minutes=0,
                    status=BatchStartStatus.NOTHING_TO_DO,
                )

            await self._ensure_not_running()

            batch = await self.store.create_batch_job(
                self.workload.name,
                total_items=len(items),
                filters=batch_filter.model_dump(mode="json", exclude_none=True),
            )

            largest_group = max(len(group) for group in group_by_tenant(items))
            estimated_minutes = estimate_duration_minutes(
                largest_group, self.workload.profile.estimated_seconds_per_item
            )
            self.progress.begin(batch, initial_estimate_seconds=estimated_minutes * 60)

            cancel_event = asyncio.Event()
            self._cancel_events[batch.id] = cancel_event
            task = asyncio.create_task(
                self._run(batch, items, cancel_event),
                name=f"batch-{self.workload_name}-{batch.id}",
            )
            self._tasks[batch.id] = task

        logger.info(
            f"Started {self.workload_name} batch",
            extra={
                "batch_id": str(batch.id),
                "workload": self.workload_name,
                "total_items": len(items),
                "estimated_duration_minutes": estimated_minutes,
            },
        )
        return BatchStartResult(
            batch_id=batch.id,
            total_items=len(items),
            estimated_duration_minutes=estimated_minutes,
            status=BatchStartStatus.RUNNING,
        )

    async def _ensure_not_running(self) -> None:
        # A local batch still draining counts even once the store shows it finished
        if self._tasks:
            raise BatchConflictException(self.workload_name, next(iter(self._tasks)))

        running = await self.store.get_running_batch(self.workload.name)
        if running is None:
            return

        if running.id in self._tasks or not self._is_stale(running):
            raise BatchConflictException(self.workload_name, running.id)

        minutes = int(self.stale_after.total_seconds() // 60)
        logger.warning(
            "Taking over orphaned batch",
            extra={
                "batch_id": str(running.id),
                "workload": self.workload_name,
                "last_update": str(running.updated_at),
            },
        )
        await self.store.finalize_batch(
            running.id,
            BatchStatus.FAILED,
            ORPHANED_BATCH_MESSAGE.format(minutes=minutes),
        )

    def _is_stale(self, batch: BatchJob) -> bool:
        last_seen = batch.updated_at or batch.started_at or batch.created_at
        if last_seen is None:
            return True
        return datetime.now(timezone.utc) - last_seen > self.stale_after

    async def _run(self, batch: BatchJob, items, cancel_event: asyncio.Event) -> BatchJob:
        try:
            return await self.executor.run(batch, items, cancel_event)
        except asyncio.CancelledError:
            logger.warning(
                "Batch task cancelled before completion",
                extra={"batch_id": str(batch.id), "workload": self.workload_name},
            )
            await self._finalize_quietly(batch, BatchStatus.CANCELLED, "Batch stopped by shutdown")
            raise
        except Exception as exc:
            logger.exception(
                "Batch crashed",
                extra={"batch_id": str(batch.id), "workload": self.workload_name},
            )
            return await self._finalize_quietly(
                batch, BatchStatus.FAILED, f"Batch crashed: {type(exc).__name__}"
            )
        finally:
            self._tasks.pop(batch.id, None)
            self._cancel_events.pop(batch.id, None)

    async def _finalize_quietly(
        self, batch: BatchJob, status: BatchStatus, message: str
    ) -> BatchJob:
        finalized = None
        try:
            finalized = await self.store.finalize_batch(batch.id, status, message)
        except Exception:
            logger.exception(
                "Could not persist final batch status", extra={"batch_id": str(batch.id)}
            )
        finalized = finalized or batch.model_copy(
            update={
                "status": status,
                "error_summary": message,
                "completed_at": datetime.now(timezone.utc),
            }
        )
        self.progress.finish(finalized)
        return finalized

    async def status(self, batch_id: UUID) -> ProgressSnapshot:
        snapshot = await self.progress.get(batch_id)
        if snapshot is None or snapshot.workload != self.workload.name:
            raise NotFoundException(f"No {self.workload_name} batch with id {batch_id}")
        return snapshot

    async def cancel(self, batch_id: UUID) -> ProgressSnapshot:
        """Request cancellation. Items in flight finish, nothing new starts."""
        cancel_event = self._cancel_events.get(batch_id)
        if cancel_event is not None:
            cancel_event.set()
            logger.info(
                "Cancellation requested",
                extra={"batch_id": str(batch_id), "workload": self.workload_name},
            )
            return await self.status(batch_id)

        snapshot = await self.status(batch_id)
        if snapshot.status is BatchStatus.RUNNING:
            # Running elsewhere or orphaned, only the store can be told
            await self.store.finalize_batch(
                batch_id, BatchStatus.CANCELLED, "Cancelled while not owned by this process"
            )
            snapshot = await self.status(batch_id)
        return snapshot

    async def wait(self, batch_id: UUID) -> ProgressSnapshot:
        task = self._tasks.get(batch_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.status(batch_id)

    async def recent(self, limit: int = 10) -> list[BatchJob]:
        return await self.store.list_recent_batches(self.workload.name, limit=limit)

    def is_running(self) -> bool:
        return bool(self._tasks)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel local batches, give them ``timeout`` to stop, then abort them."""
        if not self._tasks:
            return

        for cancel_event in self._cancel_events.values():
            cancel_event.set()

        tasks = list(self._tasks.values())
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info(
            "Batch controller shut down",
            extra={"workload": self.workload_name, "aborted_batches": len(pending)},
        )
