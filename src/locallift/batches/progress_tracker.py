import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from locallift.batches.batch_models import (
    BatchJob,
    ItemResult,
    ProgressSnapshot,
)
from locallift.batches.batch_store import BatchJobStore
from locallift.main.logging import get_logger

logger = get_logger(__name__)


def _percent(processed: int, total: int, terminal: bool) -> float:
    if total <= 0:
        return 100.0 if terminal else 0.0
    return round(min(processed, total) * 100 / total, 1)


def _estimate_remaining(total: int, processed: int, elapsed_seconds: float) -> float:
    """Average time per processed item so far, times the items left."""
    remaining = max(total - processed, 0)
    return round(remaining * max(elapsed_seconds, 0.0) / processed, 1)


class ProgressTracker:
    """Live progress of batches running in this process.

    Snapshots are updated synchronously by the executor, so a reader always
    sees ``processed_items`` and ``results`` agree. Finished snapshots are
    kept for the most recent ``retain_finished`` batches; anything older, or
    a batch run by another process, is rebuilt from the store on read.
    """

    def __init__(
        self,
        store: BatchJobStore,
        retain_finished: int = 50,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.retain_finished = retain_finished
        self.clock = clock
        self.now = now
        self._snapshots: dict[UUID, ProgressSnapshot] = {}
        self._started: dict[UUID, float] = {}
        self._finished: deque[UUID] = deque()

    def begin(
        self, batch: BatchJob, initial_estimate_seconds: Optional[float] = None
    ) -> ProgressSnapshot:
        snapshot = ProgressSnapshot(
            batch_id=batch.id,
            workload=batch.workload,
            status=batch.status,
            total_items=batch.total_items,
            estimated_seconds_remaining=initial_estimate_seconds,
            started_at=batch.started_at,
        )
        self._snapshots[batch.id] = snapshot
        self._started[batch.id] = self.clock()
        return snapshot.model_copy(deep=True)

    def mark_current(self, batch_id: UUID, label: Optional[str]) -> None:
        snapshot = self._snapshots.get(batch_id)
        if snapshot is not None:
            snapshot.current_item = label

    def record(self, batch_id: UUID, result: ItemResult) -> None:
        snapshot = self._snapshots.get(batch_id)
        if snapshot is None:
            logger.warning("Result recorded for untracked batch", extra={"batch_id": str(batch_id)})
            return

        snapshot.processed_items += 1
        if not result.success:
            snapshot.failed_items += 1
        snapshot.results.append(result)
        snapshot.progress_percent = _percent(
            snapshot.processed_items, snapshot.total_items, terminal=False
        )

        elapsed = self.clock() - self._started.get(batch_id, self.clock())
        snapshot.estimated_seconds_remaining = _estimate_remaining(
            snapshot.total_items, snapshot.processed_items, elapsed
        )

    def finish(self, batch: BatchJob) -> None:
        snapshot = self._snapshots.get(batch.id)
        if snapshot is None:
            return

        snapshot.status = batch.status
        snapshot.completed_at = batch.completed_at or datetime.now(timezone.utc)
        snapshot.error_summary = batch.error_summary
        snapshot.current_item = None
        snapshot.estimated_seconds_remaining = 0.0
        snapshot.progress_percent = _percent(
            snapshot.processed_items, snapshot.total_items, terminal=True
        )
        self._started.pop(batch.id, None)

        self._finished.append(batch.id)
        while len(self._finished) > self.retain_finished:
            expired = self._finished.popleft()
            self._snapshots.pop(expired, None)

    async def get(self, batch_id: UUID) -> Optional[ProgressSnapshot]:
        snapshot = self._snapshots.get(batch_id)
        if snapshot is not None:
            return snapshot.model_copy(deep=True)

        batch = await self.store.get_batch_job(batch_id)
        if batch is None:
            return None
        results = await self.store.list_item_results(batch_id)
        return self.from_store(batch, results)

    def from_store(self, batch: BatchJob, results: list[ItemResult]) -> ProgressSnapshot:
        terminal = batch.status.is_terminal
        if terminal:
            estimate = 0.0
        elif batch.processed_items > 0 and batch.started_at is not None:
            elapsed = (self.now() - batch.started_at).total_seconds()
            estimate = _estimate_remaining(batch.total_items, batch.processed_items, elapsed)
        else:
            estimate = None

        return ProgressSnapshot(
            batch_id=batch.id,
            workload=batch.workload,
            status=batch.status,
            total_items=batch.total_items,
            processed_items=batch.processed_items,
            failed_items=batch.failed_items,
            progress_percent=_percent(batch.processed_items, batch.total_items, terminal),
            estimated_seconds_remaining=estimate,
            results=results,
            started_at=batch.started_at,
            completed_at=batch.completed_at,
            error_summary=batch.error_summary,
        )

