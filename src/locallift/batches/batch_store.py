from typing import Any, Optional, Protocol
from uuid import UUID

from locallift.batches.batch_models import BatchJob, BatchStatus, ItemResult, WorkloadName


class BatchJobStore(Protocol):
    """Durable record of batch jobs and their per-item outcomes."""

    async def create_batch_job(
        self,
        workload: WorkloadName,
        total_items: int,
        filters: Optional[dict[str, Any]] = None,
    ) -> BatchJob:
        """Insert a running job. Raises ``BatchConflictException`` if one is running."""
        ...

    async def get_batch_job(self, batch_id: UUID) -> Optional[BatchJob]: ...

    async def get_running_batch(self, workload: WorkloadName) -> Optional[BatchJob]: ...

    async def record_item_result(self, batch_id: UUID, result: ItemResult) -> bool:
        """Upsert an item outcome, counting it towards the job the first time only.

        Returns False, and records nothing, once the job has left ``running``.
        """
        ...

    async def finalize_batch(
        self,
        batch_id: UUID,
        status: BatchStatus,
        error_summary: Optional[str] = None,
    ) -> Optional[BatchJob]:
        """Move a running job to a terminal status. Returns None if it was not running."""
        ...

    async def list_item_results(self, batch_id: UUID) -> list[ItemResult]: ...

    async def list_recent_batches(
        self, workload: WorkloadName, limit: int = 10
    ) -> list[BatchJob]: ...
