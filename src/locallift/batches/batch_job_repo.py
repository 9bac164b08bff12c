from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from locallift.batches.batch_models import BatchJob, BatchStatus, ItemResult, WorkloadName
from locallift.database.database import SessionFactory, transaction
from locallift.database.tables.batch_jobs_table import BatchItemResults, BatchJobs
from locallift.main.exceptions import BatchConflictException
from locallift.main.logging import get_logger

logger = get_logger(__name__)


class BatchJobRepository:
    """SQLAlchemy-backed ``BatchJobStore``.

    Every operation opens its own short transaction, so a batch running for
    hours never pins a pooled connection.
    """

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def create_batch_job(
        self,
        workload: WorkloadName,
        total_items: int,
        filters: Optional[dict[str, Any]] = None,
    ) -> BatchJob:
        try:
            async with transaction(self.session_factory) as session:
                record = BatchJobs(
                    workload=workload.value,
                    status=BatchStatus.RUNNING.value,
                    total_items=total_items,
                    processed_items=0,
                    failed_items=0,
                    started_at=datetime.now(timezone.utc),
                    filters=filters or {},
                )
                session.add(record)
                await session.flush()
                return BatchJob.model_validate(record)
        except IntegrityError as exc:
            # Partial unique index: only one running row per workload
            raise BatchConflictException(workload.value) from exc

    async def get_batch_job(self, batch_id: UUID) -> Optional[BatchJob]:
        async with transaction(self.session_factory) as session:
            record = await session.get(BatchJobs, batch_id)
            if record is None:
                return None
            return BatchJob.model_validate(record)

    async def get_running_batch(self, workload: WorkloadName) -> Optional[BatchJob]:
        stmt = (
            sa.select(BatchJobs)
            .where(BatchJobs.workload == workload.value)
            .where(BatchJobs.status == BatchStatus.RUNNING.value)
        )
        async with transaction(self.session_factory) as session:
            record = await session.scalar(stmt)
            if record is None:
                return None
            return BatchJob.model_validate(record)

    async def record_item_result(self, batch_id: UUID, result: ItemResult) -> bool:
        values = result.model_dump(mode="json", exclude={"item_id", "processed_at"})
        values["processed_at"] = result.processed_at

        async with transaction(self.session_factory) as session:
            existing = await session.scalar(
                sa.select(BatchItemResults)
                .where(BatchItemResults.batch_id == batch_id)
                .where(BatchItemResults.item_id == result.item_id)
            )
            if existing is not None:
                status = await session.scalar(
                    sa.select(BatchJobs.status).where(BatchJobs.id == batch_id)
                )
                if status != BatchStatus.RUNNING.value:
                    return False
                for key, value in values.items():
                    setattr(existing, key, value)
                logger.debug(
                    "Item result replaced",
                    extra={"batch_id": str(batch_id), "item_id": str(result.item_id)},
                )
                return True

            # Counters only move while the job is running
            counted = await session.execute(
                sa.update(BatchJobs)
                .where(BatchJobs.id == batch_id)
                .where(BatchJobs.status == BatchStatus.RUNNING.value)
                .values(
                    processed_items=BatchJobs.processed_items + 1,
                    failed_items=BatchJobs.failed_items + (0 if result.success else 1),
                )
            )
            if counted.rowcount == 0:
                logger.info(
                    "Batch is not running, item result dropped",
                    extra={"batch_id": str(batch_id), "item_id": str(result.item_id)},
                )
                return False

            session.add(BatchItemResults(batch_id=batch_id, item_id=result.item_id, **values))
            return True

    async def finalize_batch(
        self,
        batch_id: UUID,
        status: BatchStatus,
        error_summary: Optional[str] = None,
    ) -> Optional[BatchJob]:
        async with transaction(self.session_factory) as session:
            # Compare-and-set: terminal states are never left
            stmt = (
                sa.update(BatchJobs)
                .where(BatchJobs.id == batch_id)
                .where(BatchJobs.status == BatchStatus.RUNNING.value)
                .values(
                    status=status.value,
                    completed_at=datetime.now(timezone.utc),
                    error_summary=error_summary,
                )
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                logger.info(
                    "Batch was not running, final status left untouched",
                    extra={"batch_id": str(batch_id), "status": status.value},
                )
                return None

            record = await session.get(BatchJobs, batch_id, populate_existing=True)
            return BatchJob.model_validate(record)

    async def list_item_results(self, batch_id: UUID) -> list[ItemResult]:
        stmt = (
            sa.select(BatchItemResults)
            .where(BatchItemResults.batch_id == batch_id)
            .order_by(BatchItemResults.processed_at, BatchItemResults.created_at)
        )
        async with transaction(self.session_factory) as session:
            records = await session.scalars(stmt)
            return [ItemResult.model_validate(record) for record in records]

    async def list_recent_batches(self, workload: WorkloadName, limit: int = 10) -> list[BatchJob]:
        stmt = (
            sa.select(BatchJobs)
            .where(BatchJobs.workload == workload.value)
            .order_by(BatchJobs.created_at.desc())
            .limit(limit)
        )
        async with transaction(self.session_factory) as session:
            records = await session.scalars(stmt)
            return [BatchJob.model_validate(record) for record in records]
