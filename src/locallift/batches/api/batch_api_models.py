from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from locallift.batches.batch_models import (
    BatchFilter,
    BatchJob,
    BatchStartStatus,
    BatchStatus,
    WorkloadName,
)
from locallift.main.models import UtcDatetime


class BatchStartRequest(BaseModel):
    """Narrows the eligible items of a batch. Every field is optional."""

    tenant_id: Optional[str] = None
    item_ids: Optional[list[UUID]] = Field(
        default=None, description="Only process these items, if eligible."
    )
    location_id: Optional[str] = None
    business_name: Optional[str] = Field(
        default=None,
        description="Rank checks only. Overrides the business name stored on each keyword.",
    )
    due_only: bool = Field(
        default=False,
        description="Rank checks only. Skip keywords that are not due for a refresh yet.",
    )

    def to_filter(self) -> BatchFilter:
        return BatchFilter(**self.model_dump())


class BatchStartResponse(BaseModel):
    batch_id: UUID
    total_items: int
    estimated_duration_minutes: int
    status: BatchStartStatus


class BatchJobPublic(BaseModel):
    id: UUID
    workload: WorkloadName
    status: BatchStatus
    total_items: int
    processed_items: int
    failed_items: int
    started_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None
    error_summary: Optional[str] = None

    @classmethod
    def from_domain(cls, batch: BatchJob) -> "BatchJobPublic":
        return cls(
            id=batch.id,
            workload=batch.workload,
            status=batch.status,
            total_items=batch.total_items,
            processed_items=batch.processed_items,
            failed_items=batch.failed_items,
            started_at=batch.started_at,
            completed_at=batch.completed_at,
            error_summary=batch.error_summary,
        )
