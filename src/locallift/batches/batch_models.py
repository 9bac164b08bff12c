from enum import Enum
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from locallift.main.models import InDB, UtcDatetime

PayloadT = TypeVar("PayloadT")


class WorkloadName(str, Enum):
    RANK_CHECKS = "rank_checks"
    POST_PUBLISHING = "post_publishing"


class BatchStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    PERMANENT = "permanent"
    CREDENTIAL = "credential"
    UNEXPECTED = "unexpected"

    @property
    def is_retryable(self) -> bool:
        return self in (ErrorClass.TRANSIENT, ErrorClass.RATE_LIMITED)


class ItemDisposition(str, Enum):
    SUCCEEDED = "succeeded"
    RETRY_LATER = "retry_later"
    FAILED_PERMANENTLY = "failed_permanently"


class WorkItem(BaseModel, Generic[PayloadT]):
    """A unit of work belonging to exactly one tenant."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    tenant_id: str
    payload: PayloadT
    attempt_count: int = 0
    max_attempts: int = 3


class BatchJob(InDB):
    workload: WorkloadName
    status: BatchStatus
    total_items: int = 0
    processed_items: int = 0
    failed_items: int = 0
    started_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None
    error_summary: Optional[str] = None


class ItemResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: UUID
    tenant_id: str
    label: Optional[str] = None
    success: bool
    value: Optional[dict[str, Any]] = None
    error_code: Optional[ErrorClass] = None
    error: Optional[str] = None
    disposition: ItemDisposition
    processed_at: UtcDatetime


class ProgressSnapshot(BaseModel):
    batch_id: UUID
    workload: WorkloadName
    status: BatchStatus
    total_items: int
    processed_items: int = 0
    failed_items: int = 0
    progress_percent: float = 0.0
    current_item: Optional[str] = None
    estimated_seconds_remaining: Optional[float] = None
    results: list[ItemResult] = Field(default_factory=list)
    started_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None
    error_summary: Optional[str] = None

    @computed_field
    @property
    def succeeded_items(self) -> int:
        return self.processed_items - self.failed_items


class BatchFilter(BaseModel):
    tenant_id: Optional[str] = None
    item_ids: Optional[list[UUID]] = None
    location_id: Optional[str] = None
    business_name: Optional[str] = None
    due_only: bool = False


class BatchStartStatus(str, Enum):
    RUNNING = "running"
    NOTHING_TO_DO = "nothing_to_do"


class BatchStartResult(BaseModel):
    batch_id: Optional[UUID] = None
    total_items: int
    estimated_duration_minutes: int
    status: BatchStartStatus
