"""The contract a workload implements to be driven by the batch engine.

A workload supplies its items, the external call for one item, and how a
success or a failure is persisted. Pacing, retries, progress, cancellation
and the batch record itself are handled by the engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, Sequence, TypeVar
from uuid import UUID

from locallift.batches.batch_models import (
    BatchFilter,
    ErrorClass,
    ItemDisposition,
    WorkItem,
    WorkloadName,
)
from locallift.batches.errors import RetryExhaustedError
from locallift.batches.retry_policy import RetryConfig, classify_external_error

PayloadT = TypeVar("PayloadT")

MAX_ERROR_LENGTH = 500


@dataclass(frozen=True)
class WorkloadProfile:
    retry: RetryConfig
    min_interval_seconds: float
    jitter_seconds: float = 0.0
    error_cooldown_seconds: float = 0.0
    estimated_seconds_per_item: float = 1.0
    tenant_warn_threshold: int = 10_000


@dataclass(frozen=True)
class ItemFailure:
    error_class: ErrorClass
    message: str
    disposition: ItemDisposition


class BatchWorkload(ABC, Generic[PayloadT]):
    name: WorkloadName
    profile: WorkloadProfile

    @abstractmethod
    async def load_items(self, batch_filter: BatchFilter) -> Sequence[WorkItem[PayloadT]]: ...

    @abstractmethod
    def describe(self, item: WorkItem[PayloadT]) -> str:
        """Short human label shown as the current item and in results."""

    @abstractmethod
    async def call(self, item: WorkItem[PayloadT]) -> Any: ...

    @abstractmethod
    async def on_success(
        self, batch_id: UUID, item: WorkItem[PayloadT], value: Any
    ) -> dict[str, Any]:
        """Persist a successful result and return the value shown in the status."""

    @abstractmethod
    async def on_failure(
        self, batch_id: UUID, item: WorkItem[PayloadT], failure: ItemFailure
    ) -> None: ...

    def classify(self, exc: BaseException) -> ErrorClass:
        return classify_external_error(exc)


def decide_disposition(item: WorkItem, error_class: ErrorClass) -> ItemDisposition:
    """Single failure policy shared by every workload.

    Permanent and credential failures are final. Everything else is retried
    in a later batch until the item has used up ``max_attempts``.
    """
    if error_class in (ErrorClass.PERMANENT, ErrorClass.CREDENTIAL):
        return ItemDisposition.FAILED_PERMANENTLY
    if item.attempt_count + 1 >= item.max_attempts:
        return ItemDisposition.FAILED_PERMANENTLY
    return ItemDisposition.RETRY_LATER


def describe_error(exc: BaseException, error_class: ErrorClass) -> str:
    """Render a failure for storage. Unexpected errors never expose their text."""
    if isinstance(exc, RetryExhaustedError):
        message = (
            f"Gave up after {exc.attempts} attempts: "
            f"{describe_error(exc.last_error, error_class)}"
        )
    elif error_class is ErrorClass.UNEXPECTED:
        message = f"Unexpected error ({type(exc).__name__})"
    else:
        message = str(exc) or type(exc).__name__
    return message[:MAX_ERROR_LENGTH]
