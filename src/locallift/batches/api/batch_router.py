from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from locallift.batches.api.batch_api_models import (
    BatchJobPublic,
    BatchStartRequest,
    BatchStartResponse,
)
from locallift.batches.batch_controller import BatchController
from locallift.batches.batch_models import BatchStartStatus, ProgressSnapshot, WorkloadName
from locallift.main.container.container import Container
from locallift.main.exceptions import NothingToProcessException
from locallift.main.models import PaginatedResponse
from locallift.server.dependencies.container import get_container
from locallift.server.protocol import responses

router = APIRouter()


def _controller(container: Container, workload: WorkloadName) -> BatchController:
    return container.batch_controllers()[workload]


@router.post(
    "/{workload}/",
    response_model=BatchStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=responses.get_responses([404, 409, 503]),
)
async def start_batch(
    workload: WorkloadName,
    batch_request: Optional[BatchStartRequest] = None,
    container: Container = Depends(get_container()),
):
    """Start a batch over all eligible items. Returns as soon as the batch is running.

    Answers 404 when no item is eligible and 409 when a batch of the same
    workload is already running.
    """
    batch_request = batch_request or BatchStartRequest()
    result = await _controller(container, workload).start(batch_request.to_filter())

    if result.status is BatchStartStatus.NOTHING_TO_DO:
        raise NothingToProcessException(f"Nothing to update for {workload.value}")

    return BatchStartResponse(
        batch_id=result.batch_id,
        total_items=result.total_items,
        estimated_duration_minutes=result.estimated_duration_minutes,
        status=result.status,
    )


@router.get("/{workload}/", response_model=PaginatedResponse[BatchJobPublic])
async def get_recent_batches(
    workload: WorkloadName,
    limit: int = Query(default=10, ge=1, le=100),
    container: Container = Depends(get_container()),
):
    batches = await _controller(container, workload).recent(limit=limit)
    return PaginatedResponse(items=[BatchJobPublic.from_domain(batch) for batch in batches])


@router.get(
    "/{workload}/{batch_id}/",
    response_model=ProgressSnapshot,
    responses=responses.get_responses([404, 503]),
)
async def get_batch_status(
    workload: WorkloadName,
    batch_id: UUID,
    container: Container = Depends(get_container()),
):
    return await _controller(container, workload).status(batch_id)


@router.post(
    "/{workload}/{batch_id}/cancel/",
    response_model=ProgressSnapshot,
    responses=responses.get_responses([404, 503]),
)
async def cancel_batch(
    workload: WorkloadName,
    batch_id: UUID,
    container: Container = Depends(get_container()),
):
    """Stop a running batch before its next item. Items already in flight finish."""
    return await _controller(container, workload).cancel(batch_id)
