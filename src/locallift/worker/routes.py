from typing import Any, Optional

from pydantic import BaseModel

from locallift.batches.batch_controller import BatchController
from locallift.batches.batch_models import BatchFilter, BatchStartStatus, WorkloadName
from locallift.main.config import get_settings
from locallift.main.container.container import Container
from locallift.main.exceptions import BatchConflictException
from locallift.main.logging import get_logger
from locallift.worker.worker import Worker

logger = get_logger(__name__)

worker = Worker()


class RunBatchParams(BaseModel):
    workload: WorkloadName
    filter: Optional[BatchFilter] = None


async def run_to_completion(
    controller: BatchController, batch_filter: BatchFilter
) -> dict[str, Any]:
    """Start a batch and wait for it. A batch already running elsewhere is not an error."""
    try:
        started = await controller.start(batch_filter)
    except BatchConflictException as exc:
        logger.info(
            f"Skipping {controller.workload_name} run: {exc}",
            extra={"workload": controller.workload_name},
        )
        return {"status": "skipped", "reason": str(exc)}

    if started.status is BatchStartStatus.NOTHING_TO_DO:
        return {"status": started.status.value, "total_items": 0}

    snapshot = await controller.wait(started.batch_id)
    return {
        "status": snapshot.status.value,
        "batch_id": str(snapshot.batch_id),
        "total_items": snapshot.total_items,
        "processed_items": snapshot.processed_items,
        "failed_items": snapshot.failed_items,
    }


@worker.function()
async def run_batch(job_id: str, params: dict, container: Container):
    """Run one batch on demand, e.g. enqueued by an operator script."""
    run_params = RunBatchParams.model_validate(params)
    controller = container.batch_controllers()[run_params.workload]
    logger.info(
        f"Job {job_id} runs a {run_params.workload.value} batch",
        extra={"workload": run_params.workload.value},
    )
    return await run_to_completion(controller, run_params.filter or BatchFilter())


@worker.cron_job(hour={get_settings().rank_check_cron_hour}, minute={0})
async def refresh_keyword_ranks(container: Container):
    """Nightly refresh of every keyword whose refresh interval has elapsed."""
    return await run_to_completion(
        container.rank_check_controller(), BatchFilter(due_only=True)
    )


async def publish_scheduled_posts(container: Container):
    """Publish every post whose scheduled time has passed."""
    return await run_to_completion(container.post_publish_controller(), BatchFilter())


if get_settings().post_publish_cron_enabled:
    worker.cron_job(second={0})(publish_scheduled_posts)
