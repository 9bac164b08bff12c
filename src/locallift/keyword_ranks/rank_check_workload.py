from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from locallift.batches.batch_models import (
    BatchFilter,
    ErrorClass,
    ItemDisposition,
    WorkItem,
    WorkloadName,
)
from locallift.batches.retry_policy import RetryConfig, classify_external_error
from locallift.batches.workload import BatchWorkload, ItemFailure, WorkloadProfile
from locallift.keyword_ranks.keyword_repo import KeywordRepository
from locallift.keyword_ranks.rank_check_client import RankCheckClient
from locallift.keyword_ranks.rank_models import (
    CheckStatus,
    RankCheckPayload,
    RankCheckResponse,
    RankOutcome,
    competitors_to_search_results,
    compute_rank_change,
)
from locallift.main.config import Settings
from locallift.main.logging import get_logger

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = frozenset({500, 503})


def build_rank_check_profile(settings: Settings) -> WorkloadProfile:
    return WorkloadProfile(
        retry=RetryConfig(
            max_attempts=settings.rank_check_retry_attempts,
            initial_backoff_seconds=settings.rank_check_initial_backoff_seconds,
            multiplier=settings.rank_check_backoff_multiplier,
            max_backoff_seconds=settings.rank_check_max_backoff_seconds,
            jitter_seconds=settings.rank_check_backoff_jitter_seconds,
            rate_limit_cooldown_seconds=settings.rank_check_rate_limit_cooldown_seconds,
        ),
        min_interval_seconds=settings.rank_check_min_delay_seconds,
        jitter_seconds=settings.rank_check_delay_jitter_seconds,
        error_cooldown_seconds=settings.rank_check_error_cooldown_seconds,
        estimated_seconds_per_item=settings.rank_check_estimated_seconds_per_item,
        tenant_warn_threshold=settings.rate_limiter_tenant_warn_threshold,
    )


class RankCheckWorkload(BatchWorkload[RankCheckPayload]):
    """Re-checks tracked keywords against the local rank-check API."""

    name = WorkloadName.RANK_CHECKS

    def __init__(
        self,
        repo: KeywordRepository,
        client: Optional[RankCheckClient],
        profile: WorkloadProfile,
        item_max_attempts: int = 3,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repo = repo
        self.client = client
        self.profile = profile
        self.item_max_attempts = item_max_attempts
        self.now = now

    async def load_items(self, batch_filter: BatchFilter) -> list[WorkItem[RankCheckPayload]]:
        if self.client is None:
            logger.warning(
                "Rank check API is not configured, no keywords can be checked",
                extra={"workload": self.name.value},
            )
            return []

        trackings = await self.repo.find_eligible(batch_filter, now=self.now())
        return [
            WorkItem[RankCheckPayload](
                id=tracking.id,
                tenant_id=tracking.tenant_id,
                payload=RankCheckPayload(
                    keyword=tracking.keyword,
                    location=tracking.location,
                    location_id=tracking.location_id,
                    business_name=batch_filter.business_name or tracking.business_name,
                    refresh_rate_hours=tracking.refresh_rate_hours,
                ),
                attempt_count=tracking.failed_attempts,
                max_attempts=self.item_max_attempts,
            )
            for tracking in trackings
        ]

    def describe(self, item: WorkItem[RankCheckPayload]) -> str:
        return f"{item.payload.keyword} ({item.payload.location})"

    def classify(self, exc: BaseException) -> ErrorClass:
        return classify_external_error(exc, TRANSIENT_STATUS_CODES)

    async def call(self, item: WorkItem[RankCheckPayload]) -> RankCheckResponse:
        return await self.client.check(item.payload)

    async def on_success(
        self, batch_id: UUID, item: WorkItem[RankCheckPayload], value: RankCheckResponse
    ) -> dict[str, Any]:
        checked_at = self.now()
        previous_rank = await self.repo.get_previous_rank(
            tenant_id=item.tenant_id,
            keyword=item.payload.keyword,
            location_id=item.payload.location_id,
            exclude_batch_id=batch_id,
        )
        change, change_value = compute_rank_change(value.current_rank, previous_rank)
        outcome = RankOutcome(
            tracking_id=item.id,
            rank=value.current_rank,
            previous_rank=previous_rank,
            change=change,
            change_value=change_value,
            found=value.found,
            total_results=value.total or 0,
        )

        search_results = [
            result.model_dump() for result in competitors_to_search_results(value.competitors)
        ]
        await self.repo.save_rank(batch_id, item, outcome, search_results, checked_at)
        await self.repo.mark_checked(item.id, item.payload.refresh_rate_hours, checked_at)

        return outcome.model_dump(mode="json", exclude={"tracking_id"})

    async def on_failure(
        self, batch_id: UUID, item: WorkItem[RankCheckPayload], failure: ItemFailure
    ) -> None:
        status = (
            CheckStatus.FAILED
            if failure.disposition is ItemDisposition.FAILED_PERMANENTLY
            else CheckStatus.RETRYING
        )
        await self.repo.record_failure(item.id, status, failure.message)
