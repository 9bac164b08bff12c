from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from locallift.batches.batch_models import (
    BatchFilter,
    ErrorClass,
    ItemDisposition,
    WorkItem,
    WorkloadName,
)
from locallift.batches.errors import InvalidItemError
from locallift.batches.retry_policy import RetryConfig, classify_external_error
from locallift.batches.work_source import exclude_tenants
from locallift.batches.workload import BatchWorkload, ItemFailure, WorkloadProfile
from locallift.main.config import Settings
from locallift.main.logging import get_logger
from locallift.scheduled_posts.access_tokens import AccessTokenProvider
from locallift.scheduled_posts.gbp_client import GbpClient
from locallift.scheduled_posts.post_models import (
    PostPayload,
    PostStatus,
    PublishedPost,
    build_local_post_body,
    clean_account_id,
    clean_location_id,
)
from locallift.scheduled_posts.post_repo import ScheduledPostRepository

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = range(500, 600)


def build_post_publish_profile(settings: Settings) -> WorkloadProfile:
    return WorkloadProfile(
        retry=RetryConfig(
            max_attempts=settings.post_publish_retry_attempts,
            initial_backoff_seconds=settings.post_publish_initial_backoff_seconds,
            multiplier=settings.post_publish_backoff_multiplier,
            max_backoff_seconds=settings.post_publish_max_backoff_seconds,
            jitter_seconds=settings.post_publish_backoff_jitter_seconds,
            rate_limit_cooldown_seconds=settings.post_publish_rate_limit_cooldown_seconds,
        ),
        min_interval_seconds=settings.post_publish_min_delay_seconds,
        jitter_seconds=settings.post_publish_delay_jitter_seconds,
        error_cooldown_seconds=settings.post_publish_error_cooldown_seconds,
        estimated_seconds_per_item=settings.post_publish_estimated_seconds_per_item,
        tenant_warn_threshold=settings.rate_limiter_tenant_warn_threshold,
    )


def failure_message(failure: ItemFailure, retry_count: int, max_retries: int) -> str:
    if failure.error_class is ErrorClass.CREDENTIAL:
        return f"Authentication failed: {failure.message}"
    if failure.disposition is ItemDisposition.RETRY_LATER:
        return f"Retry {retry_count}/{max_retries}: {failure.message}"
    if failure.error_class is ErrorClass.PERMANENT:
        return f"Rejected: {failure.message}"
    if retry_count >= max_retries:
        return f"Failed after {max_retries} retries: {failure.message}"
    return f"Failed: {failure.message}"


class PostPublishWorkload(BatchWorkload[PostPayload]):
    """Publishes scheduled local posts whose time has come."""

    name = WorkloadName.POST_PUBLISHING

    def __init__(
        self,
        repo: ScheduledPostRepository,
        client: GbpClient,
        tokens: AccessTokenProvider,
        profile: WorkloadProfile,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repo = repo
        self.client = client
        self.tokens = tokens
        self.profile = profile
        self.now = now

    async def load_items(self, batch_filter: BatchFilter) -> list[WorkItem[PostPayload]]:
        posts = await self.repo.find_due(batch_filter, now=self.now())
        if not posts:
            return []

        items = [
            WorkItem[PostPayload](
                id=post.id,
                tenant_id=post.tenant_id,
                payload=PostPayload.from_post(post),
                attempt_count=post.retry_count,
                max_attempts=post.max_retries,
            )
            for post in posts
        ]
        allowed = await self.tokens.tenants_with_credentials({item.tenant_id for item in items})
        return exclude_tenants(items, allowed, reason="no active Business Profile integration")

    def describe(self, item: WorkItem[PostPayload]) -> str:
        summary = item.payload.summary
        preview = summary if len(summary) <= 40 else f"{summary[:37]}..."
        return f"Post {item.id} ({preview})"

    def classify(self, exc: BaseException) -> ErrorClass:
        return classify_external_error(exc, TRANSIENT_STATUS_CODES)

    async def call(self, item: WorkItem[PostPayload]) -> PublishedPost:
        payload = item.payload
        if not payload.image_url:
            raise InvalidItemError("No image provided for post")

        body = build_local_post_body(payload, item.id)
        access_token = await self.tokens.get_token(item.tenant_id)
        return await self.client.publish_local_post(
            access_token,
            clean_account_id(payload.account_id),
            clean_location_id(payload.location_id),
            body,
        )

    async def on_success(
        self, batch_id: UUID, item: WorkItem[PostPayload], value: PublishedPost
    ) -> dict[str, Any]:
        published_at = self.now()
        await self.repo.mark_published(item.id, batch_id, value.name, published_at)
        return {"published_post_id": value.name, "published_at": published_at.isoformat()}

    async def on_failure(
        self, batch_id: UUID, item: WorkItem[PostPayload], failure: ItemFailure
    ) -> None:
        retry_count = item.attempt_count + 1
        status = (
            PostStatus.PENDING
            if failure.disposition is ItemDisposition.RETRY_LATER
            else PostStatus.FAILED
        )
        if failure.error_class is ErrorClass.CREDENTIAL:
            self.tokens.forget(item.tenant_id)

        await self.repo.record_attempt_failure(
            item.id,
            batch_id,
            status,
            failure_message(failure, retry_count, item.max_attempts),
        )
