from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

import sqlalchemy as sa

from locallift.batches.batch_models import BatchFilter
from locallift.database.database import SessionFactory, transaction
from locallift.database.tables.gbp_integrations_table import GbpIntegrations
from locallift.database.tables.scheduled_posts_table import ScheduledPosts
from locallift.scheduled_posts.post_models import GbpIntegration, PostStatus, ScheduledPost


class ScheduledPostRepository:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def find_due(self, batch_filter: BatchFilter, now: datetime) -> list[ScheduledPost]:
        """Pending posts whose time has come and that still have retries left."""
        stmt = (
            sa.select(ScheduledPosts)
            .where(ScheduledPosts.status == PostStatus.PENDING.value)
            .where(ScheduledPosts.scheduled_at <= now)
            .where(ScheduledPosts.retry_count < ScheduledPosts.max_retries)
            .order_by(ScheduledPosts.scheduled_at, ScheduledPosts.id)
        )
        if batch_filter.tenant_id is not None:
            stmt = stmt.where(ScheduledPosts.tenant_id == batch_filter.tenant_id)
        if batch_filter.location_id is not None:
            stmt = stmt.where(ScheduledPosts.location_id == batch_filter.location_id)
        if batch_filter.item_ids:
            stmt = stmt.where(ScheduledPosts.id.in_(batch_filter.item_ids))

        async with transaction(self.session_factory) as session:
            records = await session.scalars(stmt)
            return [ScheduledPost.model_validate(record) for record in records]

    async def mark_published(
        self,
        post_id: UUID,
        batch_id: UUID,
        published_post_id: Optional[str],
        published_at: datetime,
    ) -> None:
        stmt = (
            sa.update(ScheduledPosts)
            .where(ScheduledPosts.id == post_id)
            .values(
                status=PostStatus.PUBLISHED.value,
                published_at=published_at,
                published_post_id=published_post_id,
                error_message=None,
                last_batch_id=batch_id,
            )
        )
        async with transaction(self.session_factory) as session:
            await session.execute(stmt)

    async def record_attempt_failure(
        self,
        post_id: UUID,
        batch_id: UUID,
        status: PostStatus,
        error_message: str,
    ) -> None:
        stmt = (
            sa.update(ScheduledPosts)
            .where(ScheduledPosts.id == post_id)
            .values(
                status=status.value,
                retry_count=ScheduledPosts.retry_count + 1,
                error_message=error_message,
                last_batch_id=batch_id,
            )
        )
        async with transaction(self.session_factory) as session:
            await session.execute(stmt)


class GbpIntegrationRepository:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def get_active(self, tenant_id: str) -> Optional[GbpIntegration]:
        stmt = (
            sa.select(GbpIntegrations)
            .where(GbpIntegrations.tenant_id == tenant_id)
            .where(GbpIntegrations.is_active.is_(True))
        )
        async with transaction(self.session_factory) as session:
            record = await session.scalar(stmt)
            return GbpIntegration.model_validate(record) if record is not None else None

    async def list_active(self, tenant_ids: Iterable[str]) -> list[GbpIntegration]:
        tenant_ids = list(tenant_ids)
        if not tenant_ids:
            return []
        stmt = (
            sa.select(GbpIntegrations)
            .where(GbpIntegrations.tenant_id.in_(tenant_ids))
            .where(GbpIntegrations.is_active.is_(True))
        )
        async with transaction(self.session_factory) as session:
            records = await session.scalars(stmt)
            return [GbpIntegration.model_validate(record) for record in records]

    async def update_token(
        self, integration_id: UUID, access_token: str, token_expiry: datetime
    ) -> None:
        stmt = (
            sa.update(GbpIntegrations)
            .where(GbpIntegrations.id == integration_id)
            .values(access_token=access_token, token_expiry=token_expiry)
        )
        async with transaction(self.session_factory) as session:
            await session.execute(stmt)
