from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

import sqlalchemy as sa

from locallift.batches.batch_models import BatchFilter, WorkItem
from locallift.database.database import SessionFactory, transaction
from locallift.database.tables.keyword_tracking_table import KeywordRanks, KeywordTracking
from locallift.keyword_ranks.rank_models import CheckStatus
from locallift.keyword_ranks.rank_models import KeywordTracking as KeywordTrackingModel
from locallift.keyword_ranks.rank_models import RankCheckPayload, RankOutcome


class KeywordRepository:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def find_eligible(
        self, batch_filter: BatchFilter, now: datetime
    ) -> list[KeywordTrackingModel]:
        stmt = (
            sa.select(KeywordTracking)
            .where(KeywordTracking.is_active.is_(True))
            .where(KeywordTracking.check_status != CheckStatus.FAILED.value)
            .order_by(KeywordTracking.created_at, KeywordTracking.id)
        )
        if batch_filter.tenant_id is not None:
            stmt = stmt.where(KeywordTracking.tenant_id == batch_filter.tenant_id)
        if batch_filter.location_id is not None:
            stmt = stmt.where(KeywordTracking.location_id == batch_filter.location_id)
        if batch_filter.item_ids:
            stmt = stmt.where(KeywordTracking.id.in_(batch_filter.item_ids))
        if batch_filter.due_only:
            stmt = stmt.where(
                sa.or_(
                    KeywordTracking.last_checked.is_(None),
                    KeywordTracking.next_batch_update.is_(None),
                    KeywordTracking.next_batch_update <= now,
                )
            )

        async with transaction(self.session_factory) as session:
            records = await session.scalars(stmt)
            return [KeywordTrackingModel.model_validate(record) for record in records]

    async def get_previous_rank(
        self,
        tenant_id: str,
        keyword: str,
        location_id: str,
        exclude_batch_id: UUID,
    ) -> Optional[int]:
        """Rank from the most recent check in an earlier batch, if any."""
        stmt = (
            sa.select(KeywordRanks.rank)
            .where(KeywordRanks.tenant_id == tenant_id)
            .where(KeywordRanks.keyword == keyword)
            .where(KeywordRanks.location_id == location_id)
            .where(KeywordRanks.batch_id != exclude_batch_id)
            .order_by(KeywordRanks.checked_at.desc())
            .limit(1)
        )
        async with transaction(self.session_factory) as session:
            return await session.scalar(stmt)

    async def save_rank(
        self,
        batch_id: UUID,
        item: WorkItem[RankCheckPayload],
        outcome: RankOutcome,
        search_results: list[dict[str, Any]],
        checked_at: datetime,
    ) -> None:
        """Insert the rank for this batch, or replace it if the item is re-run."""
        values = {
            "tenant_id": item.tenant_id,
            "keyword": item.payload.keyword,
            "location_id": item.payload.location_id,
            "rank": outcome.rank,
            "found": outcome.found,
            "previous_rank": outcome.previous_rank,
            "change": outcome.change.value,
            "change_value": outcome.change_value,
            "total_results": outcome.total_results,
            "search_results": search_results,
            "checked_at": checked_at,
        }
        async with transaction(self.session_factory) as session:
            existing = await session.scalar(
                sa.select(KeywordRanks)
                .where(KeywordRanks.batch_id == batch_id)
                .where(KeywordRanks.tracking_id == item.id)
            )
            if existing is None:
                session.add(KeywordRanks(batch_id=batch_id, tracking_id=item.id, **values))
            else:
                for key, value in values.items():
                    setattr(existing, key, value)

    async def mark_checked(
        self, tracking_id: UUID, refresh_rate_hours: int, checked_at: datetime
    ) -> None:
        stmt = (
            sa.update(KeywordTracking)
            .where(KeywordTracking.id == tracking_id)
            .values(
                last_checked=checked_at,
                next_batch_update=checked_at + timedelta(hours=refresh_rate_hours),
                check_status=CheckStatus.OK.value,
                failed_attempts=0,
                last_error=None,
            )
        )
        async with transaction(self.session_factory) as session:
            await session.execute(stmt)

    async def record_failure(
        self, tracking_id: UUID, status: CheckStatus, message: str
    ) -> None:
        stmt = (
            sa.update(KeywordTracking)
            .where(KeywordTracking.id == tracking_id)
            .values(
                failed_attempts=KeywordTracking.failed_attempts + 1,
                check_status=status.value,
                last_error=message,
            )
        )
        async with transaction(self.session_factory) as session:
            await session.execute(stmt)
