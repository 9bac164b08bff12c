from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from locallift.database.tables.base_class import BasePublic
from locallift.database.tables.batch_jobs_table import JSONVariant


class KeywordTracking(BasePublic):
    __tablename__ = "keyword_tracking"

    tenant_id: Mapped[str] = mapped_column(String(255), index=True)
    keyword: Mapped[str] = mapped_column(Text)
    location_id: Mapped[str] = mapped_column(String(255), index=True)
    location: Mapped[str] = mapped_column(Text)
    business_name: Mapped[str] = mapped_column(Text)
    target_domain: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(default=True)
    refresh_rate_hours: Mapped[int] = mapped_column(default=48)
    last_checked: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    next_batch_update: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_status: Mapped[str] = mapped_column(String(32), default="ok")
    failed_attempts: Mapped[int] = mapped_column(default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)


class KeywordRanks(BasePublic):
    __tablename__ = "keyword_ranks"
    __table_args__ = (
        UniqueConstraint("batch_id", "tracking_id", name="uq_keyword_ranks_batch_tracking"),
    )

    tracking_id: Mapped[UUID] = mapped_column(index=True)
    batch_id: Mapped[UUID] = mapped_column(index=True)
    tenant_id: Mapped[str] = mapped_column(String(255), index=True)
    keyword: Mapped[str] = mapped_column(Text)
    location_id: Mapped[str] = mapped_column(String(255))
    rank: Mapped[Optional[int]] = mapped_column()
    found: Mapped[bool] = mapped_column(default=False)
    previous_rank: Mapped[Optional[int]] = mapped_column()
    change: Mapped[str] = mapped_column(String(16))
    change_value: Mapped[Optional[int]] = mapped_column()
    total_results: Mapped[Optional[int]] = mapped_column()
    search_results: Mapped[list[dict[str, Any]]] = mapped_column(JSONVariant, default=list)
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
