from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from locallift.database.tables.base_class import BasePublic


class ScheduledPosts(BasePublic):
    __tablename__ = "scheduled_posts"

    tenant_id: Mapped[str] = mapped_column(String(255), index=True)
    summary: Mapped[str] = mapped_column(Text)
    language_code: Mapped[str] = mapped_column(String(16), default="en-US")
    topic_type: Mapped[str] = mapped_column(String(32), default="STANDARD")
    media_format: Mapped[str] = mapped_column(String(16), default="PHOTO")
    image_url: Mapped[Optional[str]] = mapped_column(Text)
    action_type: Mapped[Optional[str]] = mapped_column(String(32))
    action_url: Mapped[Optional[str]] = mapped_column(Text)
    account_id: Mapped[str] = mapped_column(String(255))
    location_id: Mapped[str] = mapped_column(String(255))
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    published_post_id: Mapped[Optional[str]] = mapped_column(Text)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(default=0)
    max_retries: Mapped[int] = mapped_column(default=3)
    last_batch_id: Mapped[Optional[UUID]] = mapped_column()
