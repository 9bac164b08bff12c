from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from locallift.database.tables.base_class import BasePublic

JSONVariant = JSON().with_variant(JSONB, "postgresql")


class BatchJobs(BasePublic):
    """One run of a workload. At most one row per workload may be running."""

    __tablename__ = "batch_jobs"
    __table_args__ = (
        Index(
            "uq_batch_jobs_running_workload",
            "workload",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    workload: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(32), index=True)
    total_items: Mapped[int] = mapped_column(default=0)
    processed_items: Mapped[int] = mapped_column(default=0)
    failed_items: Mapped[int] = mapped_column(default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_summary: Mapped[Optional[str]] = mapped_column(Text)
    filters: Mapped[dict[str, Any]] = mapped_column(JSONVariant, default=dict)


class BatchItemResults(BasePublic):
    __tablename__ = "batch_item_results"
    __table_args__ = (UniqueConstraint("batch_id", "item_id", name="uq_batch_item_results_item"),)

    batch_id: Mapped[UUID] = mapped_column(index=True)
    item_id: Mapped[UUID] = mapped_column()
    tenant_id: Mapped[str] = mapped_column(String(255))
    label: Mapped[Optional[str]] = mapped_column(Text)
    success: Mapped[bool] = mapped_column()
    value: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONVariant)
    error_code: Mapped[Optional[str]] = mapped_column(String(32))
    error: Mapped[Optional[str]] = mapped_column(Text)
    disposition: Mapped[str] = mapped_column(String(32))
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
