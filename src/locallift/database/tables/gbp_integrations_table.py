from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from locallift.database.tables.base_class import BasePublic


class GbpIntegrations(BasePublic):
    """OAuth credentials linking a tenant to its Business Profile account."""

    __tablename__ = "gbp_integrations"

    tenant_id: Mapped[str] = mapped_column(String(255), unique=True)
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    token_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    account_name: Mapped[Optional[str]] = mapped_column(Text)
    account_id: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(default=True)
