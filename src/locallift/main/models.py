from datetime import datetime, timezone
from typing import Annotated, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, computed_field


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC. SQLite drops the offset on the way back."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class InDB(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None


class GeneralError(BaseModel):
    message: str
    locallift_error_code: int


T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]

    @computed_field
    @property
    def count(self) -> int:
        return len(self.items)
