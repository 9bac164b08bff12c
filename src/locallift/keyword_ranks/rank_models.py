from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from locallift.main.models import InDB, UtcDatetime


class RankChange(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    SAME = "SAME"
    NEW = "NEW"
    NOT_FOUND = "NOT_FOUND"


class CheckStatus(str, Enum):
    OK = "ok"
    RETRYING = "retrying"
    FAILED = "failed"


class KeywordTracking(InDB):
    tenant_id: str
    keyword: str
    location_id: str
    location: str
    business_name: str
    target_domain: Optional[str] = None
    is_active: bool = True
    refresh_rate_hours: int = 48
    last_checked: Optional[UtcDatetime] = None
    next_batch_update: Optional[UtcDatetime] = None
    check_status: CheckStatus = CheckStatus.OK
    failed_attempts: int = 0
    last_error: Optional[str] = None


class RankCheckPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    keyword: str
    location: str
    location_id: str
    business_name: str
    refresh_rate_hours: int = 48


class RankCheckResponse(BaseModel):
    """Body returned by the local rank-check API."""

    success: bool
    found: bool = False
    rank: Optional[int] = None
    message: Optional[str] = None
    competitors: list[str] = Field(default_factory=list)
    total: Optional[int] = None

    @property
    def current_rank(self) -> Optional[int]:
        return self.rank if self.found else None


class SearchResult(BaseModel):
    position: int
    title: str
    link: Optional[str] = None
    snippet: Optional[str] = None


class RankOutcome(BaseModel):
    tracking_id: UUID
    rank: Optional[int]
    previous_rank: Optional[int]
    change: RankChange
    change_value: int = 0
    found: bool
    total_results: int = 0


def compute_rank_change(
    current_rank: Optional[int], previous_rank: Optional[int]
) -> tuple[RankChange, int]:
    """Lower rank is better, so moving from 5 to 2 is UP by 3."""
    if current_rank is None:
        return RankChange.NOT_FOUND, 0
    if previous_rank is None:
        return RankChange.NEW, 0

    diff = previous_rank - current_rank
    if diff > 0:
        return RankChange.UP, diff
    if diff < 0:
        return RankChange.DOWN, -diff
    return RankChange.SAME, 0


def competitors_to_search_results(competitors: list[str]) -> list[SearchResult]:
    return [
        SearchResult(position=position, title=title)
        for position, title in enumerate(competitors, start=1)
    ]
