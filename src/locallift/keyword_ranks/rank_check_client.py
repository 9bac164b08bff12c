import asyncio
import json
from typing import Callable

import aiohttp
from pydantic import ValidationError

from locallift.batches.errors import (
    ExternalApiError,
    ExternalConnectionError,
    ExternalTimeoutError,
)
from locallift.keyword_ranks.rank_models import RankCheckPayload, RankCheckResponse
from locallift.main.logging import get_logger

logger = get_logger(__name__)


class RankCheckClient:
    """Client for the local rank-check API."""

    def __init__(
        self,
        session: Callable[[], aiohttp.ClientSession],
        api_url: str,
        api_key: str,
        timeout_seconds: float = 45.0,
    ):
        self._session = session
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def check(self, payload: RankCheckPayload) -> RankCheckResponse:
        body = {
            "keyword": payload.keyword,
            "location": payload.location,
            "businessName": payload.business_name,
        }
        headers = {"Content-Type": "application/json", "X-API-KEY": self.api_key}

        try:
            async with self._session().post(
                self.api_url, json=body, headers=headers, timeout=self.timeout
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    raise ExternalApiError(text[:200] or response.reason or "", response.status)
        except asyncio.TimeoutError as exc:
            raise ExternalTimeoutError(
                f"Rank check timed out after {self.timeout.total}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise ExternalConnectionError(f"Rank check API unreachable: {exc}") from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning(
                "Rank check API returned non-JSON body",
                extra={"keyword": payload.keyword, "body_preview": text[:200]},
            )
            raise ExternalApiError("Rank check API returned an invalid response") from exc

        try:
            result = RankCheckResponse.model_validate(data)
        except ValidationError as exc:
            raise ExternalApiError("Rank check API returned an unexpected body") from exc

        if not result.success:
            raise ExternalApiError(result.message or "Rank check API reported failure")
        return result


def build_rank_check_client(
    session: Callable[[], aiohttp.ClientSession], settings
) -> "RankCheckClient | None":
    """Return a client, or None when the rank-check API is not configured."""
    if not settings.rank_check_configured:
        return None
    return RankCheckClient(
        session=session,
        api_url=settings.rank_check_api_url,
        api_key=settings.rank_check_api_key,
        timeout_seconds=settings.rank_check_timeout_seconds,
    )
