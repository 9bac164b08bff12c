import asyncio
import json
from typing import Any, Callable, Optional

import aiohttp

from locallift.batches.errors import (
    CredentialError,
    ExternalApiError,
    ExternalConnectionError,
    ExternalTimeoutError,
)
from locallift.main.logging import get_logger
from locallift.scheduled_posts.post_models import PublishedPost

logger = get_logger(__name__)


def _error_message(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            description = data.get("error_description")
            return f"{error}: {description}" if description else error
    return fallback


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text) if text else None
    except json.JSONDecodeError:
        return None


class GbpClient:
    """Business Profile API client: local post publishing and OAuth token refresh."""

    def __init__(
        self,
        session: Callable[[], aiohttp.ClientSession],
        api_base_url: str,
        token_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        timeout_seconds: float = 30.0,
    ):
        self._session = session
        self.api_base_url = api_base_url.rstrip("/")
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _request(self, method: str, url: str, **kwargs) -> tuple[int, Any, str]:
        try:
            async with self._session().request(
                method, url, timeout=self.timeout, **kwargs
            ) as response:
                text = await response.text()
                return response.status, _parse_json(text), text
        except asyncio.TimeoutError as exc:
            raise ExternalTimeoutError(
                f"Business Profile API timed out after {self.timeout.total}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise ExternalConnectionError(f"Business Profile API unreachable: {exc}") from exc

    async def publish_local_post(
        self,
        access_token: str,
        account_id: str,
        location_id: str,
        body: dict[str, Any],
    ) -> PublishedPost:
        url = f"{self.api_base_url}/accounts/{account_id}/locations/{location_id}/localPosts"
        status, data, text = await self._request(
            "POST",
            url,
            json=body,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

        if status == 401:
            raise CredentialError(_error_message(data, "Access token rejected"))
        if status >= 400:
            raise ExternalApiError(_error_message(data, text[:200]), status)

        data = data if isinstance(data, dict) else {}
        return PublishedPost(
            name=data.get("name"),
            state=data.get("state"),
            search_url=data.get("searchUrl"),
        )

    async def refresh_access_token(self, refresh_token: str) -> tuple[str, int]:
        """Exchange a refresh token. Returns the new access token and its lifetime in seconds."""
        if not self.client_id or not self.client_secret:
            raise CredentialError("Google OAuth client is not configured")

        status, data, text = await self._request(
            "POST",
            self.token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

        if status >= 500 or status == 429:
            raise ExternalApiError(_error_message(data, text[:200]), status)
        if status >= 400:
            # invalid_grant: the refresh token expired or was revoked
            raise CredentialError(f"Refresh token rejected: {_error_message(data, text[:200])}")

        if not isinstance(data, dict) or not data.get("access_token"):
            raise CredentialError("Token endpoint returned no access token")

        logger.debug("Access token refreshed")
        return data["access_token"], int(data.get("expires_in", 3600))
