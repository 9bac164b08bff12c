import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from locallift.batches.errors import CredentialError
from locallift.main.logging import get_logger
from locallift.scheduled_posts.gbp_client import GbpClient
from locallift.scheduled_posts.post_models import GbpIntegration
from locallift.scheduled_posts.post_repo import GbpIntegrationRepository

logger = get_logger(__name__)

EXPIRY_SKEW = timedelta(seconds=60)


class AccessTokenProvider:
    """Hands out a valid access token per tenant, refreshing and persisting it when expired.

    Refreshes for one tenant are serialized so concurrent posts of that
    tenant trigger a single refresh.
    """

    def __init__(
        self,
        integrations: GbpIntegrationRepository,
        client: GbpClient,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.integrations = integrations
        self.client = client
        self.now = now
        self._cache: dict[str, GbpIntegration] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def tenants_with_credentials(self, tenant_ids: Iterable[str]) -> set[str]:
        integrations = await self.integrations.list_active(tenant_ids)
        usable = set()
        for integration in integrations:
            self._cache[integration.tenant_id] = integration
            if self._is_fresh(integration) or self._can_refresh(integration):
                usable.add(integration.tenant_id)
            else:
                logger.info(
                    "Skipping tenant without usable Business Profile credentials",
                    extra={"tenant_id": integration.tenant_id},
                )
        return usable

    def _is_fresh(self, integration: GbpIntegration) -> bool:
        return (
            integration.access_token is not None
            and integration.token_expiry is not None
            and self.now() + EXPIRY_SKEW < integration.token_expiry
        )

    def _can_refresh(self, integration: GbpIntegration) -> bool:
        return bool(
            integration.refresh_token and self.client.client_id and self.client.client_secret
        )

    async def get_token(self, tenant_id: str) -> str:
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        async with lock:
            integration = self._cache.get(tenant_id)
            if integration is None:
                integration = await self.integrations.get_active(tenant_id)
                if integration is None:
                    raise CredentialError("No active Business Profile integration")
                self._cache[tenant_id] = integration

            if self._is_fresh(integration):
                return integration.access_token

            if not integration.refresh_token:
                raise CredentialError("Access token expired and no refresh token is stored")

            access_token, expires_in = await self.client.refresh_access_token(
                integration.refresh_token
            )
            token_expiry = self.now() + timedelta(seconds=expires_in)
            await self.integrations.update_token(integration.id, access_token, token_expiry)
            self._cache[tenant_id] = integration.model_copy(
                update={"access_token": access_token, "token_expiry": token_expiry}
            )
            logger.info(
                "Refreshed Business Profile access token",
                extra={"tenant_id": tenant_id, "expires_in": expires_in},
            )
            return access_token

    def forget(self, tenant_id: str) -> None:
        self._cache.pop(tenant_id, None)
