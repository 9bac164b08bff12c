"""Unit tests for per-tenant access token refresh."""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from locallift.batches.errors import CredentialError
from locallift.scheduled_posts.access_tokens import AccessTokenProvider
from locallift.scheduled_posts.post_models import GbpIntegration

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_integration(tenant_id="tenant-a", **fields) -> GbpIntegration:
    values = dict(
        id=uuid4(),
        tenant_id=tenant_id,
        access_token="stale",
        refresh_token="refresh-me",
        token_expiry=NOW - timedelta(minutes=5),
    )
    values.update(fields)
    return GbpIntegration(**values)


class FakeIntegrationRepo:
    def __init__(self, *integrations: GbpIntegration):
        self.integrations = {integration.tenant_id: integration for integration in integrations}
        self.updates = []

    async def get_active(self, tenant_id):
        return self.integrations.get(tenant_id)

    async def list_active(self, tenant_ids):
        return [self.integrations[t] for t in tenant_ids if t in self.integrations]

    async def update_token(self, integration_id, access_token, token_expiry):
        self.updates.append((integration_id, access_token, token_expiry))


class FakeTokenClient:
    def __init__(self, client_id="client-id", client_secret="client-secret"):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refreshes = 0

    async def refresh_access_token(self, refresh_token):
        self.refreshes += 1
        await asyncio.sleep(0)
        return f"fresh-{self.refreshes}", 3600


def make_provider(repo, client=None):
    return AccessTokenProvider(repo, client or FakeTokenClient(), now=lambda: NOW)


@pytest.mark.asyncio
async def test_fresh_token_is_used_as_is():
    integration = make_integration(access_token="valid", token_expiry=NOW + timedelta(hours=1))
    client = FakeTokenClient()
    provider = make_provider(FakeIntegrationRepo(integration), client)

    assert await provider.get_token("tenant-a") == "valid"
    assert client.refreshes == 0


@pytest.mark.asyncio
async def test_token_about_to_expire_is_refreshed():
    integration = make_integration(access_token="valid", token_expiry=NOW + timedelta(seconds=30))
    client = FakeTokenClient()
    provider = make_provider(FakeIntegrationRepo(integration), client)

    assert await provider.get_token("tenant-a") == "fresh-1"


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_persisted_and_cached():
    integration = make_integration()
    repo = FakeIntegrationRepo(integration)
    client = FakeTokenClient()
    provider = make_provider(repo, client)

    first = await provider.get_token("tenant-a")
    second = await provider.get_token("tenant-a")

    assert first == second == "fresh-1"
    assert client.refreshes == 1
    assert repo.updates == [(integration.id, "fresh-1", NOW + timedelta(seconds=3600))]


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_refresh():
    client = FakeTokenClient()
    provider = make_provider(FakeIntegrationRepo(make_integration()), client)

    tokens = await asyncio.gather(*(provider.get_token("tenant-a") for _ in range(5)))

    assert set(tokens) == {"fresh-1"}
    assert client.refreshes == 1


@pytest.mark.asyncio
async def test_missing_integration_is_a_credential_error():
    provider = make_provider(FakeIntegrationRepo())

    with pytest.raises(CredentialError):
        await provider.get_token("tenant-a")


@pytest.mark.asyncio
async def test_expired_token_without_refresh_token_is_a_credential_error():
    provider = make_provider(FakeIntegrationRepo(make_integration(refresh_token=None)))

    with pytest.raises(CredentialError):
        await provider.get_token("tenant-a")


@pytest.mark.asyncio
async def test_tenants_with_credentials():
    repo = FakeIntegrationRepo(
        make_integration("tenant-a"),
        make_integration("tenant-b", access_token=None, refresh_token=None),
        make_integration("tenant-d", refresh_token=None),
        make_integration(
            "tenant-e",
            access_token="valid",
            refresh_token=None,
            token_expiry=NOW + timedelta(hours=1),
        ),
    )
    provider = make_provider(repo)

    usable = await provider.tenants_with_credentials(
        {"tenant-a", "tenant-b", "tenant-c", "tenant-d", "tenant-e"}
    )

    # Expired without a refresh token is unusable, a fresh token needs none
    assert usable == {"tenant-a", "tenant-e"}


@pytest.mark.asyncio
async def test_expired_token_is_unusable_without_oauth_client_credentials():
    repo = FakeIntegrationRepo(
        make_integration("tenant-a"),
        make_integration("tenant-b", access_token="valid", token_expiry=NOW + timedelta(hours=1)),
    )
    provider = make_provider(repo, FakeTokenClient(client_id=None, client_secret=None))

    usable = await provider.tenants_with_credentials({"tenant-a", "tenant-b"})

    assert usable == {"tenant-b"}


@pytest.mark.asyncio
async def test_forget_drops_the_cached_token():
    integration = make_integration()
    repo = FakeIntegrationRepo(integration)
    client = FakeTokenClient()
    provider = make_provider(repo, client)
    await provider.get_token("tenant-a")

    provider.forget("tenant-a")
    await provider.get_token("tenant-a")

    # Reloaded from the repo, which still holds the expired token
    assert client.refreshes == 2
