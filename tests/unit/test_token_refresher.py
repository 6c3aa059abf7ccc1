import asyncio
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from crm_sync.services.crm.hubspot.token_refresher import HUBSPOT_TOKEN_URL, HubSpotTokenRefresher
from crm_sync.services.crm.salesforce.token_refresher import (
    SALESFORCE_TOKEN_URL,
    SalesforceTokenRefresher,
)
from crm_sync.services.crm.token_refresher import TokenRefreshError
from tests.helpers import FakeCredentialStore, make_credential


class TokenEndpoint:
    """Records refresh grants and answers with a canned response."""

    def __init__(self, status_code=200, payload=None, delay=0.0):
        self.status_code = status_code
        self.payload = payload if payload is not None else {}
        self.delay = delay
        self.requests: list[dict] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(
            {"url": str(request.url), "form": parse_qs(request.content.decode())}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        return httpx.Response(self.status_code, json=self.payload)


def _hubspot(store, endpoint, **kwargs):
    return HubSpotTokenRefresher(
        store, "client-id", "client-secret", transport=httpx.MockTransport(endpoint), **kwargs
    )


def _salesforce(store, endpoint, **kwargs):
    return SalesforceTokenRefresher(
        store, "sf-id", "sf-secret", transport=httpx.MockTransport(endpoint), **kwargs
    )


def _expiring_credential(**overrides):
    data = {"expires_at": datetime.now(UTC) + timedelta(seconds=60)}
    data.update(overrides)
    return make_credential(**data)


def test_needs_refresh_uses_buffer():
    credential = _expiring_credential()

    assert credential.needs_refresh(300) is True
    assert credential.needs_refresh(30) is False
    assert credential.is_expired() is False


@pytest.mark.asyncio
async def test_valid_token_is_returned_without_refresh():
    credential = make_credential()
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint()

    result = await _hubspot(store, endpoint).ensure_valid_token(credential)

    assert result is credential
    assert endpoint.requests == []


@pytest.mark.asyncio
async def test_hubspot_refresh_persists_rotated_tokens():
    credential = _expiring_credential()
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(
        payload={"access_token": "access-new", "refresh_token": "refresh-new", "expires_in": 1800}
    )

    refreshed = await _hubspot(store, endpoint).ensure_valid_token(credential)

    assert refreshed.access_token == "access-new"
    assert refreshed.refresh_token == "refresh-new"
    assert refreshed.expires_at > datetime.now(UTC) + timedelta(minutes=29)

    request = endpoint.requests[0]
    assert request["url"] == HUBSPOT_TOKEN_URL
    assert request["form"]["grant_type"] == ["refresh_token"]
    assert request["form"]["refresh_token"] == ["refresh-old"]
    assert request["form"]["client_id"] == ["client-id"]
    assert store.updates[0]["credential_id"] == "cred-1"


@pytest.mark.asyncio
async def test_hubspot_keeps_refresh_token_when_not_rotated():
    credential = _expiring_credential()
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(payload={"access_token": "access-new", "expires_in": 1800})

    refreshed = await _hubspot(store, endpoint).refresh_credential(credential)

    assert refreshed.refresh_token == "refresh-old"
    assert store.updates[0]["refresh_token"] == "refresh-old"


@pytest.mark.asyncio
async def test_salesforce_expiry_from_issued_at():
    credential = _expiring_credential(
        provider="salesforce", instance_url="https://old.my.salesforce.com"
    )
    store = FakeCredentialStore([credential])
    issued_at = datetime.now(UTC).replace(microsecond=0)
    endpoint = TokenEndpoint(
        payload={
            "access_token": "sf-new",
            "instance_url": "https://new.my.salesforce.com",
            "issued_at": str(int(issued_at.timestamp() * 1000)),
        }
    )

    refreshed = await _salesforce(store, endpoint).refresh_credential(credential)

    assert endpoint.requests[0]["url"] == SALESFORCE_TOKEN_URL
    assert refreshed.expires_at == issued_at + timedelta(hours=2)
    assert refreshed.instance_url == "https://new.my.salesforce.com"
    assert store.updates[0]["refresh_token"] == "refresh-old"


@pytest.mark.asyncio
async def test_salesforce_without_issued_at_defaults_to_two_hours():
    credential = _expiring_credential(provider="salesforce", instance_url="https://x.my.salesforce.com")
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(payload={"access_token": "sf-new"})

    refreshed = await _salesforce(store, endpoint).refresh_credential(credential)

    remaining = refreshed.expires_at - datetime.now(UTC)
    assert timedelta(minutes=119) < remaining <= timedelta(hours=2)
    assert refreshed.instance_url == "https://x.my.salesforce.com"


@pytest.mark.asyncio
async def test_expiry_in_the_past_is_rejected():
    credential = _expiring_credential(provider="salesforce", instance_url="https://x.my.salesforce.com")
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(payload={"access_token": "sf-new", "issued_at": "1000"})

    with pytest.raises(TokenRefreshError):
        await _salesforce(store, endpoint).refresh_credential(credential)

    assert store.updates == []


@pytest.mark.asyncio
async def test_rejected_grant_raises_and_keeps_stored_tokens():
    credential = _expiring_credential()
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(status_code=400, payload={"error": "invalid_grant"})

    with pytest.raises(TokenRefreshError) as exc:
        await _hubspot(store, endpoint).ensure_valid_token(credential)

    assert exc.value.status_code == 400
    assert exc.value.response_data == {"error": "invalid_grant"}
    assert exc.value.recoverable is False
    assert store.updates == []


@pytest.mark.asyncio
async def test_missing_access_token_is_an_error():
    credential = _expiring_credential()
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(payload={"expires_in": 1800})

    with pytest.raises(TokenRefreshError):
        await _hubspot(store, endpoint).refresh_credential(credential)


@pytest.mark.asyncio
async def test_credential_without_refresh_token_cannot_refresh():
    credential = _expiring_credential(refresh_token=None)
    endpoint = TokenEndpoint()

    with pytest.raises(TokenRefreshError) as exc:
        await _hubspot(FakeCredentialStore([credential]), endpoint).refresh_credential(credential)

    assert exc.value.recoverable is False
    assert endpoint.requests == []


@pytest.mark.asyncio
async def test_persistence_failure_raises_refresh_error():
    credential = _expiring_credential()
    store = FakeCredentialStore([credential])
    store.fail_updates = True
    endpoint = TokenEndpoint(payload={"access_token": "access-new", "expires_in": 1800})

    with pytest.raises(TokenRefreshError, match="persist"):
        await _hubspot(store, endpoint).refresh_credential(credential)


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    credential = _expiring_credential()
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(
        payload={"access_token": "access-new", "expires_in": 1800}, delay=0.05
    )
    refresher = _hubspot(store, endpoint)

    results = await asyncio.gather(*(refresher.ensure_valid_token(credential) for _ in range(5)))

    assert len(endpoint.requests) == 1
    assert {r.access_token for r in results} == {"access-new"}


@pytest.mark.asyncio
async def test_force_refresh_reuses_newer_token():
    credential = make_credential()
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(payload={"access_token": "access-new", "expires_in": 1800})
    refresher = _hubspot(store, endpoint)

    first = await refresher.force_refresh(credential)
    second = await refresher.force_refresh(credential)

    assert first.access_token == second.access_token == "access-new"
    assert len(endpoint.requests) == 1


@pytest.mark.asyncio
async def test_locks_are_released_after_refresh():
    credential = _expiring_credential()
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(
        payload={"access_token": "access-new", "expires_in": 1800}, delay=0.05
    )
    refresher = _hubspot(store, endpoint)

    await asyncio.gather(*(refresher.ensure_valid_token(credential) for _ in range(3)))

    assert refresher._locks == {}
    assert refresher._lock_users == {}


@pytest.mark.asyncio
async def test_locks_are_released_after_failed_refresh():
    credential = _expiring_credential()
    store = FakeCredentialStore([credential])
    refresher = _hubspot(store, TokenEndpoint(status_code=400, payload={"error": "invalid_grant"}))

    with pytest.raises(TokenRefreshError):
        await refresher.force_refresh(credential)

    assert refresher._locks == {}
    assert refresher._lock_users == {}


@pytest.mark.asyncio
async def test_expired_cached_credentials_are_pruned():
    credential = _expiring_credential()
    stale = make_credential(id="cred-stale", expires_at=datetime.now(UTC) - timedelta(minutes=5))
    store = FakeCredentialStore([credential])
    endpoint = TokenEndpoint(payload={"access_token": "access-new", "expires_in": 1800})
    refresher = _hubspot(store, endpoint)
    refresher._latest[stale.id] = stale

    await refresher.ensure_valid_token(credential)

    assert set(refresher._latest) == {credential.id}
