import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from httpguard.client import GuardedClient
from httpguard.config import GuardSettings
from httpguard.exceptions import TokenRefreshError
from httpguard.exceptions import TransportError
from httpguard.interceptors.auth import AuthInterceptor
from httpguard.interceptors.auth import RefreshTokenInterceptor
from httpguard.interceptors.auth import TokenRefresher
from httpguard.models import RequestDescriptor
from httpguard.token_store import MemoryTokenStore

from tests.fakes import MockTransport
from tests.fakes import make_response


@pytest.mark.asyncio
async def test_auth_header_from_token_store():
    """
    GIVEN: a token store holding a valid token
    WHEN: a request goes through the auth interceptor
    THEN: the bearer header should be added without touching the original
    """
    store = MemoryTokenStore(access_token="valid-token-123", expires_at=time.time() + 300)
    interceptor = AuthInterceptor(token_store=store)
    original = RequestDescriptor(url="/a")

    result = await interceptor.on_request(original)

    assert result.headers["Authorization"] == "Bearer valid-token-123"
    assert "Authorization" not in original.headers


@pytest.mark.asyncio
async def test_auth_without_token_leaves_request_alone():
    interceptor = AuthInterceptor(get_token=AsyncMock(return_value=None))
    descriptor = RequestDescriptor(url="/a")
    assert await interceptor.on_request(descriptor) is descriptor


@pytest.mark.asyncio
async def test_auth_custom_header_and_scheme():
    interceptor = AuthInterceptor(get_token=lambda: "k-1", header="X-Api-Key", scheme="")
    result = await interceptor.on_request(RequestDescriptor())
    assert result.headers == {"X-Api-Key": "k-1"}


@pytest.mark.asyncio
async def test_refresher_posts_refresh_token_and_saves_result():
    """
    GIVEN: a stored refresh token and a refresh endpoint returning 201
    WHEN: we refresh
    THEN: the new access token should be stored with its expiry
    """
    store = MemoryTokenStore(access_token="expired", refresh_token="refresh-1")
    refresher = TokenRefresher(store, refresh_url="https://auth.test/refresh")

    with patch("httpx.AsyncClient") as mock_client:
        mock_response = MagicMock()
        mock_response.status_code = 201
        mock_response.json.return_value = {"access_token": "new-token-456", "expires_in": 300}

        mock_async_client = AsyncMock()
        mock_async_client.__aenter__.return_value = mock_async_client
        mock_async_client.__aexit__.return_value = None
        mock_async_client.post.return_value = mock_response
        mock_client.return_value = mock_async_client

        token = await refresher.refresh()

    assert token == "new-token-456"
    mock_async_client.post.assert_called_once_with(
        "https://auth.test/refresh", json={"refresh_token": "refresh-1"}
    )
    stored = await store.load()
    assert stored["access_token"] == "new-token-456"
    assert stored["refresh_token"] == "refresh-1"
    assert stored["expires_at"] > time.time()


@pytest.mark.asyncio
async def test_refresher_keeps_rotated_refresh_token():
    store = MemoryTokenStore(refresh_token="old")
    refresh_fn = AsyncMock(return_value={"access_token": "a2", "refresh_token": "new"})
    await TokenRefresher(store, refresh_fn=refresh_fn).refresh()

    refresh_fn.assert_awaited_once_with("old")
    assert (await store.load())["refresh_token"] == "new"


@pytest.mark.asyncio
async def test_refresher_rejects_missing_access_token():
    store = MemoryTokenStore(refresh_token="r")
    refresher = TokenRefresher(store, refresh_fn=AsyncMock(return_value={}), retry_attempts=1)
    with pytest.raises(TokenRefreshError):
        await refresher.refresh()


def test_refresher_requires_a_source():
    with pytest.raises(TokenRefreshError):
        TokenRefresher(MemoryTokenStore())


@pytest.mark.asyncio
async def test_refresh_interceptor_ignores_other_errors():
    interceptor = RefreshTokenInterceptor(
        replay=AsyncMock(), refresher=MagicMock()
    )
    error = TransportError("forbidden", response=make_response(status=403))
    with pytest.raises(TransportError) as exc_info:
        await interceptor.on_error(error, RequestDescriptor())
    assert exc_info.value is error
    interceptor.refresher.refresh.assert_not_called()


@pytest.mark.asyncio
async def test_refresh_interceptor_retries_only_once():
    replay = AsyncMock()
    refresher = MagicMock()
    refresher.refresh = AsyncMock(return_value="t")
    interceptor = RefreshTokenInterceptor(replay=replay, refresher=refresher)

    descriptor = RequestDescriptor(metadata={"auth_retried": True})
    error = TransportError("unauthorized", response=make_response(status=401))
    with pytest.raises(TransportError):
        await interceptor.on_error(error, descriptor)
    replay.assert_not_called()


def build_client(store, valid_token="fresh"):
    def handler(descriptor):
        if descriptor.headers.get("Authorization") == f"Bearer {valid_token}":
            return 200
        return 401

    transport = MockTransport(handler)
    client = GuardedClient(
        transport=transport,
        settings=GuardSettings(_env_file=None),
        token_store=store,
    )
    return client, transport


@pytest.mark.asyncio
async def test_401_refreshes_and_replays_through_client():
    """
    GIVEN: a client whose stored token has been revoked
    WHEN: a request gets 401
    THEN: the token is refreshed and the request replayed once with it
    """
    store = MemoryTokenStore(access_token="stale", refresh_token="r-1")
    client, transport = build_client(store)
    refresh_fn = AsyncMock(return_value={"access_token": "fresh"})
    client.use_auth().use_refresh_token(refresh_fn=refresh_fn)

    response = await client.get("/me")

    assert response.status == 200
    assert [d.headers["Authorization"] for d in transport.request_calls] == [
        "Bearer stale",
        "Bearer fresh",
    ]
    refresh_fn.assert_awaited_once_with("r-1")


@pytest.mark.asyncio
async def test_concurrent_401s_share_one_refresh():
    store = MemoryTokenStore(access_token="stale", refresh_token="r-1")
    client, transport = build_client(store)
    calls = 0

    async def refresh_fn(refresh_token):
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        return {"access_token": "fresh"}

    client.use_auth().use_refresh_token(refresh_fn=refresh_fn)

    responses = await asyncio.gather(*(client.get(f"/item/{i}") for i in range(3)))

    assert [r.status for r in responses] == [200, 200, 200]
    assert calls == 1
    assert transport.request_count == 6


@pytest.mark.asyncio
async def test_still_unauthorized_after_refresh_surfaces_401():
    store = MemoryTokenStore(access_token="stale", refresh_token="r-1")
    client, transport = build_client(store, valid_token="never")
    client.use_auth().use_refresh_token(
        refresh_fn=AsyncMock(return_value={"access_token": "fresh"})
    )

    with pytest.raises(TransportError) as exc_info:
        await client.get("/me")
    assert exc_info.value.status == 401
    assert transport.request_count == 2


@pytest.mark.asyncio
async def test_failed_refresh_calls_handler_and_raises():
    store = MemoryTokenStore(access_token="stale", refresh_token="r-1")
    client, transport = build_client(store)
    on_failed = MagicMock()
    client.use_auth().use_refresh_token(
        refresh_fn=AsyncMock(side_effect=TokenRefreshError("revoked")),
        retry_attempts=1,
        on_refresh_failed=on_failed,
    )

    with pytest.raises(TokenRefreshError):
        await client.get("/me")
    on_failed.assert_called_once()
    assert transport.request_count == 1
