"""
Bearer-token authentication interceptors.

AuthInterceptor adds the ``Authorization`` header to outgoing requests.
RefreshTokenInterceptor watches for 401 responses, refreshes the access token
once for every request that failed concurrently, and replays each failed
request a single time with the new token.

TokenRefresher handles the refresh itself:
- retrying transient failures with exponential backoff (tenacity)
- storing the new access token, and a rotated refresh token if one is issued
"""

import asyncio
import logging
import time
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional

import httpx
from tenacity import AsyncRetrying
from tenacity import retry_if_exception_type
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from ..exceptions import TokenRefreshError
from ..exceptions import TransportError
from ..hooks import maybe_await
from ..models import RequestDescriptor
from ..token_store import TokenStore

logger = logging.getLogger("httpguard.auth")

TokenProvider = Callable[[], Any]

RETRIED_FLAG = "auth_retried"


class AuthInterceptor:
    """
    Sets ``Authorization: <scheme> <token>`` when a token is available.

    Args:
        get_token: sync or async callable returning the token or None.
        token_store: used when no ``get_token`` is given.
    """

    def __init__(
        self,
        get_token: Optional[TokenProvider] = None,
        token_store: Optional[TokenStore] = None,
        header: str = "Authorization",
        scheme: str = "Bearer",
    ):
        self._get_token = get_token
        self._token_store = token_store
        self.header = header
        self.scheme = scheme

    async def _token(self) -> Optional[str]:
        if self._get_token is not None:
            return await maybe_await(self._get_token())
        if self._token_store is not None:
            data = await self._token_store.load()
            return data.get("access_token") if data else None
        return None

    async def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        token = await self._token()
        if not token:
            return descriptor
        headers = dict(descriptor.headers)
        headers[self.header] = f"{self.scheme} {token}" if self.scheme else token
        return descriptor.copy(headers=headers)


class TokenRefresher:
    """
    Obtains a new access token using the stored refresh token.

    Either ``refresh_fn`` (an async callable taking the refresh token and
    returning a dict with ``access_token`` and optionally ``refresh_token``
    and ``expires_in``) or ``refresh_url`` must be provided.
    """

    def __init__(
        self,
        token_store: TokenStore,
        refresh_fn: Optional[Callable[[Optional[str]], Awaitable[dict]]] = None,
        refresh_url: Optional[str] = None,
        retry_attempts: int = 3,
        timeout: float = 30.0,
    ):
        if refresh_fn is None and not refresh_url:
            raise TokenRefreshError("Either refresh_fn or refresh_url is required")
        self.token_store = token_store
        self._refresh_fn = refresh_fn
        self.refresh_url = refresh_url
        self._retry_attempts = retry_attempts
        self._timeout = timeout

    async def _request_token(self, refresh_token: Optional[str]) -> dict:
        if self._refresh_fn is not None:
            return await self._refresh_fn(refresh_token)

        if not refresh_token or not refresh_token.strip():
            raise TokenRefreshError("Refresh token is missing or empty")

        async with httpx.AsyncClient(timeout=self._timeout) as async_client:
            try:
                response = await async_client.post(
                    self.refresh_url, json={"refresh_token": refresh_token}
                )
            except httpx.HTTPError as e:
                raise TokenRefreshError(f"Refresh request failed: {e}") from e

        if response.status_code in (200, 201):
            return response.json()
        if response.status_code == 401:
            logger.error("Refresh token is invalid.")
            raise TokenRefreshError("Bad refresh token")
        logger.error(f"Auth error: {response.status_code} - {response.text}")
        raise TokenRefreshError(f"Auth error: {response.status_code}: {response.text}")

    async def refresh(self) -> str:
        stored = await self.token_store.load() or {}
        refresh_token = stored.get("refresh_token")

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.5, min=1, max=5),
            retry=retry_if_exception_type((TokenRefreshError, httpx.HTTPError)),
            reraise=True,
        ):
            with attempt:
                data = await self._request_token(refresh_token)

        access_token = data.get("access_token") if data else None
        if not access_token:
            raise TokenRefreshError("Refresh response did not contain an access token")

        expires_in = data.get("expires_in")
        expires_at = time.time() + expires_in if expires_in else None
        await self.token_store.save(
            access_token, expires_at, refresh_token=data.get("refresh_token")
        )
        logger.debug("New access token acquired")
        return access_token


class RefreshTokenInterceptor:
    """
    Error hook that recovers from 401 responses.

    Args:
        replay: coroutine function sending a descriptor through the client
            again (normally ``GuardedClient.request``).
        refresher: TokenRefresher used to get the new token.
        on_refresh_failed: called with the refresh error before it is raised.
    """

    def __init__(
        self,
        replay: Callable[[RequestDescriptor], Awaitable[Any]],
        refresher: TokenRefresher,
        on_refresh_failed: Optional[Callable[[BaseException], Any]] = None,
    ):
        self._replay = replay
        self.refresher = refresher
        self.on_refresh_failed = on_refresh_failed
        self._refreshing: Optional[asyncio.Task] = None

    def _shared_refresh(self) -> asyncio.Task:
        if self._refreshing is None:

            async def run():
                try:
                    return await self.refresher.refresh()
                finally:
                    self._refreshing = None

            self._refreshing = asyncio.ensure_future(run())
        return self._refreshing

    async def on_error(self, error: BaseException, descriptor: RequestDescriptor):
        if (
            not isinstance(error, TransportError)
            or error.status != 401
            or descriptor is None
            or descriptor.metadata.get(RETRIED_FLAG)
        ):
            raise error

        logger.info(f"Got 401 for {descriptor.method} {descriptor.url}, refreshing token")
        try:
            await asyncio.shield(self._shared_refresh())
        except Exception as refresh_error:
            logger.error(f"Token refresh failed: {refresh_error}")
            if self.on_refresh_failed is not None:
                await maybe_await(self.on_refresh_failed(refresh_error))
            raise refresh_error from error

        retry = descriptor.copy(metadata={**descriptor.metadata, RETRIED_FLAG: True})
        return await self._replay(retry)
