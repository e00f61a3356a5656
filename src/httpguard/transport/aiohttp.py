"""
Aiohttp transport implementation for httpguard.

This module provides AiohttpTransport, an alternative async HTTP client.
Aiohttp is a mature async HTTP client with connection pooling and
comprehensive timeout handling.
"""

import asyncio

import aiohttp

from httpguard.exceptions import TransportError
from httpguard.models import RequestDescriptor
from httpguard.models import ResponseEnvelope

from .base import BaseTransport


class AiohttpTransport(BaseTransport):
    """
    Async transport implementation using aiohttp.ClientSession.
    """

    def __init__(self, timeout: float = 30.0, base_url: str = ""):
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    def _resolve(self, url: str) -> str:
        if self._base_url and not url.startswith(("http://", "https://")):
            return f"{self._base_url}/{url.lstrip('/')}"
        return url

    async def send(self, descriptor: RequestDescriptor) -> ResponseEnvelope:
        # Create session if not exists
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )

        timeout_obj = aiohttp.ClientTimeout(total=descriptor.timeout or self._timeout)
        try:
            async with self._session.request(
                method=descriptor.method.upper(),
                url=self._resolve(descriptor.url),
                headers=descriptor.headers,
                params=descriptor.params,
                json=descriptor.json,
                data=descriptor.data if descriptor.files is None else descriptor.files,
                timeout=timeout_obj,
            ) as response:
                body = await response.read()
                return ResponseEnvelope(
                    status=response.status,
                    status_text=response.reason or "",
                    headers=dict(response.headers),
                    body=body,
                    request=descriptor,
                )
        except asyncio.TimeoutError as exc:
            raise TransportError(
                "Request timed out", request=descriptor, is_timeout=True
            ) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(
                f"Network error: {exc}", request=descriptor
            ) from exc

    async def close(self):
        if self._session:
            await self._session.close()
