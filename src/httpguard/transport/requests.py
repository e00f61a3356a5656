import asyncio

import requests

from httpguard.exceptions import TransportError
from httpguard.models import RequestDescriptor
from httpguard.models import ResponseEnvelope

from .base import BaseTransport


class RequestsTransport(BaseTransport):
    """
    Sync transport implementation using requests.Session.

    This transport wraps the synchronous requests library in an async interface.

    Note: This is a compatibility layer for users who need to use requests
    in an async context. For best performance, use httpx or aiohttp.
    """

    def __init__(self, timeout: float = 30.0, base_url: str = ""):
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")
        self._session = requests.Session()

    async def send(self, descriptor: RequestDescriptor) -> ResponseEnvelope:
        """
        Async wrapper around synchronous requests.

        This method runs the synchronous requests call in a thread pool
        to avoid blocking the event loop.
        """
        loop = asyncio.get_running_loop()
        url = descriptor.url
        if self._base_url and not url.startswith(("http://", "https://")):
            url = f"{self._base_url}/{url.lstrip('/')}"

        def make_request() -> requests.Response:
            return self._session.request(
                method=descriptor.method.upper(),
                url=url,
                headers=descriptor.headers,
                params=descriptor.params or {},
                json=descriptor.json,
                data=descriptor.data,
                files=descriptor.files,
                timeout=descriptor.timeout or self._timeout,
            )

        try:
            response = await loop.run_in_executor(None, make_request)
        except requests.Timeout as exc:
            raise TransportError(
                f"Request timed out: {exc}", request=descriptor, is_timeout=True
            ) from exc
        except requests.RequestException as exc:
            raise TransportError(
                f"Network error: {exc}", request=descriptor
            ) from exc

        return ResponseEnvelope(
            status=response.status_code,
            status_text=response.reason or "",
            headers=dict(response.headers),
            body=response.content,
            request=descriptor,
        )

    async def close(self):
        """
        Async wrapper for closing the session.
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._session.close)
