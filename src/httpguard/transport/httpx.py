import httpx

from httpguard.exceptions import TransportError
from httpguard.models import RequestDescriptor
from httpguard.models import ResponseEnvelope

from .base import BaseTransport


class HttpxTransport(BaseTransport):
    """
    Async transport implementation using httpx.AsyncClient.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        base_url: str = "",
        client: httpx.AsyncClient | None = None,
    ):
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(
            timeout=self._timeout, base_url=base_url
        )

    async def send(self, descriptor: RequestDescriptor) -> ResponseEnvelope:
        content = None
        data = descriptor.data
        # raw bodies go through content=, form fields through data=
        if isinstance(data, (str, bytes, bytearray)):
            content, data = data, None

        try:
            response = await self._client.request(
                method=descriptor.method.upper(),
                url=descriptor.url,
                headers=descriptor.headers,
                params=descriptor.params,
                json=descriptor.json,
                content=content,
                data=data,
                files=descriptor.files,
                timeout=descriptor.timeout or self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"Request timed out: {exc}", request=descriptor, is_timeout=True
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"Network error: {exc}", request=descriptor
            ) from exc

        return ResponseEnvelope(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers),
            body=response.content,
            request=descriptor,
        )

    async def close(self):
        await self._client.aclose()
