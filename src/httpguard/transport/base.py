from httpguard.exceptions import TransportError
from httpguard.models import RequestDescriptor
from httpguard.models import ResponseEnvelope


class BaseTransport:
    """
    Abstract transport layer interface for httpguard.
    All HTTP client backends should inherit from this class.

    The pipeline only ever calls ``dispatch``. Backends implement ``send``,
    which performs the call and returns a ResponseEnvelope; ``dispatch``
    turns non-2xx responses into TransportError so the protection stages
    see HTTP-level failures the same way as network failures.

    Supported transports:
    - httpx: Native async HTTP client
    - aiohttp: Native async HTTP client
    - requests: Sync HTTP client wrapped in async interface
    """

    async def dispatch(self, descriptor: RequestDescriptor) -> ResponseEnvelope:
        response = await self.send(descriptor)
        if not response.ok:
            raise TransportError(
                f"Request failed with status code {response.status}",
                request=descriptor,
                response=response,
            )
        return response

    async def send(self, descriptor: RequestDescriptor) -> ResponseEnvelope:
        """
        Perform the HTTP call.
        Override this method in transport implementations.
        """
        raise NotImplementedError(
            "Transport implementations must override this method."
        )

    async def close(self):
        pass
