import logging
from typing import Any
from typing import Callable
from typing import Mapping
from typing import Optional

from ..exceptions import TransportError
from ..hooks import maybe_await
from ..models import RequestDescriptor

logger = logging.getLogger("httpguard.interceptors.timeout")


class SmartTimeout:
    """
    Per-endpoint timeouts.

    Lookup order is ``"METHOD url"``, then ``url``, then ``default_timeout``.
    A timeout already set on the request wins.
    """

    def __init__(
        self,
        endpoint_timeouts: Optional[Mapping[str, float]] = None,
        default_timeout: float = 5.0,
        on_timeout: Optional[Callable[[TransportError, RequestDescriptor], Any]] = None,
    ):
        self.endpoint_timeouts = dict(endpoint_timeouts or {})
        self.default_timeout = default_timeout
        self.on_timeout = on_timeout

    def timeout_for(self, descriptor: RequestDescriptor) -> float:
        key = f"{descriptor.method.upper()} {descriptor.url}"
        if key in self.endpoint_timeouts:
            return self.endpoint_timeouts[key]
        return self.endpoint_timeouts.get(descriptor.url, self.default_timeout)

    async def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        if descriptor.timeout is not None:
            return descriptor
        return descriptor.copy(timeout=self.timeout_for(descriptor))

    async def on_error(self, error: BaseException, descriptor: RequestDescriptor):
        if isinstance(error, TransportError) and error.is_timeout:
            logger.warning(
                f"Request timed out after {descriptor.timeout}s: "
                f"{descriptor.method.upper()} {descriptor.url}"
            )
            if self.on_timeout is not None:
                await maybe_await(self.on_timeout(error, descriptor))
        raise error
