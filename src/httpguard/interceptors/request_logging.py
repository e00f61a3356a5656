"""
Request/response logging interceptor.

Logs every request, response and error with timing information. The start
time is kept in the request's metadata bag rather than on the interceptor,
so concurrent requests do not overwrite each other's timings.
"""

import logging
import time
from typing import Callable
from typing import Optional

from ..models import RequestDescriptor
from ..models import ResponseEnvelope

logger = logging.getLogger("httpguard.interceptors.logging")

STARTED_AT = "logging_started_at"


class LoggingInterceptor:
    def __init__(
        self,
        log_requests: bool = True,
        log_responses: bool = True,
        log_errors: bool = True,
        log: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.log_errors = log_errors
        self._logger = log or logger
        self._clock = clock

    def _elapsed(self, descriptor: Optional[RequestDescriptor]) -> Optional[float]:
        if descriptor is None or STARTED_AT not in descriptor.metadata:
            return None
        return self._clock() - descriptor.metadata[STARTED_AT]

    async def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        descriptor.metadata[STARTED_AT] = self._clock()
        if self.log_requests:
            self._logger.info(
                f"Request: {descriptor.method.upper()} {descriptor.url} | "
                f"params={descriptor.params} | json={descriptor.json} | data={descriptor.data}"
            )
        return descriptor

    async def on_response(self, response: ResponseEnvelope) -> ResponseEnvelope:
        if self.log_responses:
            elapsed = self._elapsed(response.request)
            flags = []
            if response.served_from_cache:
                flags.append("cached")
            if response.deduplicated:
                flags.append("deduplicated")
            self._logger.info(
                f"Response: {response.status}"
                + (f" | elapsed={elapsed:.3f}s" if elapsed is not None else "")
                + (f" | {','.join(flags)}" if flags else "")
            )
        return response

    async def on_error(self, error: BaseException, descriptor: RequestDescriptor):
        if self.log_errors:
            elapsed = self._elapsed(descriptor)
            code = getattr(error, "code", type(error).__name__)
            self._logger.error(
                f"Error: {code} {error}"
                + (f" | elapsed={elapsed:.3f}s" if elapsed is not None else "")
            )
        raise error
