import logging
import time
from collections import deque
from typing import Callable
from typing import Optional

from .exceptions import ConfigurationError
from .exceptions import RateLimitExceededError
from .models import RequestDescriptor
from .models import ResponseEnvelope
from .pipeline import RATE_LIMIT_ORDER
from .pipeline import Handler

logger = logging.getLogger("httpguard.rate_limit")


class RateLimiter:
    """
    Sliding-window admission control shared by every request of a client.

    ``on_limit(error, descriptor)`` is called before a rejection; if it
    raises, its exception replaces the rate-limit error.
    """

    order = RATE_LIMIT_ORDER

    def __init__(
        self,
        max_requests: int = 100,
        window: float = 60.0,
        on_limit: Optional[Callable[[RateLimitExceededError, RequestDescriptor], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ConfigurationError("max_requests must be at least 1")
        if window <= 0:
            raise ConfigurationError("window must be greater than 0")
        self.max_requests = max_requests
        self.window = window
        self.on_limit = on_limit
        self._clock = clock
        self._timestamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] > self.window:
            self._timestamps.popleft()

    def acquire(self, descriptor: Optional[RequestDescriptor] = None) -> None:
        """Admit one request or raise RateLimitExceededError."""
        now = self._clock()
        self._prune(now)
        if len(self._timestamps) >= self.max_requests:
            error = RateLimitExceededError(request=descriptor)
            logger.warning(
                f"Rate limit of {self.max_requests} per {self.window}s exceeded"
            )
            if self.on_limit is not None:
                self.on_limit(error, descriptor)
            raise error
        self._timestamps.append(now)

    @property
    def remaining(self) -> int:
        self._prune(self._clock())
        return self.max_requests - len(self._timestamps)

    async def handle(
        self, descriptor: RequestDescriptor, call_next: Handler
    ) -> ResponseEnvelope:
        self.acquire(descriptor)
        return await call_next(descriptor)
