"""
Bounded retry with exponential backoff, built on tenacity.

``max_retries`` counts retries after the first call: with ``max_retries=3``
the call is tried at most four times, and ``max_retries=0`` disables
retrying. Every error leaving the executor carries ``retry_attempt`` (the
attempt that produced it) and ``retry_delay`` (the backoff computed after it).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional

from tenacity import AsyncRetrying
from tenacity import RetryCallState
from tenacity import retry_if_exception
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from .cancellation import wait_cancellable
from .exceptions import CircuitOpenError
from .exceptions import ConfigurationError
from .exceptions import RateLimitExceededError
from .exceptions import RequestCancelledError
from .exceptions import TransportError
from .models import RequestDescriptor
from .models import ResponseEnvelope
from .pipeline import RETRY_ORDER
from .pipeline import Handler

logger = logging.getLogger("httpguard.retry")


def is_retryable_error(error: BaseException) -> bool:
    """Network failures without a response and 5xx responses are retried."""
    if isinstance(error, (RequestCancelledError, RateLimitExceededError, CircuitOpenError)):
        return False
    if isinstance(error, TransportError):
        return error.response is None or error.status >= 500
    return isinstance(error, (ConnectionError, TimeoutError))


@dataclass
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    retry_predicate: Callable[[BaseException], bool] = is_retryable_error
    delay_fn: Optional[Callable[[int, BaseException], float]] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("delays must be >= 0")
        if self.backoff_factor < 1:
            raise ConfigurationError("backoff_factor must be >= 1")

    def compute_delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        if self.delay_fn is not None:
            return self.delay_fn(attempt, error)
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


class RetryExecutor:
    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def _wait(self):
        policy = self.policy
        if policy.delay_fn is None:
            return wait_exponential(
                multiplier=policy.base_delay,
                exp_base=policy.backoff_factor,
                max=policy.max_delay,
            )

        def wait(retry_state: RetryCallState) -> float:
            return policy.delay_fn(
                retry_state.attempt_number, retry_state.outcome.exception()
            )

        return wait

    async def execute(
        self,
        operation: Callable[[Optional[RequestDescriptor]], Awaitable[Any]],
        descriptor: Optional[RequestDescriptor] = None,
    ) -> Any:
        """
        Run ``operation(descriptor)`` until it succeeds, the predicate
        declines the error, attempts run out, or the request is cancelled.
        """
        policy = self.policy
        signal = descriptor.cancel_signal if descriptor is not None else None

        def should_retry(error: BaseException) -> bool:
            if signal is not None and signal.is_set():
                return False
            return policy.retry_predicate(error)

        async def sleep(delay: float) -> None:
            await wait_cancellable(self._sleep(delay), signal, descriptor)

        def before_sleep(retry_state: RetryCallState) -> None:
            logger.info(
                f"Retrying after attempt {retry_state.attempt_number} failed: "
                f"{retry_state.outcome.exception()} "
                f"(waiting {retry_state.next_action.sleep:.2f}s)"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=self._wait(),
            retry=retry_if_exception(should_retry),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                try:
                    result = await operation(descriptor)
                except Exception as error:
                    error.retry_attempt = number
                    error.retry_delay = policy.compute_delay(number, error)
                    raise
                if number > 1 and isinstance(result, ResponseEnvelope):
                    result.retry_attempt = number
                return result


class RetryStage:
    """Pipeline stage retrying everything downstream of it."""

    order = RETRY_ORDER

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.executor = RetryExecutor(policy, sleep=sleep)

    @property
    def policy(self) -> RetryPolicy:
        return self.executor.policy

    async def handle(
        self, descriptor: RequestDescriptor, call_next: Handler
    ) -> ResponseEnvelope:
        return await self.executor.execute(call_next, descriptor)
