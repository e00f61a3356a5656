import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from typing import Optional

from .exceptions import CircuitHalfOpenLimitError
from .exceptions import CircuitOpenError
from .exceptions import ConfigurationError
from .exceptions import RequestCancelledError
from .models import RequestDescriptor
from .models import ResponseEnvelope
from .pipeline import CIRCUIT_BREAKER_ORDER
from .pipeline import Handler

logger = logging.getLogger("httpguard.circuit_breaker")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: Optional[float] = None
    half_open_probes: int = 0


@dataclass
class CircuitBreakerStatus:
    state: CircuitState
    failures: int
    last_failure_time: Optional[float]
    half_open_probes: int


class CircuitBreaker:
    """
    Three-state failure isolation guard around the transport call.

    All transition decisions for a call are taken before its first await, so
    two calls issued back to back cannot both pass a check meant for one.

    Args:
        failure_threshold: failures within ``monitoring_period`` that open the circuit.
        reset_timeout: seconds after the last failure before a half-open probe.
        monitoring_period: seconds after which old failures stop counting.
        is_failure: decides whether an error counts; every error does by default.
        max_half_open_probes: concurrent probes allowed while half-open.
    """

    order = CIRCUIT_BREAKER_ORDER

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        monitoring_period: float = 60.0,
        is_failure: Optional[Callable[[BaseException], bool]] = None,
        max_half_open_probes: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ConfigurationError("failure_threshold must be at least 1")
        if max_half_open_probes < 1:
            raise ConfigurationError("max_half_open_probes must be at least 1")
        if reset_timeout < 0 or monitoring_period < 0:
            raise ConfigurationError("reset_timeout and monitoring_period must be >= 0")

        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.monitoring_period = monitoring_period
        self.is_failure = is_failure or (lambda error: True)
        self.max_half_open_probes = max_half_open_probes
        self._clock = clock
        self._state = CircuitBreakerState()

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def failures(self) -> int:
        return self._state.failure_count

    def _transition(self, state: CircuitState) -> None:
        if self._state.state != state:
            logger.info(f"Circuit {self._state.state.value} -> {state.value}")
        self._state.state = state

    def _admit(self) -> tuple[CircuitState, float]:
        """
        Apply time-based transitions and reserve a probe slot if needed.

        Returns the state observed and the call start time.
        """
        s = self._state
        now = self._clock()

        if (
            s.last_failure_time is not None
            and now - s.last_failure_time > self.monitoring_period
        ):
            s.failure_count = 0

        if s.state is CircuitState.OPEN:
            if (
                s.last_failure_time is not None
                and now - s.last_failure_time > self.reset_timeout
            ):
                self._transition(CircuitState.HALF_OPEN)
                s.half_open_probes = 0
            else:
                raise CircuitOpenError("Circuit breaker is OPEN", state=s.state.value)

        if s.state is CircuitState.HALF_OPEN:
            if s.half_open_probes >= self.max_half_open_probes:
                raise CircuitHalfOpenLimitError(
                    "Circuit breaker is HALF_OPEN and probe limit reached",
                    state=s.state.value,
                )
            s.half_open_probes += 1

        return s.state, now

    def _record_failure(self, error: BaseException, started_at: float) -> None:
        s = self._state
        # a caller giving up says nothing about the remote side
        if isinstance(error, RequestCancelledError) or not self.is_failure(error):
            return
        s.failure_count += 1
        s.last_failure_time = started_at
        if s.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    async def handle(
        self, descriptor: RequestDescriptor, call_next: Handler
    ) -> ResponseEnvelope:
        observed, started_at = self._admit()
        try:
            response = await call_next(descriptor)
        except Exception as error:
            self._record_failure(error, started_at)
            error.circuit_breaker_state = observed.value
            error.circuit_breaker_failures = self._state.failure_count
            raise
        finally:
            if observed is CircuitState.HALF_OPEN:
                self._state.half_open_probes = max(0, self._state.half_open_probes - 1)

        if observed is CircuitState.HALF_OPEN and self._state.state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.CLOSED)
            self._state.failure_count = 0
            self._state.half_open_probes = 0
        return response

    async def call(self, func: Callable, *args, **kwargs):
        """Guard an arbitrary coroutine function with this breaker."""

        async def call_next(_):
            return await func(*args, **kwargs)

        return await self.handle(None, call_next)

    def get_status(self) -> CircuitBreakerStatus:
        s = self._state
        return CircuitBreakerStatus(
            state=s.state,
            failures=s.failure_count,
            last_failure_time=s.last_failure_time,
            half_open_probes=s.half_open_probes,
        )

    def reset(self) -> None:
        self._state = CircuitBreakerState()
        logger.info("Circuit manually reset to CLOSED")

    def open(self) -> None:
        self._transition(CircuitState.OPEN)
        self._state.last_failure_time = self._clock()
