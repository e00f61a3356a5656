"""
Test utilities and fake objects for httpguard.

This module provides a recording transport, a controllable clock and a fake
sleep so interceptor behaviour can be tested without real HTTP requests or
real waiting.
"""

import asyncio

from httpguard.exceptions import TransportError
from httpguard.models import ResponseEnvelope
from httpguard.transport.base import BaseTransport


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Async sleep that records delays and returns immediately."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self.clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)

    @property
    def total(self) -> float:
        return sum(self.delays)


def make_response(status=200, body=b"OK", headers=None, request=None) -> ResponseEnvelope:
    return ResponseEnvelope(
        status=status,
        status_text="OK" if status < 400 else "Error",
        headers=headers or {"content-type": "text/plain"},
        body=body,
        request=request,
    )


class MockTransport(BaseTransport):
    """Mock transport for testing."""

    def __init__(self, handler=None):
        """
        Initialize mock transport.

        Args:
            handler: Optional sync or async function taking the descriptor and
                returning a ResponseEnvelope, a status code, or raising.
                If not provided, every call returns 200 OK.
        """
        self.handler = handler
        self.request_calls = []
        self.closed = False

    @property
    def request_count(self):
        """Number of requests made to this transport."""
        return len(self.request_calls)

    async def send(self, descriptor):
        self.request_calls.append(descriptor)
        if self.handler is None:
            return make_response(request=descriptor)

        result = self.handler(descriptor)
        if asyncio.iscoroutine(result):
            result = await result
        if isinstance(result, int):
            return make_response(status=result, request=descriptor)
        if result.request is None:
            result.request = descriptor
        return result

    async def close(self):
        """Mock close method."""
        self.closed = True


class Sequence:
    """Handler returning queued outcomes in order; exceptions are raised."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)

    def __call__(self, descriptor):
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return make_response(status=outcome, request=descriptor)
        return outcome


def network_error(message="connection refused"):
    return TransportError(message)
