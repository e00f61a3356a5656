"""
Explicit ordered composition of protection stages around the transport call.

A stage is any object with ``async handle(descriptor, call_next)`` and an
``order`` attribute. ``compose`` folds the stages (lowest order outermost)
around the terminal call once; the client only recomposes when the stage
chain changes.
"""

from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Sequence

from .models import RequestDescriptor
from .models import ResponseEnvelope

Handler = Callable[[RequestDescriptor], Awaitable[ResponseEnvelope]]

RATE_LIMIT_ORDER = 10
CIRCUIT_BREAKER_ORDER = 20
DEDUP_ORDER = 30
CACHE_ORDER = 40
RETRY_ORDER = 50
CUSTOM_ORDER = 100


def compose(stages: Sequence[Any], terminal: Handler) -> Handler:
    handler = terminal
    for stage in reversed(list(stages)):
        handler = _bind(stage, handler)
    return handler


def _bind(stage: Any, call_next: Handler) -> Handler:
    async def handler(descriptor: RequestDescriptor) -> ResponseEnvelope:
        return await stage.handle(descriptor, call_next)

    return handler


class ConditionalStage:
    """
    Runs the wrapped stage only for requests matching ``predicate``;
    other requests skip straight to the next stage.
    """

    def __init__(self, stage: Any, predicate: Callable[[RequestDescriptor], bool]):
        self.stage = stage
        self.predicate = predicate
        self.order = getattr(stage, "order", CUSTOM_ORDER)

    async def handle(
        self, descriptor: RequestDescriptor, call_next: Handler
    ) -> ResponseEnvelope:
        if self.predicate(descriptor):
            return await self.stage.handle(descriptor, call_next)
        return await call_next(descriptor)

    def __getattr__(self, item):
        return getattr(self.stage, item)
