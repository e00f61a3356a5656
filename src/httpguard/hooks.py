"""
Attachable hook chains around the transport call.

HookManager plays the role of the transport's interceptor lists: hooks are
attached with ``use`` and detached with ``eject`` by the integer id ``use``
returned. The registry is the only intended caller; application code goes
through GuardedClient / InterceptorRegistry so bookkeeping stays consistent.

StageChain holds the protection stages that wrap the dispatch itself and
keeps them sorted by their ``order`` attribute.
"""

import inspect
from dataclasses import dataclass
from typing import Any
from typing import Callable
from typing import Optional

from .models import RequestDescriptor
from .models import ResponseEnvelope


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class Hook:
    on_fulfilled: Optional[Callable[..., Any]] = None
    on_rejected: Optional[Callable[..., Any]] = None


class HookManager:
    """
    Ordered collection of hooks keyed by attachment id.
    """

    def __init__(self):
        self._hooks: dict[int, Hook] = {}
        self._next_id = 0

    def use(
        self,
        on_fulfilled: Optional[Callable[..., Any]] = None,
        on_rejected: Optional[Callable[..., Any]] = None,
    ) -> int:
        """Add a hook and return its attachment id."""
        hook_id = self._next_id
        self._next_id += 1
        self._hooks[hook_id] = Hook(on_fulfilled, on_rejected)
        return hook_id

    def eject(self, hook_id: int) -> None:
        """Remove a hook. Raises KeyError for an unknown id."""
        if hook_id not in self._hooks:
            raise KeyError(f"No hook attached with id {hook_id}")
        del self._hooks[hook_id]

    def clear(self) -> None:
        self._hooks.clear()

    def ids(self) -> list[int]:
        return list(self._hooks)

    def __len__(self) -> int:
        return len(self._hooks)

    async def process_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        """
        Process request through all request hooks.
        """
        current = descriptor
        for hook in list(self._hooks.values()):
            if hook.on_fulfilled is None:
                continue
            result = await maybe_await(hook.on_fulfilled(current))
            if result is not None:
                current = result
        return current

    async def process_response(
        self,
        descriptor: RequestDescriptor,
        response: Optional[ResponseEnvelope] = None,
        error: Optional[BaseException] = None,
    ) -> ResponseEnvelope:
        """
        Fold the dispatch outcome through the response hooks.

        A response flows through ``on_fulfilled`` hooks; an error is offered
        to the following ``on_rejected`` hooks, any of which may recover by
        returning a response. An error nobody recovers from is re-raised.
        """
        for hook in list(self._hooks.values()):
            if error is None:
                if hook.on_fulfilled is None:
                    continue
                try:
                    result = await maybe_await(hook.on_fulfilled(response))
                except Exception as exc:
                    error = exc
                else:
                    if result is not None:
                        response = result
            else:
                if hook.on_rejected is None:
                    continue
                try:
                    response = await maybe_await(hook.on_rejected(error, descriptor))
                    error = None
                except Exception as exc:
                    error = exc

        if error is not None:
            raise error
        return response


class StageChain:
    """
    Protection stages keyed by attachment id, iterated in pipeline order.

    ``version`` changes on every attach/detach so the client knows when its
    composed handler is stale.
    """

    def __init__(self):
        self._stages: dict[int, Any] = {}
        self._next_id = 0
        self.version = 0

    def use(self, stage: Any) -> int:
        stage_id = self._next_id
        self._next_id += 1
        self._stages[stage_id] = stage
        self.version += 1
        return stage_id

    def eject(self, stage_id: int) -> None:
        if stage_id not in self._stages:
            raise KeyError(f"No stage attached with id {stage_id}")
        del self._stages[stage_id]
        self.version += 1

    def clear(self) -> None:
        self._stages.clear()
        self.version += 1

    def ids(self) -> list[int]:
        return list(self._stages)

    def ordered(self) -> list[Any]:
        # sorted() is stable, so equal orders keep attachment order
        return sorted(self._stages.values(), key=lambda s: getattr(s, "order", 100))

    def __len__(self) -> int:
        return len(self._stages)
