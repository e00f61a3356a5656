"""
Request cancellation utilities.

A cancel signal is a plain ``asyncio.Event`` stored on the request
descriptor. Setting it aborts the in-flight transport call of that request
only; shared work (deduplicated calls) is protected with ``asyncio.shield``
by the caller.
"""

import asyncio
from typing import Any
from typing import Awaitable
from typing import Optional

from .exceptions import RequestCancelledError


async def wait_cancellable(
    awaitable: Awaitable[Any],
    signal: Optional[asyncio.Event],
    descriptor: Any = None,
) -> Any:
    """
    Await ``awaitable`` unless ``signal`` fires first.

    Raises:
        RequestCancelledError: if the signal is (or becomes) set before the
            awaitable completes. The awaitable is cancelled in that case.
    """
    if signal is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if signal.is_set():
        task.cancel()
        raise RequestCancelledError(request=descriptor)

    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()

    if task in done:
        return task.result()
    raise RequestCancelledError(request=descriptor)


class CancellationManager:
    """
    Keyed cancel signals, e.g. one per search box or per resource.

    Creating a signal for a key that already has one cancels the old one,
    which is the usual "latest request wins" pattern.
    """

    def __init__(self):
        self._signals: dict[str, asyncio.Event] = {}

    def create(self, key: str) -> asyncio.Event:
        self.cancel(key)
        signal = asyncio.Event()
        self._signals[key] = signal
        return signal

    def cancel(self, key: str) -> None:
        signal = self._signals.pop(key, None)
        if signal is not None:
            signal.set()

    def cancel_all(self) -> None:
        for signal in self._signals.values():
            signal.set()
        self._signals.clear()

    def get_signal(self, key: str) -> Optional[asyncio.Event]:
        return self._signals.get(key)
