"""
In-flight request coalescing.

The first caller for a key starts the shared call as a task; callers arriving
while it is pending subscribe to the same task. Each subscriber waits on a
shield of the task, racing only its own cancel signal, so one caller giving
up never cancels the call for the others. The shared task is cancelled only
when every subscriber has gone.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable
from typing import Optional

from .cancellation import wait_cancellable
from .models import RequestDescriptor
from .models import ResponseEnvelope
from .pipeline import DEDUP_ORDER
from .pipeline import Handler

logger = logging.getLogger("httpguard.dedup")


@dataclass
class DedupeEntry:
    key: str
    task: asyncio.Task
    subscribers: int = 0


def default_dedupe_key(descriptor: RequestDescriptor) -> str:
    params = json.dumps(descriptor.params or {}, sort_keys=True, default=str)
    payload = descriptor.payload
    if isinstance(payload, (bytes, bytearray)):
        body = bytes(payload).decode("utf-8", errors="replace")
    else:
        body = json.dumps(payload, sort_keys=True, default=str)
    return f"{descriptor.method.upper()}::{descriptor.url}::{params}::{body}"


def _consume(task: asyncio.Task) -> None:
    # subscribers re-raise the error; this only silences the loop warning
    if not task.cancelled():
        task.exception()


class Deduplicator:
    order = DEDUP_ORDER

    def __init__(
        self, key_generator: Optional[Callable[[RequestDescriptor], str]] = None
    ):
        self.key_generator = key_generator or default_dedupe_key
        self._pending: dict[str, DedupeEntry] = {}

    def key_for(self, descriptor: RequestDescriptor) -> str:
        return descriptor.metadata.get("dedupe_key") or self.key_generator(descriptor)

    async def handle(
        self, descriptor: RequestDescriptor, call_next: Handler
    ) -> ResponseEnvelope:
        key = self.key_for(descriptor)
        entry = self._pending.get(key)
        leader = entry is None

        if leader:
            entry = self._start(key, descriptor, call_next)
        else:
            logger.debug(f"Joining in-flight request: {key}")

        entry.subscribers += 1
        try:
            response = await wait_cancellable(
                asyncio.shield(entry.task), descriptor.cancel_signal, descriptor
            )
        finally:
            entry.subscribers -= 1
            if entry.subscribers == 0 and not entry.task.done():
                entry.task.cancel()

        if leader:
            return response
        return response.snapshot(deduplicated=True)

    def _start(
        self, key: str, descriptor: RequestDescriptor, call_next: Handler
    ) -> DedupeEntry:
        # the shared call belongs to no single caller's cancel signal
        shared = descriptor.copy(cancel_signal=None)
        entry = DedupeEntry(key=key, task=asyncio.ensure_future(call_next(shared)))

        def settle(task: asyncio.Task) -> None:
            # also runs when the task is cancelled before it ever started
            if self._pending.get(key) is entry:
                del self._pending[key]
            _consume(task)

        entry.task.add_done_callback(settle)
        self._pending[key] = entry
        return entry

    def stats(self) -> dict:
        return {"pending_requests": len(self._pending), "keys": list(self._pending)}

    def clear(self) -> None:
        """Forget pending entries; calls already in flight still settle."""
        self._pending.clear()
