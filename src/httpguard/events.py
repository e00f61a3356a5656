import logging
from collections import defaultdict
from typing import Callable

from .models import LifecycleEvent

logger = logging.getLogger("httpguard.events")

ENABLED = "interceptor:enabled"
REMOVED = "interceptor:removed"
ERROR = "interceptor:error"


class LifecycleEvents:
    """
    Minimal event emitter for interceptor lifecycle notifications.

    Listeners are called synchronously in subscription order. A listener
    that raises is logged and skipped so it cannot break registry
    bookkeeping.
    """

    def __init__(self):
        self._listeners: dict[str, list[Callable[[LifecycleEvent], None]]] = (
            defaultdict(list)
        )

    def on(self, event: str, listener: Callable[[LifecycleEvent], None]) -> None:
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Callable[[LifecycleEvent], None]) -> None:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def emit(self, event: str, payload: LifecycleEvent) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"Listener for '{event}' failed: {e}")
