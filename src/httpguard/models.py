"""
Core data types shared by the transport, the hook chains and the
protection stages.

RequestDescriptor is treated as immutable by callers: interceptors that need
a different request build one with ``copy()``. The ``metadata`` bag is the
one thing that is shared between copies, so interceptors can pass state
forward (attempt counts, start timestamps, refresh markers).
"""

import asyncio
import copy as _copy
import json as _json
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any
from typing import Callable
from typing import Optional


@dataclass
class RequestDescriptor:
    method: str = "GET"
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    params: Optional[dict[str, Any]] = None
    json: Any = None
    data: Any = None
    files: Any = None
    timeout: Optional[float] = None
    cancel_signal: Optional[asyncio.Event] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def copy(self, **changes: Any) -> "RequestDescriptor":
        """Return a modified copy; headers are copied, metadata is shared."""
        changes.setdefault("headers", dict(self.headers))
        return replace(self, **changes)

    @property
    def payload(self) -> Any:
        return self.json if self.json is not None else self.data

    @property
    def cancelled(self) -> bool:
        return self.cancel_signal is not None and self.cancel_signal.is_set()

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


@dataclass
class ResponseEnvelope:
    """
    Normalized result of a dispatched call, independent of the HTTP backend.

    Flags set by interceptors:
        served_from_cache: returned by the response cache without dispatch
        deduplicated: shared result of an identical in-flight request
        retry_attempt: attempt number that produced this response
    """

    status: int
    status_text: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    request: Optional[RequestDescriptor] = None
    served_from_cache: bool = False
    deduplicated: bool = False
    retry_attempt: Optional[int] = None
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        if isinstance(self.body, (bytes, bytearray)):
            return bytes(self.body).decode("utf-8", errors="replace")
        if self.body is None:
            return ""
        if isinstance(self.body, str):
            return self.body
        return _json.dumps(self.body)

    def json(self) -> Any:
        if isinstance(self.body, (dict, list)):
            return self.body
        return _json.loads(self.text)

    def snapshot(self, **flags: Any) -> "ResponseEnvelope":
        """
        Copy of this response that shares nothing mutable with it.

        The originating descriptor is kept by reference.
        """
        return replace(
            self,
            headers=dict(self.headers),
            body=_copy.deepcopy(self.body),
            extras=_copy.deepcopy(self.extras),
            **flags,
        )


class InterceptorKind(str, Enum):
    PRE_DISPATCH = "pre_dispatch"
    POST_DISPATCH = "post_dispatch"
    ERROR = "error"
    STAGE = "stage"


@dataclass
class InterceptorRegistration:
    name: str
    kind: InterceptorKind
    attachment_id: Optional[int] = None
    enabled: bool = False
    config: Any = None
    last_enabled: Optional[datetime] = None


@dataclass
class InterceptorGroup:
    name: str
    members: list[str] = field(default_factory=list)
    enabled: bool = False


@dataclass
class ConditionalBinding:
    name: str
    kind: InterceptorKind
    predicate: Callable[[RequestDescriptor], bool]
    on_fulfilled: Optional[Callable[..., Any]] = None
    on_rejected: Optional[Callable[..., Any]] = None


@dataclass
class LifecycleEvent:
    name: str
    timestamp: datetime
    kind: Optional[InterceptorKind] = None
    config: Any = None
    operation: Optional[str] = None
    error: Optional[str] = None
