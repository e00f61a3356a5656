"""
Request conditions for conditional interceptors.

A condition is a predicate over a RequestDescriptor. Every built-in returns a
:class:`Condition`, which can be combined with ``&``, ``|`` and ``~`` or with
the :func:`and_`, :func:`or_` and :func:`not_` helpers::

    api_get = method_matches("GET") & url_matches("/api/")
    client.use_conditional("cache", api_get, max_age=60)

Combinators short-circuit, and a child predicate that raises is logged and
counted as ``False`` so one broken condition never fails a request.
"""

import fnmatch
import json
import logging
import os
import re
from datetime import datetime
from typing import Any
from typing import Callable
from typing import Iterable
from typing import Mapping
from typing import Optional
from typing import Pattern
from typing import Union
from urllib.parse import urlsplit

from .models import RequestDescriptor

logger = logging.getLogger("httpguard.conditions")

Predicate = Callable[[RequestDescriptor], bool]
UrlPattern = Union[str, Pattern[str]]


class Condition:
    """Named, composable request predicate."""

    def __init__(self, predicate: Predicate, name: Optional[str] = None):
        self._predicate = predicate
        self.name = name or getattr(predicate, "__name__", "condition")

    def __call__(self, descriptor: RequestDescriptor) -> bool:
        return bool(self._predicate(descriptor))

    def __and__(self, other: Predicate) -> "Condition":
        return and_(self, other)

    def __or__(self, other: Predicate) -> "Condition":
        return or_(self, other)

    def __invert__(self) -> "Condition":
        return not_(self)

    def __repr__(self) -> str:
        return f"Condition({self.name})"


def _safe(predicate: Predicate, descriptor: RequestDescriptor) -> bool:
    try:
        return bool(predicate(descriptor))
    except Exception as e:
        name = getattr(predicate, "name", getattr(predicate, "__name__", predicate))
        logger.warning(f"Condition {name} failed, treating as False: {e}")
        return False


def evaluate(condition: Optional[Predicate], descriptor: RequestDescriptor) -> bool:
    """Evaluate ``condition`` for ``descriptor``; no condition means True."""
    if condition is None:
        return True
    return _safe(condition, descriptor)


def and_(*conditions: Predicate) -> Condition:
    def check(descriptor):
        return all(_safe(c, descriptor) for c in conditions)

    return Condition(check, "and(" + ", ".join(_names(conditions)) + ")")


def or_(*conditions: Predicate) -> Condition:
    def check(descriptor):
        return any(_safe(c, descriptor) for c in conditions)

    return Condition(check, "or(" + ", ".join(_names(conditions)) + ")")


def not_(condition: Predicate) -> Condition:
    def check(descriptor):
        try:
            return not condition(descriptor)
        except Exception as e:
            logger.warning(f"Condition {_names([condition])[0]} failed in not(): {e}")
            return False

    return Condition(check, f"not({_names([condition])[0]})")


def custom(predicate: Predicate, name: Optional[str] = None) -> Condition:
    return Condition(lambda descriptor: _safe(predicate, descriptor), name)


def _names(conditions: Iterable[Predicate]) -> list[str]:
    return [
        getattr(c, "name", None) or getattr(c, "__name__", repr(c)) for c in conditions
    ]


def _match_pattern(pattern: UrlPattern, url: str) -> bool:
    if isinstance(pattern, re.Pattern):
        return pattern.search(url) is not None
    if "*" in pattern:
        path = urlsplit(url).path
        return fnmatch.fnmatchcase(url, pattern) or fnmatch.fnmatchcase(path, pattern)
    return pattern in url


def url_matches(patterns: Union[UrlPattern, Iterable[UrlPattern]]) -> Condition:
    """
    Match the request URL against one or more patterns.

    A plain string is a substring match, a string containing ``*`` is a glob
    over the full URL or its path, and a compiled regex is searched.
    """
    if isinstance(patterns, (str, re.Pattern)):
        patterns = [patterns]
    patterns = list(patterns)

    def check(descriptor):
        url = descriptor.url or ""
        return any(_match_pattern(p, url) for p in patterns)

    return Condition(check, f"url_matches({patterns!r})")


def method_matches(methods: Union[str, Iterable[str]]) -> Condition:
    if isinstance(methods, str):
        methods = [methods]
    wanted = {m.upper() for m in methods}

    def check(descriptor):
        return (descriptor.method or "GET").upper() in wanted

    return Condition(check, f"method_matches({sorted(wanted)})")


def header_matches(headers: Mapping[str, Any]) -> Condition:
    """
    Every listed header must match. A value is compared exactly, searched
    when it is a compiled regex, or called when it is a callable.
    """

    def check(descriptor):
        for name, expected in headers.items():
            value = descriptor.get_header(name)
            if callable(expected) and not isinstance(expected, re.Pattern):
                if not expected(value):
                    return False
            elif isinstance(expected, re.Pattern):
                if value is None or expected.search(value) is None:
                    return False
            elif value != expected:
                return False
        return True

    return Condition(check, f"header_matches({list(headers)})")


def environment_matches(
    environments: Union[str, Iterable[str]], environment: Optional[str] = None
) -> Condition:
    """
    Match the running environment, resolved once at construction time from
    ``environment`` or GuardSettings (``HTTPGUARD_ENVIRONMENT``).
    """
    if isinstance(environments, str):
        environments = [environments]
    wanted = set(environments)
    if environment is None:
        from .config import GuardSettings

        environment = GuardSettings().environment
    current = environment

    def check(descriptor):
        return current in wanted

    return Condition(check, f"environment_matches({sorted(wanted)})")


def has_data_keys(keys: Union[str, Iterable[str]]) -> Condition:
    """True if *any* of ``keys`` is present in the request payload."""
    if isinstance(keys, str):
        keys = [keys]
    keys = list(keys)

    def check(descriptor):
        payload = descriptor.payload
        if isinstance(payload, (str, bytes, bytearray)):
            try:
                payload = json.loads(payload)
            except ValueError:
                return False
        if not isinstance(payload, Mapping):
            return False
        return any(key in payload for key in keys)

    return Condition(check, f"has_data_keys({keys})")


def is_file_upload() -> Condition:
    def check(descriptor):
        if descriptor.files:
            return True
        content_type = descriptor.get_header("Content-Type") or ""
        return "multipart/form-data" in content_type.lower()

    return Condition(check, "is_file_upload")


def _payload_size(descriptor: RequestDescriptor) -> int:
    size = 0
    payload = descriptor.payload
    if isinstance(payload, str):
        size += len(payload.encode("utf-8"))
    elif isinstance(payload, (bytes, bytearray)):
        size += len(payload)
    elif payload is not None:
        size += len(json.dumps(payload, default=str).encode("utf-8"))

    files = descriptor.files
    if isinstance(files, Mapping):
        files = files.values()
    for item in files or []:
        # (filename, content, ...) tuples or raw contents
        content = item[1] if isinstance(item, tuple) and len(item) > 1 else item
        if isinstance(content, (bytes, bytearray, str)):
            size += len(content)
        elif hasattr(content, "seek") and hasattr(content, "tell"):
            position = content.tell()
            content.seek(0, os.SEEK_END)
            size += content.tell()
            content.seek(position)
    return size


def request_size_below(max_bytes: int) -> Condition:
    def check(descriptor):
        if descriptor.payload is None and not descriptor.files:
            return True
        return _payload_size(descriptor) < max_bytes

    return Condition(check, f"request_size_below({max_bytes})")


def time_range(
    start_hour: int, end_hour: int, now: Callable[[], datetime] = datetime.now
) -> Condition:
    """
    Inclusive hour-of-day range. ``start_hour > end_hour`` wraps midnight,
    e.g. ``time_range(22, 6)`` is true from 22:00 to 06:59.
    """

    def check(descriptor):
        hour = now().hour
        if start_hour <= end_hour:
            return start_hour <= hour <= end_hour
        return hour >= start_hour or hour <= end_hour

    return Condition(check, f"time_range({start_hour}, {end_hour})")


def is_authenticated(
    get_auth_status: Optional[Callable[[], bool]] = None, token_store: Any = None
) -> Condition:
    """
    Delegates to ``get_auth_status`` or, failing that, to the token store's
    ``is_authenticated``. With neither available the request is treated as
    unauthenticated.
    """
    if get_auth_status is None and token_store is not None:
        get_auth_status = token_store.is_authenticated
    status = get_auth_status

    def check(descriptor):
        if status is None:
            return False
        return bool(status())

    return Condition(check, "is_authenticated")


DEFAULT_PUBLIC_PATHS = ["/login", "/register", "/health", "/public"]


def is_public_endpoint(paths: Optional[Iterable[str]] = None) -> Condition:
    paths = list(paths) if paths is not None else list(DEFAULT_PUBLIC_PATHS)

    def check(descriptor):
        url = descriptor.url or ""
        return any(_match_pattern(p, url) for p in paths)

    return Condition(check, "is_public_endpoint")


def is_online(connectivity: Optional[Callable[[], bool]] = None) -> Condition:
    """Injected connectivity probe; without one the client is assumed online."""

    def check(descriptor):
        return True if connectivity is None else bool(connectivity())

    return Condition(check, "is_online")


class CommonConditions:
    """Ready-made conditions used by the preset groups."""

    @staticmethod
    def is_development(environment: Optional[str] = None) -> Condition:
        return environment_matches("development", environment)

    @staticmethod
    def is_production(environment: Optional[str] = None) -> Condition:
        return environment_matches("production", environment)

    is_get_request = method_matches("GET")
    is_post_request = method_matches("POST")
    is_write_request = method_matches(["POST", "PUT", "PATCH", "DELETE"])
    is_api_call = url_matches("/api/")
    is_auth_call = url_matches(["/auth/", "/login", "/logout", "/refresh"])
    is_public_route = is_public_endpoint()
    is_file_upload = is_file_upload()
    is_small_request = request_size_below(100 * 1024)
    is_online = is_online()
    is_business_hours = time_range(9, 17)
    is_night_time = time_range(22, 6)

    @staticmethod
    def requires_auth(
        get_auth_status: Optional[Callable[[], bool]] = None, token_store: Any = None
    ) -> Condition:
        return and_(
            is_authenticated(get_auth_status, token_store), not_(is_public_endpoint())
        )
