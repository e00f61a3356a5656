"""
Unit tests for InterceptorRegistry.

This module tests:
- Idempotent attach and tolerant detach
- Named definitions enabled and disabled by name
- Lifecycle events
- Conditional bindings
- Status introspection
"""

from unittest.mock import MagicMock

import pytest

from httpguard.events import ENABLED
from httpguard.events import ERROR
from httpguard.events import REMOVED
from httpguard.exceptions import ConfigurationError
from httpguard.exceptions import RegistryOperationError
from httpguard.hooks import StageChain
from httpguard.models import InterceptorKind
from httpguard.models import RequestDescriptor
from httpguard.registry import InterceptorRegistry


class HeaderInterceptor:
    def __init__(self, config):
        self.config = config or {}

    async def on_request(self, descriptor):
        headers = dict(descriptor.headers)
        headers["X-Tag"] = self.config.get("tag", "default")
        return descriptor.copy(headers=headers)


class Stage:
    order = 30

    def __init__(self, config=None):
        self.config = config

    async def handle(self, descriptor, call_next):
        return await call_next(descriptor)


class Everything(Stage):
    async def on_request(self, descriptor):
        return descriptor

    async def on_response(self, response):
        return response

    async def on_error(self, error, descriptor):
        raise error


@pytest.fixture
def registry():
    return InterceptorRegistry()


def test_attach_is_idempotent_per_name_and_kind(registry):
    hook = lambda d: d
    first = registry.attach("tag", InterceptorKind.PRE_DISPATCH, lambda cfg: hook)
    second = registry.attach("tag", InterceptorKind.PRE_DISPATCH, lambda cfg: hook)

    assert first != second
    assert registry.request_hooks.ids() == [second]
    assert len(registry.request_hooks) == 1


def test_detach_inactive_warns_and_returns_false(registry, caplog):
    assert registry.detach("missing", InterceptorKind.PRE_DISPATCH) is False
    assert "is not active" in caplog.text


def test_detach_failure_raises_and_emits_error(registry):
    errors = []
    registry.on(ERROR, errors.append)
    registry.attach("tag", InterceptorKind.PRE_DISPATCH, lambda cfg: (lambda d: d))
    registry.attach("other", InterceptorKind.PRE_DISPATCH, lambda cfg: (lambda d: d))
    # simulate the chain losing the hook behind the registry's back
    registry.request_hooks.clear()

    with pytest.raises(RegistryOperationError) as exc_info:
        registry.detach("tag", InterceptorKind.PRE_DISPATCH)

    assert exc_info.value.name == "tag"
    assert exc_info.value.operation == "remove"
    assert "Failed to remove interceptor 'tag'" in str(exc_info.value)
    assert errors[0].name == "tag"
    assert errors[0].operation == "remove"
    assert registry.status()["other"]["enabled"]


def test_attach_failure_is_wrapped(registry):
    def factory(cfg):
        raise ValueError("bad config")

    with pytest.raises(RegistryOperationError) as exc_info:
        registry.attach("broken", InterceptorKind.STAGE, factory)
    assert exc_info.value.operation == "attach"
    assert not registry.is_enabled("broken")


def test_lifecycle_events(registry):
    enabled, removed = MagicMock(), MagicMock()
    registry.on(ENABLED, enabled)
    registry.on(REMOVED, removed)

    registry.attach("tag", InterceptorKind.PRE_DISPATCH, lambda cfg: (lambda d: d), {"a": 1})
    registry.detach("tag", InterceptorKind.PRE_DISPATCH)

    event = enabled.call_args.args[0]
    assert event.name == "tag"
    assert event.kind is InterceptorKind.PRE_DISPATCH
    assert event.config == {"a": 1}
    assert event.timestamp is not None
    assert removed.call_args.args[0].name == "tag"


def test_failing_listener_does_not_break_registry(registry):
    def listener(event):
        raise RuntimeError("listener bug")

    registry.on(ENABLED, listener)
    registry.attach("tag", InterceptorKind.PRE_DISPATCH, lambda cfg: (lambda d: d))
    assert registry.is_enabled("tag")


@pytest.mark.asyncio
async def test_enable_merges_config_and_attaches_by_capability(registry):
    registry.define("tag", HeaderInterceptor, {"tag": "base", "other": 1})
    instance = registry.enable("tag", {"tag": "custom"})

    assert instance.config == {"tag": "custom", "other": 1}
    assert registry.is_enabled("tag")
    assert registry.status()["tag"]["kinds"] == ["pre_dispatch"]

    result = await registry.request_hooks.process_request(RequestDescriptor())
    assert result.headers["X-Tag"] == "custom"


def test_enable_attaches_every_supported_kind(registry):
    registry.define("all", Everything)
    registry.enable("all")

    status = registry.status()["all"]
    assert set(status["kinds"]) == {"pre_dispatch", "post_dispatch", "error", "stage"}
    assert len(registry.response_hooks) == 2
    assert len(registry.stages) == 1


def test_re_enable_replaces_previous_registration(registry):
    registry.define("stage", Stage)
    first = registry.enable("stage", {"n": 1})
    second = registry.enable("stage", {"n": 2})

    assert first is not second
    assert len(registry.stages) == 1
    assert registry.instance("stage") is second


def test_disable(registry, caplog):
    registry.define("stage", Stage)
    registry.enable("stage")
    assert registry.disable("stage") is True
    assert not registry.is_enabled("stage")
    assert registry.instance("stage") is None
    assert len(registry.stages) == 0

    assert registry.disable("stage") is False
    assert "is not active" in caplog.text


def test_enable_unknown_name(registry):
    with pytest.raises(ConfigurationError):
        registry.enable("nope")


def test_factory_error_is_wrapped(registry):
    def factory(cfg):
        raise TypeError("unexpected keyword")

    registry.define("broken", factory)
    with pytest.raises(RegistryOperationError) as exc_info:
        registry.enable("broken")
    assert exc_info.value.operation == "enable"


@pytest.mark.asyncio
async def test_enable_with_condition(registry):
    registry.define("tag", HeaderInterceptor, {"tag": "api"})
    registry.enable("tag", condition=lambda d: "/api/" in d.url)

    api = await registry.request_hooks.process_request(RequestDescriptor(url="/api/x"))
    other = await registry.request_hooks.process_request(RequestDescriptor(url="/web/x"))
    assert api.headers == {"X-Tag": "api"}
    assert other.headers == {}
    assert registry.status()["tag"]["conditional"]


@pytest.mark.asyncio
async def test_conditional_binding_request(registry):
    seen = []

    def record(descriptor):
        seen.append(descriptor.url)
        return descriptor

    registry.add_conditional_binding(
        "audit", InterceptorKind.PRE_DISPATCH, lambda d: d.method == "POST", record
    )
    await registry.request_hooks.process_request(RequestDescriptor(method="GET", url="/a"))
    await registry.request_hooks.process_request(RequestDescriptor(method="POST", url="/b"))

    assert seen == ["/b"]
    assert "audit" in registry.known_names()
    assert registry.status()["audit"]["conditional"]


@pytest.mark.asyncio
async def test_conditional_binding_with_raising_predicate_is_skipped(registry):
    def predicate(descriptor):
        raise RuntimeError("broken")

    hook = MagicMock(side_effect=lambda d: d)
    registry.add_conditional_binding("audit", InterceptorKind.PRE_DISPATCH, predicate, hook)
    await registry.request_hooks.process_request(RequestDescriptor())
    hook.assert_not_called()


def test_remove_and_clear_conditional_bindings(registry):
    registry.add_conditional_binding(
        "a", InterceptorKind.PRE_DISPATCH, lambda d: True, lambda d: d
    )
    registry.add_conditional_binding(
        "b", InterceptorKind.POST_DISPATCH, lambda d: True, lambda r: r, lambda e, d: None
    )
    assert registry.remove_conditional_binding("a") is True
    assert registry.remove_conditional_binding("a") is False
    assert "a" not in registry.known_names()

    registry.clear_conditional_bindings()
    assert registry.conditional_bindings() == {}
    assert len(registry.request_hooks) == 0
    assert len(registry.response_hooks) == 0


def test_conditional_binding_can_be_disabled_and_re_enabled(registry):
    registry.add_conditional_binding(
        "a", InterceptorKind.PRE_DISPATCH, lambda d: True, lambda d: d
    )
    registry.disable("a")
    assert not registry.is_enabled("a")
    registry.enable("a")
    assert registry.is_enabled("a")


def test_active_and_reset(registry):
    registry.define("stage", Stage)
    registry.define("tag", HeaderInterceptor)
    registry.enable("stage")
    registry.enable("tag")

    active = registry.active()
    assert [name for name, _ in active["stage"]] == ["stage"]
    assert [name for name, _ in active["pre_dispatch"]] == ["tag"]

    registry.reset()
    assert all(entries == [] for entries in registry.active().values())
    assert registry.known_names() == {"stage", "tag"}


def test_status_reports_config_and_timestamps(registry):
    registry.define("stage", Stage, {"n": 1})
    registry.enable("stage")
    status = registry.status()["stage"]
    assert status["enabled"]
    assert status["config"] == {"n": 1}
    assert status["has_config"]
    assert status["last_enabled"] is not None
    assert set(status["attachment_ids"]) == {"stage"}

    registry.disable("stage")
    status = registry.status()["stage"]
    assert not status["enabled"]
    assert status["last_enabled"] is not None


class RefusingStageChain(StageChain):
    def use(self, stage):
        raise RuntimeError("stage chain is frozen")


@pytest.mark.asyncio
async def test_failed_enable_rolls_back_attached_kinds():
    registry = InterceptorRegistry(stages=RefusingStageChain())
    registry.define("all", Everything)

    with pytest.raises(RegistryOperationError) as exc_info:
        registry.enable("all")

    assert exc_info.value.operation == "attach"
    assert not registry.is_enabled("all")
    assert registry.instance("all") is None
    assert len(registry.request_hooks) == 0
    assert len(registry.response_hooks) == 0
    assert registry.status()["all"]["kinds"] == []
    assert all(entries == [] for entries in registry.active().values())


def test_failed_re_enable_drops_previous_instance():
    chain = StageChain()
    registry = InterceptorRegistry(stages=chain)
    registry.define("all", Everything)
    registry.enable("all")

    def refuse(stage):
        raise RuntimeError("stage chain is frozen")

    chain.use = refuse
    with pytest.raises(RegistryOperationError):
        registry.enable("all", {"n": 2})

    assert not registry.is_enabled("all")
    assert registry.instance("all") is None
    assert len(registry.request_hooks) == 0
