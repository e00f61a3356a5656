"""
Interceptor registry and lifecycle management.

The registry is the only code that attaches to or ejects from the hook
chains and the stage chain. It keeps exactly one live registration per
(name, kind): attaching a name that is already live detaches the previous
registration first, so re-configuring an interceptor never duplicates it.

Interceptors are usually *defined* once with a factory and then enabled and
disabled by name::

    registry.define("rate_limit", lambda cfg: RateLimiter(**cfg), {"max_requests": 10})
    registry.enable("rate_limit", {"window": 1.0})
    registry.disable("rate_limit")

The object returned by a factory decides which chains it joins: an
``on_request`` method becomes a pre-dispatch hook, ``on_response`` a
post-dispatch hook, ``on_error`` an error hook and ``handle`` a pipeline
stage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from typing import Callable
from typing import Optional

from .conditions import evaluate
from .events import ENABLED
from .events import ERROR
from .events import REMOVED
from .events import LifecycleEvents
from .exceptions import ConfigurationError
from .exceptions import RegistryOperationError
from .hooks import HookManager
from .hooks import StageChain
from .hooks import maybe_await
from .models import ConditionalBinding
from .models import InterceptorKind
from .models import InterceptorRegistration
from .models import LifecycleEvent
from .models import RequestDescriptor
from .pipeline import ConditionalStage

logger = logging.getLogger("httpguard.registry")

Factory = Callable[[Any], Any]


@dataclass
class InterceptorDefinition:
    name: str
    factory: Factory
    default_config: Any = None


def _merge(default: Any, config: Any) -> Any:
    if isinstance(default, dict) and isinstance(config, dict):
        return {**default, **config}
    return config if config is not None else default


def _guard_request(fn, condition):
    async def hook(descriptor: RequestDescriptor):
        if not evaluate(condition, descriptor):
            return descriptor
        return await maybe_await(fn(descriptor))

    return hook


def _guard_response(fn, condition):
    async def hook(response):
        if not evaluate(condition, response.request):
            return response
        return await maybe_await(fn(response))

    return hook


def _guard_error(fn, condition):
    async def hook(error, descriptor):
        if not evaluate(condition, descriptor):
            raise error
        return await maybe_await(fn(error, descriptor))

    return hook


class InterceptorRegistry:
    def __init__(
        self,
        request_hooks: Optional[HookManager] = None,
        response_hooks: Optional[HookManager] = None,
        stages: Optional[StageChain] = None,
        events: Optional[LifecycleEvents] = None,
    ):
        self.request_hooks = request_hooks if request_hooks is not None else HookManager()
        self.response_hooks = response_hooks if response_hooks is not None else HookManager()
        self.stages = stages if stages is not None else StageChain()
        self.events = events if events is not None else LifecycleEvents()

        self._definitions: dict[str, InterceptorDefinition] = {}
        self._registrations: dict[tuple[str, InterceptorKind], InterceptorRegistration] = {}
        self._bindings: dict[str, ConditionalBinding] = {}
        self._instances: dict[str, Any] = {}
        self._conditions: dict[str, Any] = {}

    # events

    def on(self, event: str, listener: Callable[[LifecycleEvent], None]) -> None:
        self.events.on(event, listener)

    def off(self, event: str, listener: Callable[[LifecycleEvent], None]) -> None:
        self.events.off(event, listener)

    def _emit(self, event: str, name: str, **fields: Any) -> None:
        self.events.emit(
            event, LifecycleEvent(name=name, timestamp=datetime.now(), **fields)
        )

    # low-level attach / detach

    def _use(self, kind: InterceptorKind, handler: Any) -> int:
        if kind is InterceptorKind.PRE_DISPATCH:
            return self.request_hooks.use(handler)
        if kind is InterceptorKind.POST_DISPATCH:
            if isinstance(handler, tuple):
                return self.response_hooks.use(*handler)
            return self.response_hooks.use(handler)
        if kind is InterceptorKind.ERROR:
            return self.response_hooks.use(None, handler)
        return self.stages.use(handler)

    def _eject(self, kind: InterceptorKind, attachment_id: int) -> None:
        if kind is InterceptorKind.PRE_DISPATCH:
            self.request_hooks.eject(attachment_id)
        elif kind is InterceptorKind.STAGE:
            self.stages.eject(attachment_id)
        else:
            self.response_hooks.eject(attachment_id)

    def attach(
        self, name: str, kind: InterceptorKind, factory: Factory, config: Any = None
    ) -> int:
        """
        Attach ``factory(config)`` under (name, kind) and return its id.

        A live registration for the same (name, kind) is detached first.
        """
        kind = InterceptorKind(kind)
        registration = self._registrations.get((name, kind))
        if registration is not None and registration.attachment_id is not None:
            self.detach(name, kind)

        try:
            handler = factory(config)
            attachment_id = self._use(kind, handler)
        except Exception as e:
            self._emit(ERROR, name, kind=kind, operation="attach", error=str(e))
            raise RegistryOperationError(name, "attach", e) from e

        self._registrations[(name, kind)] = InterceptorRegistration(
            name=name,
            kind=kind,
            attachment_id=attachment_id,
            enabled=True,
            config=config,
            last_enabled=datetime.now(),
        )
        logger.debug(f"Attached {kind.value} interceptor '{name}' as #{attachment_id}")
        self._emit(ENABLED, name, kind=kind, config=config)
        return attachment_id

    def detach(self, name: str, kind: InterceptorKind) -> bool:
        """
        Detach (name, kind). Returns False, with a warning, if it is not live.

        Raises:
            RegistryOperationError: if the chain refuses to eject the hook.
        """
        kind = InterceptorKind(kind)
        registration = self._registrations.get((name, kind))
        if registration is None or registration.attachment_id is None:
            logger.warning(f"{kind.value} interceptor '{name}' is not active")
            return False

        try:
            self._eject(kind, registration.attachment_id)
        except Exception as e:
            self._emit(ERROR, name, kind=kind, operation="remove", error=str(e))
            raise RegistryOperationError(name, "remove", e) from e

        registration.attachment_id = None
        registration.enabled = False
        logger.debug(f"Detached {kind.value} interceptor '{name}'")
        self._emit(REMOVED, name, kind=kind)
        return True

    # named definitions

    def define(self, name: str, factory: Factory, default_config: Any = None) -> None:
        self._definitions[name] = InterceptorDefinition(name, factory, default_config)

    def is_defined(self, name: str) -> bool:
        return name in self._definitions

    def known_names(self) -> set[str]:
        return set(self._definitions) | set(self._bindings)

    def enable(self, name: str, config: Any = None, condition: Any = None) -> Any:
        """
        Build the named interceptor and attach it under every kind it supports.

        ``config`` is merged over the definition's default config. With a
        ``condition``, the interceptor only acts on matching requests.
        Returns the interceptor object.
        """
        if name in self._bindings and name not in self._definitions:
            self._attach_binding(self._bindings[name])
            return self._bindings[name]

        definition = self._definitions.get(name)
        if definition is None:
            raise ConfigurationError(f"Unknown interceptor '{name}'")

        merged = _merge(definition.default_config, config)
        try:
            instance = definition.factory(merged)
        except Exception as e:
            self._emit(ERROR, name, operation="enable", error=str(e))
            raise RegistryOperationError(name, "enable", e) from e

        handlers = []
        if hasattr(instance, "on_request"):
            handlers.append(
                (InterceptorKind.PRE_DISPATCH, _guard_request(instance.on_request, condition))
            )
        if hasattr(instance, "on_response"):
            handlers.append(
                (InterceptorKind.POST_DISPATCH, _guard_response(instance.on_response, condition))
            )
        if hasattr(instance, "on_error"):
            handlers.append(
                (InterceptorKind.ERROR, _guard_error(instance.on_error, condition))
            )
        if hasattr(instance, "handle"):
            stage = instance
            if condition is not None:
                stage = ConditionalStage(instance, lambda d: evaluate(condition, d))
            handlers.append((InterceptorKind.STAGE, stage))

        self._detach_all(name)
        self._instances.pop(name, None)
        self._conditions.pop(name, None)

        attached = []
        try:
            for kind, handler in handlers:
                self.attach(name, kind, lambda _, h=handler: h, merged)
                attached.append(kind)
        except RegistryOperationError:
            # leave the name fully disabled rather than half attached
            for kind in attached:
                self.detach(name, kind)
            raise

        self._instances[name] = instance
        self._conditions[name] = condition
        return instance

    def _detach_all(self, name: str) -> bool:
        detached = False
        for (reg_name, kind), registration in list(self._registrations.items()):
            if reg_name == name and registration.attachment_id is not None:
                detached = self.detach(name, kind) or detached
        return detached

    def disable(self, name: str) -> bool:
        """Detach every kind of ``name``; False (with a warning) if none was live."""
        if not self._detach_all(name):
            logger.warning(f"Interceptor '{name}' is not active")
            return False
        self._instances.pop(name, None)
        self._conditions.pop(name, None)
        return True

    def is_enabled(self, name: str) -> bool:
        return any(
            reg_name == name and registration.attachment_id is not None
            for (reg_name, _), registration in self._registrations.items()
        )

    def instance(self, name: str) -> Any:
        """The live interceptor object for ``name``, or None."""
        return self._instances.get(name)

    # conditional bindings

    def add_conditional_binding(
        self,
        name: str,
        kind: InterceptorKind,
        predicate: Callable[[RequestDescriptor], bool],
        on_fulfilled: Optional[Callable[..., Any]] = None,
        on_rejected: Optional[Callable[..., Any]] = None,
    ) -> int:
        if name in self._definitions:
            raise ConfigurationError(
                f"'{name}' is already a defined interceptor name"
            )
        if name in self._bindings:
            self.remove_conditional_binding(name)
        binding = ConditionalBinding(
            name=name,
            kind=InterceptorKind(kind),
            predicate=predicate,
            on_fulfilled=on_fulfilled,
            on_rejected=on_rejected,
        )
        self._bindings[name] = binding
        return self._attach_binding(binding)

    def _attach_binding(self, binding: ConditionalBinding) -> int:
        predicate = binding.predicate
        if binding.kind is InterceptorKind.PRE_DISPATCH:
            handler = _guard_request(binding.on_fulfilled, predicate)
        elif binding.kind is InterceptorKind.POST_DISPATCH:
            fulfilled = (
                _guard_response(binding.on_fulfilled, predicate)
                if binding.on_fulfilled
                else None
            )
            rejected = (
                _guard_error(binding.on_rejected, predicate)
                if binding.on_rejected
                else None
            )
            handler = (fulfilled, rejected)
        elif binding.kind is InterceptorKind.ERROR:
            handler = _guard_error(binding.on_rejected or binding.on_fulfilled, predicate)
        else:
            handler = ConditionalStage(
                binding.on_fulfilled, lambda d: evaluate(predicate, d)
            )
        return self.attach(binding.name, binding.kind, lambda _: handler)

    def remove_conditional_binding(self, name: str) -> bool:
        binding = self._bindings.get(name)
        if binding is None:
            logger.warning(f"No conditional interceptor named '{name}'")
            return False
        self._detach_all(name)
        del self._bindings[name]
        self._registrations.pop((name, binding.kind), None)
        return True

    def clear_conditional_bindings(self) -> None:
        for name in list(self._bindings):
            self.remove_conditional_binding(name)

    def conditional_bindings(self) -> dict[str, ConditionalBinding]:
        return dict(self._bindings)

    # introspection

    def status(self) -> dict[str, dict]:
        names = set(self._definitions) | set(self._bindings)
        names.update(reg_name for reg_name, _ in self._registrations)
        result = {}
        for name in sorted(names):
            registrations = [
                r for (reg_name, _), r in self._registrations.items() if reg_name == name
            ]
            live = [r for r in registrations if r.attachment_id is not None]
            last_enabled = max(
                (r.last_enabled for r in registrations if r.last_enabled), default=None
            )
            config = next((r.config for r in registrations if r.config is not None), None)
            result[name] = {
                "enabled": bool(live),
                "last_enabled": last_enabled,
                "config": config,
                "has_config": config is not None,
                "kinds": [r.kind.value for r in live],
                "attachment_ids": {r.kind.value: r.attachment_id for r in live},
                "conditional": name in self._bindings
                or self._conditions.get(name) is not None,
            }
        return result

    def active(self) -> dict[str, list[tuple[str, int]]]:
        result: dict[str, list[tuple[str, int]]] = {k.value: [] for k in InterceptorKind}
        for (name, kind), registration in self._registrations.items():
            if registration.attachment_id is not None:
                result[kind.value].append((name, registration.attachment_id))
        return result

    def reset(self) -> None:
        """Detach everything and drop conditional bindings; definitions stay."""
        self.clear_conditional_bindings()
        for (name, kind), registration in list(self._registrations.items()):
            if registration.attachment_id is not None:
                self.detach(name, kind)
        self._registrations.clear()
        self._instances.clear()
        self._conditions.clear()
