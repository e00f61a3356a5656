import logging
from dataclasses import replace
from typing import Iterable

from .exceptions import GroupConfigurationError
from .models import InterceptorGroup
from .registry import InterceptorRegistry

logger = logging.getLogger("httpguard.groups")


class GroupManager:
    """
    Named groups of interceptors, enabled and disabled together.

    Groups are labels over registry entries and own no interceptor state.
    Members are validated against the registry's known names when the group
    is created, so a typo fails immediately instead of being ignored later.
    """

    def __init__(self, registry: InterceptorRegistry):
        self.registry = registry
        self._groups: dict[str, InterceptorGroup] = {}

    def _get(self, name: str) -> InterceptorGroup:
        group = self._groups.get(name)
        if group is None:
            raise GroupConfigurationError(
                f"Interceptor group '{name}' does not exist", details={"group": name}
            )
        return group

    def create_group(self, name: str, members: Iterable[str]) -> InterceptorGroup:
        members = list(dict.fromkeys(members))
        known = self.registry.known_names()
        unknown = [m for m in members if m not in known]
        if unknown:
            raise GroupConfigurationError(
                f"Group '{name}' references unknown interceptors: {', '.join(unknown)}",
                details={"group": name, "unknown": unknown},
            )
        group = InterceptorGroup(name=name, members=members)
        self._groups[name] = group
        logger.debug(f"Created interceptor group '{name}' with {members}")
        return group

    def enable_group(self, name: str) -> None:
        group = self._get(name)
        for member in group.members:
            if not self.registry.is_enabled(member):
                self.registry.enable(member)
        group.enabled = True
        logger.info(f"Enabled interceptor group '{name}'")

    def disable_group(self, name: str) -> None:
        group = self._get(name)
        for member in group.members:
            if self.registry.is_enabled(member):
                self.registry.disable(member)
        group.enabled = False
        logger.info(f"Disabled interceptor group '{name}'")

    def toggle_group(self, name: str) -> bool:
        """Flip the group's state and return the new one."""
        if self._get(name).enabled:
            self.disable_group(name)
        else:
            self.enable_group(name)
        return self._groups[name].enabled

    def is_group_enabled(self, name: str) -> bool:
        return self._get(name).enabled

    def get_groups(self) -> dict[str, list[str]]:
        return {name: list(group.members) for name, group in self._groups.items()}

    def get_group_config(self, name: str) -> InterceptorGroup:
        group = self._get(name)
        return replace(group, members=list(group.members))

    def delete_group(self, name: str) -> bool:
        """Forget the group; its members keep their current state."""
        return self._groups.pop(name, None) is not None

    def clear_groups(self) -> None:
        self._groups.clear()
