"""Plugin type registry — maps a plugin type id to its factory."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.plugins.base import BasePlugin, PluginConfig

logger = logging.getLogger(__name__)

# Factory signature: (config) -> plugin instance
PluginFactory = Callable[["PluginConfig"], "BasePlugin"]


class UnknownPluginTypeError(KeyError):
    """Raised when a config names a plugin type nobody registered."""


class PluginRegistry:
    """Registry of plugin factories keyed by type id.

    Usage::

        registry = PluginRegistry()

        @registry.plugin("tide")
        class TidePlugin(EventSchedulingPlugin):
            ...
    """

    def __init__(self) -> None:
        self._factories: dict[str, PluginFactory] = {}

    def plugin(self, type_id: str) -> Callable[[PluginFactory], PluginFactory]:
        """Decorator to register a plugin class (or factory function)."""

        def decorator(factory: PluginFactory) -> PluginFactory:
            self.register(type_id, factory)
            return factory

        return decorator

    def register(self, type_id: str, factory: PluginFactory) -> None:
        if type_id in self._factories:
            logger.warning("Replacing plugin factory for type: %s", type_id)
        self._factories[type_id] = factory
        logger.info("Registered plugin type: %s", type_id)

    def get(self, type_id: str) -> PluginFactory | None:
        return self._factories.get(type_id)

    def create(self, config: PluginConfig) -> BasePlugin:
        """Build a plugin for *config* using the factory for ``config.type``."""
        factory = self._factories.get(config.type)
        if factory is None:
            msg = f"Unknown plugin type {config.type!r} (plugin {config.name!r})"
            raise UnknownPluginTypeError(msg)
        return factory(config)

    @property
    def types(self) -> list[str]:
        """All registered type ids."""
        return list(self._factories)


plugin_registry = PluginRegistry()
