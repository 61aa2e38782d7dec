"""PluginManager — builds, initializes, and tracks plugin instances."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from src.plugins.registry import plugin_registry

if TYPE_CHECKING:
    from src.plugins.base import BasePlugin, PluginConfig
    from src.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


class PluginManager:
    """Owns the live plugin instances for a list of plugin configs.

    A plugin that fails to build or initialize is logged and skipped; the
    others still load.

    Args:
        configs: Plugin configs, usually from :func:`load_plugin_configs`.
        registry: Where plugin types are looked up (default: global registry).
    """

    def __init__(
        self,
        configs: list[PluginConfig],
        registry: PluginRegistry | None = None,
    ) -> None:
        self._configs = list(configs)
        self._registry = registry or plugin_registry
        self._plugins: dict[str, BasePlugin] = {}

    # -- Lifecycle -------------------------------------------------------------

    async def initialize_plugins(self) -> None:
        logger.info("Initializing %d plugin(s)", len(self._configs))
        for config in self._configs:
            if not config.enabled:
                logger.info("Skipping disabled plugin: %s", config.name)
                continue
            await self._load(config)
        logger.info("Successfully initialized %d plugin(s)", len(self._plugins))

    async def cleanup_plugins(self) -> None:
        for name in list(self._plugins):
            await self._unload(name)
        logger.info("All plugins cleaned up")

    async def reload_plugin(self, name: str) -> BasePlugin:
        """Clean up and rebuild one plugin from its current config.

        Raises:
            KeyError: If the plugin is not loaded or has no config.
        """
        if name not in self._plugins:
            msg = f"Plugin {name!r} not found"
            raise KeyError(msg)
        config = self._config_for(name)
        if config is None:
            msg = f"Configuration for plugin {name!r} not found"
            raise KeyError(msg)

        logger.info("Reloading plugin: %s", name)
        await self._unload(name)
        plugin = self._registry.create(config)
        await plugin.initialize()
        self._plugins[name] = plugin
        return plugin

    async def update_plugin_configs(self, configs: list[PluginConfig]) -> None:
        """Swap in a new config list: drop removed plugins, load new ones."""
        new_names = {config.name for config in configs}
        for name in list(self._plugins):
            if name not in new_names:
                logger.info("Removing plugin: %s", name)
                await self._unload(name)

        self._configs = list(configs)
        for config in self._configs:
            if config.enabled and config.name not in self._plugins:
                logger.info("Adding new plugin: %s", config.name)
                await self._load(config)

    async def toggle_plugin(self, name: str) -> bool:
        """Flip a plugin's enabled flag, loading or unloading it.

        Returns False if no config has that name.
        """
        config = self._config_for(name)
        if config is None:
            return False

        updated = config.model_copy(update={"enabled": not config.enabled})
        self._configs = [updated if c.name == name else c for c in self._configs]
        if updated.enabled:
            await self._load(updated)
        else:
            await self._unload(name)
        logger.info("Plugin %s %s", name, "enabled" if updated.enabled else "disabled")
        return True

    # -- Queries ---------------------------------------------------------------

    def get_plugin(self, name: str) -> BasePlugin | None:
        return self._plugins.get(name)

    def get_all_plugins(self) -> list[BasePlugin]:
        return list(self._plugins.values())

    def get_enabled_plugins(self) -> list[BasePlugin]:
        enabled = {config.name for config in self._configs if config.enabled}
        return [plugin for name, plugin in self._plugins.items() if name in enabled]

    def get_plugin_status(self) -> list[dict[str, Any]]:
        status = []
        for config in self._configs:
            plugin = self._plugins.get(config.name)
            status.append(
                {
                    "name": config.name,
                    "type": config.type,
                    "enabled": config.enabled,
                    "initialized": plugin is not None,
                    "version": plugin.version if plugin else "unknown",
                }
            )
        return status

    # -- Internal --------------------------------------------------------------

    def _config_for(self, name: str) -> PluginConfig | None:
        return next((c for c in self._configs if c.name == name), None)

    async def _load(self, config: PluginConfig) -> None:
        try:
            plugin = self._registry.create(config)
            await plugin.initialize()
        except Exception:
            logger.exception("Failed to initialize plugin %s", config.name)
            return
        self._plugins[config.name] = plugin
        logger.info("Plugin %s initialized", config.name)

    async def _unload(self, name: str) -> None:
        plugin = self._plugins.pop(name, None)
        if plugin is None:
            return
        try:
            await plugin.cleanup()
        except Exception:
            logger.exception("Failed to clean up plugin %s", name)
