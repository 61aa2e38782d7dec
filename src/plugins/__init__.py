"""Plugin contract, registry, and lifecycle management."""

from src.plugins.base import (
    MANUAL_CONTEXT,
    BasePlugin,
    CheckContext,
    EventSchedulingPlugin,
    PluginConfig,
    ScheduleConfig,
    load_plugin_configs,
    normalize_description,
)
from src.plugins.manager import PluginManager
from src.plugins.registry import PluginRegistry, UnknownPluginTypeError, plugin_registry

__all__ = [
    "BasePlugin",
    "EventSchedulingPlugin",
    "ScheduleConfig",
    "CheckContext",
    "MANUAL_CONTEXT",
    "PluginConfig",
    "load_plugin_configs",
    "normalize_description",
    "PluginManager",
    "PluginRegistry",
    "UnknownPluginTypeError",
    "plugin_registry",
]
