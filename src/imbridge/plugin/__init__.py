"""Plugin system for imbridge.

Plugins supply the agent pipeline ("dispatch host") that inbound iMessages
are handed to.  Built on pluggy.

Usage:
    from imbridge.plugin import get_plugin_manager, resolve_dispatch_host

    pm = get_plugin_manager()
    host = resolve_dispatch_host(pm, settings)
"""

from __future__ import annotations

import importlib
from typing import Any

import pluggy

from imbridge.config import Settings, get_settings
from imbridge.dispatch import DispatchHost
from imbridge.logger import logger
from imbridge.plugin.hookspecs import IMBridgeSpec

__all__ = [
    "get_plugin_manager",
    "resolve_dispatch_host",
]

# Static registry of built-in plugins.
# Each entry: (module_path, class_name, config_key)
# config_key is checked against [plugins.<key>].enabled in config.toml.
_BUILTIN_PLUGIN_SPECS: list[tuple[str, str, str]] = [
    ("imbridge.plugins.command_pipeline", "CommandPipelinePlugin", "command-pipeline"),
]


def get_plugin_manager() -> pluggy.PluginManager:
    """Create and configure the plugin manager.

    Registers the built-in plugins first and entry-point plugins (group
    ``imbridge``) after them.  pluggy calls later registrations first, so a
    third-party host takes precedence over the built-in command pipeline.
    """
    pm = pluggy.PluginManager("imbridge")
    pm.add_hookspecs(IMBridgeSpec)

    s = get_settings()

    for module_path, class_name, config_key in _BUILTIN_PLUGIN_SPECS:
        plugin_cfg = s.plugins.get(config_key)
        if plugin_cfg is not None and not plugin_cfg.enabled:
            logger.info("Plugin disabled via config", plugin=config_key)
            continue

        try:
            mod = importlib.import_module(module_path)
            cls = getattr(mod, class_name)
            pm.register(cls(), name=f"builtin-{config_key}")
            logger.info("Registered built-in plugin", name=config_key)
        except Exception:
            logger.exception("Failed to load built-in plugin", plugin=config_key)

    discovered = pm.load_setuptools_entrypoints("imbridge")
    if discovered:
        logger.info("Discovered third-party plugins", count=discovered)

    # Entry points may name a class instead of an instance; hook calls on
    # those fail with a missing ``self``.
    for plugin in list(pm.get_plugins()):
        if isinstance(plugin, type):
            plugin_name = pm.get_name(plugin) or plugin.__name__
            pm.unregister(plugin=plugin)
            logger.warning("Unregistered invalid class-based plugin object", plugin=plugin_name)

    for name, plugin in list(pm.list_name_plugin()):
        plugin_cfg = s.plugins.get(name)
        if plugin_cfg is not None and not plugin_cfg.enabled:
            pm.unregister(plugin=plugin)
            logger.info("Plugin disabled via config", plugin=name)

    plugin_names = [pm.get_name(p) for p in pm.get_plugins()]
    logger.info("Plugin manager ready", plugins=plugin_names)

    return pm


def resolve_dispatch_host(pm: pluggy.PluginManager, settings: Settings) -> DispatchHost | None:
    """First host offered by any plugin, or None."""
    hosts: list[Any] = pm.hook.imbridge_dispatch_host(settings=settings)
    for host in hosts:
        if isinstance(host, DispatchHost):
            return host
        logger.warning("Ignoring dispatch host without the required methods", host=repr(host))
    return None
