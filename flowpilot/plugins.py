"""Plugin lifecycle: install with dependency checks, uninstall, global teardown.

A plugin is any object with ``name``, ``version``, optional
``dependencies`` and an ``install(engine)`` callable (sync or async) that
returns a cleanup callable (or ``None``).

Example:
    class Greeter(BasePlugin):
        name = "greeter"

        def on_step_active(self, step, context):
            print("now on", step.id)

    await engine.use(Greeter())
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import (
    ErrorContext,
    PluginInstallError,
    PluginUninstallError,
    plugin_already_installed,
    plugin_has_dependents,
    plugin_missing_dependency,
)
from .event_manager import LIFECYCLE_EVENTS, call_handler
from .logger import get_logger


@dataclass
class InstalledPlugin:
    plugin: Any
    cleanup: Optional[Callable[[], Any]]
    installed_at: float = field(default_factory=time.time)

    @property
    def name(self) -> str:
        return self.plugin.name


@dataclass
class FunctionPlugin:
    """Plugin built from a plain install function."""

    name: str
    install: Callable[[Any], Any]
    version: str = "1.0.0"
    dependencies: Sequence[str] = ()


def plugin_dependencies(plugin: Any) -> List[str]:
    return list(getattr(plugin, "dependencies", None) or ())


class PluginManager:
    def __init__(self, engine: Any, *, events: Any = None, logger: Any = None) -> None:
        self.engine = engine
        self.events = events
        self.logger = logger or get_logger("flowpilot")
        self._installed: Dict[str, InstalledPlugin] = {}

    async def _emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            await self.events.publish(event_name, payload)

    async def install(self, plugin: Any) -> None:
        name = getattr(plugin, "name", None)
        install = getattr(plugin, "install", None)
        if not name or not callable(install):
            raise PluginInstallError(
                "Plugin must have a name and an install function",
                why="Plugins are registered by name and started by calling install(engine).",
                fix="Give the plugin a non-empty 'name' and an 'install' method.",
                context=ErrorContext().add("plugin", repr(plugin)),
            )
        if name in self._installed:
            raise plugin_already_installed(name)
        for dep in plugin_dependencies(plugin):
            if dep not in self._installed:
                raise plugin_missing_dependency(name, dep)

        try:
            cleanup = await call_handler(install, self.engine)
        except Exception as e:
            self.logger.error("Plugin %s failed to install: %s", name, e)
            await self._emit("plugin_error", {"plugin": name, "operation": "install", "error": e})
            raise PluginInstallError(
                f"Plugin '{name}' failed to install: {e}",
                why="The plugin's install function raised an exception.",
                fix="Check the plugin's configuration; it was not registered.",
                context=ErrorContext().add("plugin", name),
            ) from e

        self._installed[name] = InstalledPlugin(plugin=plugin, cleanup=cleanup)
        self.logger.info("Installed plugin: %s@%s", name, getattr(plugin, "version", "?"))
        await self._emit("plugin_installed", {"plugin": name, "version": getattr(plugin, "version", None)})

    def dependents_of(self, name: str) -> List[str]:
        return [
            other for other, entry in self._installed.items()
            if other != name and name in plugin_dependencies(entry.plugin)
        ]

    async def uninstall(self, name: str) -> bool:
        """Remove a plugin and run its cleanup. Returns False if it was not installed."""
        if name not in self._installed:
            return False
        dependents = self.dependents_of(name)
        if dependents:
            raise plugin_has_dependents(name, dependents)

        entry = self._installed.pop(name)
        if entry.cleanup is not None:
            try:
                await call_handler(entry.cleanup)
            except Exception as e:
                self.logger.error("Plugin %s cleanup failed: %s", name, e)
                await self._emit("plugin_error", {"plugin": name, "operation": "uninstall", "error": e})
                raise PluginUninstallError(
                    f"Plugin '{name}' cleanup failed: {e}",
                    why="The cleanup returned by install() raised an exception.",
                    fix="The plugin was removed anyway; check for leftover listeners or handlers.",
                    context=ErrorContext().add("plugin", name),
                ) from e

        self.logger.info("Uninstalled plugin: %s", name)
        await self._emit("plugin_uninstalled", {"plugin": name})
        return True

    async def cleanup(self) -> None:
        """Run every cleanup concurrently; clear the registry only if all succeed."""
        entries = list(self._installed.values())

        async def run(entry: InstalledPlugin) -> None:
            if entry.cleanup is not None:
                await call_handler(entry.cleanup)

        results = await asyncio.gather(*(run(e) for e in entries), return_exceptions=True)
        failures = [(e.name, r) for e, r in zip(entries, results) if isinstance(r, Exception)]
        if failures:
            names = [n for n, _ in failures]
            self.logger.error("Plugin cleanup failed for: %s", ", ".join(names))
            raise PluginUninstallError(
                f"Cleanup failed for {len(failures)} plugin(s): {', '.join(names)}",
                why="At least one plugin cleanup raised; the plugin registry was left intact.",
                fix="Inspect the failing plugins, then uninstall them individually.",
                context=ErrorContext().add("errors", {n: str(r) for n, r in failures}),
            ) from failures[0][1]
        self._installed.clear()

    def get(self, name: str) -> Optional[Any]:
        entry = self._installed.get(name)
        return entry.plugin if entry else None

    def is_installed(self, name: str) -> bool:
        return name in self._installed

    def installed(self) -> List[InstalledPlugin]:
        return list(self._installed.values())

    def names(self) -> List[str]:
        return list(self._installed)


# Plugin hook method -> engine listener registration method.
HOOKS: Dict[str, str] = {
    "before_step_change": "add_before_step_change_listener",
    "after_step_change": "add_after_step_change_listener",
    "on_step_active": "add_step_active_listener",
    "on_step_complete": "add_step_complete_listener",
    "on_flow_complete": "add_flow_complete_listener",
    "on_context_update": "add_context_update_listener",
    "on_error": "add_error_listener",
    "on_state_change": "add_state_change_listener",
}


class BasePlugin:
    """Convenience base: define hook methods and they are wired on install.

    Core hooks are the keys of ``HOOKS``. Any secondary lifecycle event can
    be handled with an ``on_<event>`` method, e.g. ``on_step_skipped`` or
    ``on_persistence_failure``. Override ``on_install``/``on_uninstall`` for
    setup and teardown; listeners are removed after ``on_uninstall`` runs.
    """

    name: str = ""
    version: str = "1.0.0"
    dependencies: Sequence[str] = ()

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.config: Dict[str, Any] = dict(config or {})
        self.engine: Any = None
        self._unsubscribers: List[Callable[[], Any]] = []

    async def install(self, engine: Any) -> Callable[[], Any]:
        self.engine = engine
        self._register_hooks()
        await call_handler(self.on_install)
        return self._teardown

    async def _teardown(self) -> None:
        try:
            await call_handler(self.on_uninstall)
        finally:
            for unsubscribe in self._unsubscribers:
                unsubscribe()
            self._unsubscribers.clear()
            self.engine = None

    def _register_hooks(self) -> None:
        for hook, method in HOOKS.items():
            fn = getattr(self, hook, None)
            if callable(fn):
                self._unsubscribers.append(getattr(self.engine, method)(fn))
        for event_name in sorted(LIFECYCLE_EVENTS):
            fn = getattr(self, f"on_{event_name}", None)
            if callable(fn):
                self._unsubscribers.append(self.engine.add_event_listener(event_name, fn))

    def on_install(self) -> Any:
        return None

    def on_uninstall(self) -> Any:
        return None


class PersistencePlugin(BasePlugin):
    """Installs a store's ``load``/``save``/``clear`` as the engine's persistence handlers.

    The handlers that were active before install are restored on uninstall.
    """

    name = "persistence"

    def __init__(self, store: Any, *, name: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(config)
        self.store = store
        if name:
            self.name = name
        self._previous: Dict[str, Any] = {}

    def on_install(self) -> None:
        bind = getattr(self.store, "bind", None)
        if callable(bind):
            bind(self.engine.flow_info)
        self._previous = {
            "load": self.engine.set_data_load_handler(self.store.load),
            "persist": self.engine.set_data_persist_handler(self.store.save),
            "clear": self.engine.set_clear_persisted_data_handler(self.store.clear),
        }

    def on_uninstall(self) -> None:
        if not self._previous:
            return
        self.engine.set_data_load_handler(self._previous["load"])
        self.engine.set_data_persist_handler(self._previous["persist"])
        self.engine.set_clear_persisted_data_handler(self._previous["clear"])
        self._previous = {}
