"""
Plugin lifecycle management for tokentop.

Drives the optional ``initialize``/``start``/``stop``/``destroy`` hooks of
every registered plugin and tracks each plugin's state:

    loaded -> initialized -> started -> stopped -> destroyed
                  \\            \\          \\
                   +------------+----------+--> failed

``failed`` and ``destroyed`` are terminal. Every hook call goes through the
:class:`~tokentop.plugins.host.PluginHost` (error isolation and circuit
breaker), runs under the plugin's capability guard, and is bounded by a
timeout. A hook that times out is abandoned, not cancelled.

Example:
    lifecycle = PluginLifecycleManager(registry, host)

    await lifecycle.initialize_all()
    await lifecycle.start_all()
    ...
    await lifecycle.stop_all()
    await lifecycle.destroy_all()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Mapping

from tokentop.plugins.errors import HookTimeoutError
from tokentop.plugins.guard import run_guarded, scoped_logger
from tokentop.plugins.host import PluginHost
from tokentop.plugins.registry import PluginRegistry
from tokentop.plugins.sdk import Plugin, PluginLifecycleContext, PluginLogger

logger = logging.getLogger(__name__)

DEFAULT_HOOK_TIMEOUT_SECONDS = 5.0


class PluginLifecycleState(str, Enum):
    """Where a plugin is in its lifecycle."""

    LOADED = "loaded"
    INITIALIZED = "initialized"
    STARTED = "started"
    STOPPED = "stopped"
    DESTROYED = "destroyed"
    FAILED = "failed"


@dataclass
class LifecycleEntry:
    """Per-plugin lifecycle record.

    Attributes:
        plugin_id: The plugin's id.
        state: Current lifecycle state.
        config: Settings dict handed to every hook by reference.
        logger: The plugin's scoped logger.
    """

    plugin_id: str
    state: PluginLifecycleState
    config: dict[str, Any]
    logger: PluginLogger


def _consume_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class PluginLifecycleManager:
    """Runs lifecycle hooks over the plugins in a registry.

    Attributes:
        registry: Source of the plugins to manage.
        host: Invoker used for every hook call.
        hook_timeout: Seconds a hook may run before it counts as failed.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        host: PluginHost,
        hook_timeout: float = DEFAULT_HOOK_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.host = host
        self.hook_timeout = hook_timeout
        self._entries: dict[str, LifecycleEntry] = {}

    def _get_or_create(self, plugin: Plugin) -> LifecycleEntry:
        entry = self._entries.get(plugin.id)
        if entry is None:
            entry = LifecycleEntry(
                plugin_id=plugin.id,
                state=PluginLifecycleState.LOADED,
                config=dict(plugin.default_config or {}),
                logger=scoped_logger(plugin.id),
            )
            self._entries[plugin.id] = entry
        return entry

    @staticmethod
    def _make_ctx(entry: LifecycleEntry) -> PluginLifecycleContext:
        return PluginLifecycleContext(config=entry.config, logger=entry.logger)

    async def _bounded(self, plugin_id: str, hook: str, awaitable: Awaitable[Any]) -> Any:
        """Await *awaitable* for at most :attr:`hook_timeout` seconds.

        On timeout the underlying task keeps running unobserved; its
        eventual result or exception is discarded.
        """
        task = asyncio.ensure_future(awaitable)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.hook_timeout)
        except asyncio.TimeoutError:
            task.add_done_callback(_consume_result)
            raise HookTimeoutError(plugin_id, hook, self.hook_timeout) from None

    async def _call_hook(self, plugin: Plugin, hook: str, *args: Any) -> bool:
        """Invoke *hook* on *plugin*; True on success or if it has no such hook."""
        if not plugin.has_hook(hook):
            return True

        entry = self._get_or_create(plugin)

        def call() -> Any:
            result = getattr(plugin, hook)(*args)
            if inspect.isawaitable(result):
                return self._bounded(plugin.id, hook, result)
            return result

        result = await self.host.invoke(
            plugin.id,
            hook,
            lambda: run_guarded(plugin.id, plugin.permissions, call),
        )
        if not result.ok:
            entry.logger.error(f'Lifecycle hook "{hook}" failed: {result.error}')
            return False
        return True

    async def _advance(
        self,
        plugin: Plugin,
        hook: str,
        required: PluginLifecycleState,
        success: PluginLifecycleState,
    ) -> None:
        entry = self._get_or_create(plugin)
        if entry.state != required:
            return
        ok = await self._call_hook(plugin, hook, self._make_ctx(entry))
        entry.state = success if ok else PluginLifecycleState.FAILED

    async def initialize_all(self) -> None:
        """Initialize every ``loaded`` plugin concurrently."""
        await asyncio.gather(*(
            self._advance(
                plugin,
                "initialize",
                PluginLifecycleState.LOADED,
                PluginLifecycleState.INITIALIZED,
            )
            for plugin in self.registry.get_all_plugins()
        ))

    async def start_all(self) -> None:
        """Start every ``initialized`` plugin concurrently."""
        await asyncio.gather(*(
            self._advance(
                plugin,
                "start",
                PluginLifecycleState.INITIALIZED,
                PluginLifecycleState.STARTED,
            )
            for plugin in self.registry.get_all_plugins()
        ))

    async def stop_all(self) -> None:
        """Stop ``started`` plugins one at a time, in reverse registration order."""
        for plugin in reversed(self.registry.get_all_plugins()):
            entry = self._entries.get(plugin.id)
            if entry is None or entry.state != PluginLifecycleState.STARTED:
                continue
            ok = await self._call_hook(plugin, "stop", self._make_ctx(entry))
            entry.state = PluginLifecycleState.STOPPED if ok else PluginLifecycleState.FAILED

    async def destroy_all(self) -> None:
        """Destroy every tracked plugin in reverse order.

        Failed plugins are destroyed too. Each entry ends ``destroyed``
        whatever the hook does.
        """
        for plugin in reversed(self.registry.get_all_plugins()):
            entry = self._entries.get(plugin.id)
            if entry is None or entry.state == PluginLifecycleState.DESTROYED:
                continue
            await self._call_hook(plugin, "destroy", self._make_ctx(entry))
            entry.state = PluginLifecycleState.DESTROYED

    async def notify_config_change(self, plugin_id: str, new_config: Mapping[str, Any]) -> None:
        """Store *new_config* for *plugin_id* and fire its ``on_config_change``.

        Nothing happens if the plugin does not declare the hook or is
        untracked, failed or destroyed. The lifecycle state never changes.
        """
        plugin = next(
            (p for p in self.registry.get_all_plugins() if p.id == plugin_id),
            None,
        )
        if plugin is None or not plugin.has_hook("on_config_change"):
            return

        entry = self._entries.get(plugin_id)
        if entry is None or entry.state in (
            PluginLifecycleState.DESTROYED,
            PluginLifecycleState.FAILED,
        ):
            return

        entry.config = dict(new_config)
        await self._call_hook(
            plugin,
            "on_config_change",
            dict(new_config),
            self._make_ctx(entry),
        )

    def set_plugin_config(self, plugin_id: str, config: Mapping[str, Any]) -> None:
        """Replace the stored config without firing ``on_config_change``.

        Only affects plugins that already have a lifecycle entry.
        """
        entry = self._entries.get(plugin_id)
        if entry is not None:
            entry.config = dict(config)

    def get_state(self, plugin_id: str) -> PluginLifecycleState | None:
        entry = self._entries.get(plugin_id)
        return entry.state if entry is not None else None

    def get_config(self, plugin_id: str) -> dict[str, Any] | None:
        entry = self._entries.get(plugin_id)
        return entry.config if entry is not None else None

    def reset(self) -> None:
        self._entries.clear()
