"""
Plugin runtime composition for tokentop.

:class:`PluginRuntime` owns one instance of each runtime component and wires
them together:

    PluginHost ─┬─> PluginLifecycleManager ──> PluginRegistry
                └─> NotificationBus

Example:
    runtime = PluginRuntime()
    await runtime.startup(load_config(settings.config_path))
    try:
        await runtime.bus.check_budget(cost, limit, "daily", config)
    finally:
        await runtime.shutdown()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from tokentop.config.schema import AppConfig
from tokentop.config.settings import Settings, settings as default_settings
from tokentop.plugins.errors import RuntimeNotReadyError
from tokentop.plugins.guard import create_plugin_context
from tokentop.plugins.host import InvokeResult, PluginHost
from tokentop.plugins.installer import PackageInstaller
from tokentop.plugins.lifecycle import PluginLifecycleManager
from tokentop.plugins.loader import PluginLoader
from tokentop.plugins.notification_bus import NotificationBus
from tokentop.plugins.registry import PluginRegistry
from tokentop.plugins.sdk import (
    NotificationEvent,
    NotificationEventType,
    NotificationSeverity,
    Plugin,
    PluginContext,
    PluginType,
)

logger = logging.getLogger(__name__)


def plugin_crashed_event(
    plugin_id: str,
    method: str,
    result: InvokeResult[Any],
) -> NotificationEvent | None:
    """Describe a failed plugin call as a notification event.

    Returns ``plugin.disabled`` when the circuit breaker refused the call,
    ``plugin.crashed`` when the plugin raised, and ``None`` for successes.
    """
    if result.ok:
        return None

    if result.circuit_open:
        return NotificationEvent(
            type=NotificationEventType.PLUGIN_DISABLED,
            severity=NotificationSeverity.WARNING,
            title=f"Plugin {plugin_id} Disabled",
            message=str(result.error),
            data={"plugin_id": plugin_id, "method": method},
        )
    return NotificationEvent(
        type=NotificationEventType.PLUGIN_CRASHED,
        severity=NotificationSeverity.CRITICAL,
        title=f"Plugin {plugin_id} Crashed",
        message=f"{method} failed: {result.error}",
        data={"plugin_id": plugin_id, "method": method, "error": str(result.error)},
    )


class PluginRuntime:
    """Builds and drives the plugin runtime components.

    Attributes:
        host: Fault-isolating invoker shared by every component.
        registry: Active plugins.
        lifecycle: Lifecycle manager over the registry.
        bus: Notification bus over the registry's notification plugins.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        host: PluginHost | None = None,
        registry: PluginRegistry | None = None,
        lifecycle: PluginLifecycleManager | None = None,
        bus: NotificationBus | None = None,
    ):
        self.settings = settings or default_settings
        s = self.settings

        self.host = host or PluginHost(
            failure_threshold=s.CIRCUIT_FAILURE_THRESHOLD,
            cooldown=s.CIRCUIT_COOLDOWN_SECONDS,
        )
        self.registry = registry or PluginRegistry(
            loader=PluginLoader(plugins_dir=s.plugins_dir),
            installer=PackageInstaller(target_dir=s.remote_plugins_dir),
        )
        self.lifecycle = lifecycle or PluginLifecycleManager(
            self.registry,
            self.host,
            hook_timeout=s.HOOK_TIMEOUT_SECONDS,
        )
        self.bus = bus or NotificationBus(
            self.host,
            dedup_window=s.NOTIFICATION_DEDUP_WINDOW_SECONDS,
            notify_timeout=s.NOTIFICATION_TIMEOUT_SECONDS,
        )
        self.config: AppConfig | None = None
        self._started = False
        self._stopped = False

    @property
    def started(self) -> bool:
        return self._started

    async def startup(
        self,
        config: AppConfig | None = None,
        cli_plugins: Iterable[str | Path] = (),
    ) -> None:
        """Load, initialize and start every plugin. Later calls do nothing.

        Notification plugins are initialized by the lifecycle manager
        together with every other plugin, so the bus's own
        ``initialize_plugins`` is not called here.
        """
        if self._started:
            return

        self.config = config or AppConfig()
        await self.registry.initialize(self.config.plugins, cli_plugins=cli_plugins)
        await self.lifecycle.initialize_all()
        await self.lifecycle.start_all()

        for plugin_id, plugin_config in self.config.notifications.items():
            self.bus.set_plugin_config(plugin_id, plugin_config)
        self.bus.register_plugins(self.registry.get_all(PluginType.NOTIFICATION))

        self._started = True
        logger.info(f"Plugin runtime started with {self.registry.count()} plugins")

    async def shutdown(self) -> None:
        """Stop and destroy every plugin, then clear the bus. Runs once.

        Raises:
            RuntimeNotReadyError: If :meth:`startup` was never called.
        """
        if not self._started:
            raise RuntimeNotReadyError("PluginRuntime.shutdown() called before startup()")
        if self._stopped:
            return

        await self.lifecycle.stop_all()
        await self.lifecycle.destroy_all()
        self.bus.destroy()
        self._stopped = True
        logger.info("Plugin runtime shut down")

    async def report_plugin_failure(
        self,
        plugin_id: str,
        method: str,
        result: InvokeResult[Any],
    ) -> bool:
        """Emit a ``plugin.crashed``/``plugin.disabled`` event for a failed call.

        Returns:
            True if an event was dispatched (not a success, not deduplicated).
        """
        event = plugin_crashed_event(plugin_id, method, result)
        if event is None:
            return False
        return await self.bus.emit(f"{event.type.value}:{plugin_id}", event)

    def create_plugin_context(
        self,
        plugin: Plugin,
        config: Mapping[str, Any] | None = None,
    ) -> PluginContext:
        """Context for a provider or agent data call of *plugin*.

        *config* is layered over the plugin's ``default_config``. The HTTP
        client only reaches the domains ``plugin.permissions`` declares.
        """
        merged = {**(plugin.default_config or {}), **(config or {})}
        return create_plugin_context(plugin.id, plugin.permissions, config=merged)
