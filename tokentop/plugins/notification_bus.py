"""
Notification bus for tokentop.

The host reports budget and provider-limit conditions to the bus; the bus
turns them into :class:`~tokentop.plugins.sdk.NotificationEvent` objects,
drops repeats within the dedup window, and fans each event out to the
enabled notification plugins that support it.

Dedup keys:
    - ``provider.limitReached:<provider-id>``: hard limit reached
    - ``provider.limitReached:warning:<provider-id>``: approaching limit
    - ``budget.limitReached:<budget-type>``: budget at critical percent
    - ``budget.thresholdCrossed:<budget-type>``: budget at warning percent

Every ``notify`` call goes through the :class:`~tokentop.plugins.host.PluginHost`,
so a failing channel never blocks delivery to the others. ``supports`` is a
plain predicate: it runs outside the circuit breaker and a raising predicate
only excludes the plugin from that event.

Example:
    bus = NotificationBus(host)
    bus.register_plugins(registry.get_all(PluginType.NOTIFICATION))

    await bus.check_budget(cost=41.0, limit=50.0, budget_type="daily", config=app_config)
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from tokentop.plugins.errors import RuntimeNotReadyError
from tokentop.plugins.guard import deep_freeze, run_guarded, scoped_logger
from tokentop.plugins.host import InvokeResult, PluginHost
from tokentop.plugins.sdk import (
    CancellationSignal,
    NotificationContext,
    NotificationEvent,
    NotificationEventType,
    NotificationPlugin,
    NotificationSeverity,
    ProviderUsageData,
)

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_WINDOW_SECONDS = 5 * 60.0
DEFAULT_NOTIFY_TIMEOUT_SECONDS = 10.0

PROVIDER_WARNING_PERCENT = 80.0
PROVIDER_CRITICAL_PERCENT = 95.0


@dataclass
class DedupEntry:
    key: str
    timestamp: float


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class NotificationBus:
    """Deduplicating fan-out of notification events.

    Attributes:
        host: Invoker used for every plugin call.
        dedup_window: Seconds during which a repeated key is dropped.
        notify_timeout: Deadline of the cancellation signal handed to
            plugins.
    """

    def __init__(
        self,
        host: PluginHost,
        dedup_window: float = DEFAULT_DEDUP_WINDOW_SECONDS,
        notify_timeout: float = DEFAULT_NOTIFY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.host = host
        self.dedup_window = dedup_window
        self.notify_timeout = notify_timeout
        self._clock = clock
        self._plugins: list[NotificationPlugin] | None = None
        self._recent: dict[str, DedupEntry] = {}
        self._configs: dict[str, dict[str, Any]] = {}

    @property
    def plugins(self) -> list[NotificationPlugin]:
        return list(self._plugins or [])

    def _require_plugins(self) -> list[NotificationPlugin]:
        if self._plugins is None:
            raise RuntimeNotReadyError(
                "NotificationBus.register_plugins() must be called before use"
            )
        return self._plugins

    # =========================================================================
    # Plugin set and configuration
    # =========================================================================

    def register_plugins(self, plugins: Sequence[NotificationPlugin]) -> None:
        """Replace the plugin list.

        Plugins without a stored config get ``{"enabled": True}``.
        """
        self._plugins = list(plugins)
        for plugin in self._plugins:
            self._configs.setdefault(plugin.id, {"enabled": True})

    def set_plugin_config(self, plugin_id: str, config: Mapping[str, Any]) -> None:
        self._configs[plugin_id] = dict(config)

    def get_plugin_config(self, plugin_id: str) -> dict[str, Any] | None:
        return self._configs.get(plugin_id)

    def _make_ctx(self, plugin: NotificationPlugin) -> NotificationContext:
        config = {**(plugin.default_config or {}), **self._configs.get(plugin.id, {})}
        return NotificationContext(
            config=deep_freeze(config),
            logger=scoped_logger(plugin.id),
            signal=CancellationSignal(timeout=self.notify_timeout),
        )

    def _call(self, plugin: NotificationPlugin, method: str, fn: Callable[[], Any]) -> Any:
        return self.host.invoke(
            plugin.id,
            method,
            lambda: run_guarded(plugin.id, plugin.permissions, fn),
        )

    async def initialize_plugins(self) -> None:
        """Call each plugin's ``initialize`` through the invoker, in order.

        For hosts that drive notification plugins without the lifecycle
        manager; :class:`~tokentop.plugins.runtime.PluginRuntime` does not
        call it.
        """
        for plugin in self._require_plugins():
            ctx = self._make_ctx(plugin)
            await self._call(plugin, "initialize", lambda p=plugin, c=ctx: p.initialize(c))

    async def send_test_notification(self, plugin_id: str) -> bool:
        """Ask one plugin to deliver a test notification.

        Returns:
            True if the plugin reported success.
        """
        plugin = next((p for p in self._require_plugins() if p.id == plugin_id), None)
        if plugin is None:
            return False
        ctx = self._make_ctx(plugin)
        result = await self._call(plugin, "send_test", lambda: plugin.send_test(ctx))
        return bool(result.ok and result.value)

    # =========================================================================
    # Condition checks
    # =========================================================================

    async def check_provider_usage(
        self,
        provider_id: str,
        provider_name: str,
        usage: ProviderUsageData,
    ) -> None:
        """Emit provider limit events for a fresh usage snapshot."""
        self._require_plugins()

        if usage.limit_reached:
            await self.emit(
                f"provider.limitReached:{provider_id}",
                NotificationEvent(
                    type=NotificationEventType.PROVIDER_LIMIT_REACHED,
                    severity=NotificationSeverity.CRITICAL,
                    title=f"{provider_name} Rate Limit Reached",
                    message=f"Rate limit reached for {provider_name}. Requests may be throttled.",
                    timestamp=self._clock(),
                    data={"provider": provider_id},
                ),
            )
            return

        percent = usage.primary_used_percent
        if percent is not None and percent >= PROVIDER_WARNING_PERCENT:
            severity = (
                NotificationSeverity.CRITICAL
                if percent >= PROVIDER_CRITICAL_PERCENT
                else NotificationSeverity.WARNING
            )
            await self.emit(
                f"provider.limitReached:warning:{provider_id}",
                NotificationEvent(
                    type=NotificationEventType.PROVIDER_LIMIT_REACHED,
                    severity=severity,
                    title=f"{provider_name} Approaching Limit",
                    message=f"{provider_name} usage at {_round_half_up(percent)}%.",
                    timestamp=self._clock(),
                    data={"provider": provider_id, "used_percent": percent},
                ),
            )

    async def check_budget(
        self,
        cost: float,
        limit: float,
        budget_type: str,
        config: Any,
    ) -> None:
        """Emit a budget event if *cost* crossed a configured threshold.

        Args:
            cost: Spend so far in the period.
            limit: Budget for the period; ``<= 0`` means no budget.
            budget_type: ``daily``, ``weekly`` or ``monthly``.
            config: :class:`tokentop.config.schema.AppConfig` supplying
                ``alerts`` percentages and ``budgets.currency``.
        """
        self._require_plugins()
        if limit <= 0:
            return

        percent = cost / limit * 100
        label = budget_type.capitalize()
        message = (
            f"{label} spending at {_round_half_up(percent)}% "
            f"(${cost:.2f}/${limit:.2f})."
        )
        data = {
            "budget_type": budget_type,
            "cost": cost,
            "limit": limit,
            "percent": percent,
            "currency": config.budgets.currency,
        }

        if percent >= config.alerts.critical_percent:
            await self.emit(
                f"budget.limitReached:{budget_type}",
                NotificationEvent(
                    type=NotificationEventType.BUDGET_LIMIT_REACHED,
                    severity=NotificationSeverity.CRITICAL,
                    title=f"{label} Budget Critical",
                    message=message,
                    timestamp=self._clock(),
                    data=data,
                ),
            )
        elif percent >= config.alerts.warning_percent:
            await self.emit(
                f"budget.thresholdCrossed:{budget_type}",
                NotificationEvent(
                    type=NotificationEventType.BUDGET_THRESHOLD_CROSSED,
                    severity=NotificationSeverity.WARNING,
                    title=f"{label} Budget Warning",
                    message=message,
                    timestamp=self._clock(),
                    data=data,
                ),
            )

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _is_duplicate(self, key: str, now: float) -> bool:
        recent = self._recent.get(key)
        return recent is not None and now - recent.timestamp < self.dedup_window

    def _record(self, key: str, now: float) -> None:
        self._recent[key] = DedupEntry(key=key, timestamp=now)
        cutoff = now - self.dedup_window
        for stale in [k for k, e in self._recent.items() if e.timestamp < cutoff]:
            del self._recent[stale]

    def _accepts(self, plugin: NotificationPlugin, event: NotificationEvent) -> bool:
        config = self._configs.get(plugin.id)
        if config is not None and config.get("enabled") is False:
            return False
        try:
            return bool(plugin.supports(event))
        except Exception as e:
            logger.warning(f"Notification plugin {plugin.id} supports() failed: {e}")
            return False

    async def emit(self, dedup_key: str, event: NotificationEvent) -> bool:
        """Deliver *event* unless *dedup_key* fired within the dedup window.

        Returns:
            False if the event was dropped as a duplicate, else True (even
            when no plugin accepted it).
        """
        plugins = self._require_plugins()
        now = self._clock()
        if self._is_duplicate(dedup_key, now):
            logger.debug(f"Dropping duplicate notification: {dedup_key}")
            return False
        self._record(dedup_key, now)

        frozen = dataclasses.replace(event, data=deep_freeze(event.data))
        targets = [p for p in plugins if self._accepts(p, frozen)]
        logger.debug(f"Dispatching {event.type.value} to {len(targets)} plugin(s)")

        results: list[InvokeResult[Any]] = await asyncio.gather(*(
            self._call(plugin, "notify", lambda p=plugin: p.notify(self._make_ctx(p), frozen))
            for plugin in targets
        ))
        for plugin, result in zip(targets, results):
            if not result.ok and not result.circuit_open:
                logger.warning(f"Notification plugin {plugin.id} failed: {result.error}")
        return True

    def destroy(self) -> None:
        """Forget plugins, configs and dedup history."""
        self._plugins = None
        self._recent.clear()
        self._configs.clear()

    def __repr__(self) -> str:
        return f"<NotificationBus plugins={len(self.plugins)} recent={len(self._recent)}>"
