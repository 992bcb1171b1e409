"""
Plugin SDK for tokentop.

This module defines the contract between the dashboard and its extension
modules. There are four plugin types, each with its own required surface:

    1. ProviderPlugin: Fetches usage/limit data from an AI provider
    2. AgentPlugin: Parses session usage recorded by a coding agent
    3. ThemePlugin: Supplies a color palette for the terminal UI
    4. NotificationPlugin: Delivers budget/limit alerts to the user

The four classes form a closed hierarchy under :class:`Plugin`; the class
level ``type`` attribute is the discriminant. Every plugin may also override
the optional lifecycle hooks (``initialize``, ``start``, ``stop``,
``destroy``, ``on_config_change``). The base class ships no-op versions and
:meth:`Plugin.has_hook` reports which ones a concrete plugin declares.

Example - Creating a Notification Plugin:
    from tokentop.plugins.sdk import NotificationPlugin

    class DesktopNotifier(NotificationPlugin):
        id = "desktop-notifier"
        name = "Desktop Notifier"
        version = "1.0.0"
        permissions = PluginPermissions(
            system=SystemPermission(notifications=True),
        )

        def supports(self, event: NotificationEvent) -> bool:
            return event.severity is NotificationSeverity.CRITICAL

        async def notify(self, ctx, event) -> None:
            ctx.logger.info(f"{event.title}: {event.message}")

    plugin = DesktopNotifier()
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Protocol


CURRENT_API_VERSION = 2
"""API contract version. Plugins must declare exactly this value."""

LIFECYCLE_HOOKS = ("initialize", "start", "stop", "destroy", "on_config_change")


class PluginType(str, Enum):
    """Plugin type discriminator."""

    PROVIDER = "provider"
    AGENT = "agent"
    THEME = "theme"
    NOTIFICATION = "notification"


PLUGIN_TYPES = tuple(PluginType)


class PluginSource(str, Enum):
    """Where a plugin registration came from.

    Attributes:
        BUILTIN: Shipped inside the ``tokentop`` package.
        LOCAL: A file or directory on the user's machine.
        REMOTE: A package installed from the package index.
    """

    BUILTIN = "builtin"
    LOCAL = "local"
    REMOTE = "remote"


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NetworkPermission:
    """Outbound network access.

    An empty ``allowed_domains`` with ``enabled=True`` allows every host.
    Subdomains of an allowed domain are allowed too.
    """

    enabled: bool = False
    allowed_domains: tuple[str, ...] = ()


@dataclass(frozen=True)
class FilesystemPermission:
    read: bool = False
    write: bool = False
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class EnvPermission:
    read: bool = False
    vars: tuple[str, ...] = ()


@dataclass(frozen=True)
class SystemPermission:
    notifications: bool = False
    clipboard: bool = False


@dataclass(frozen=True)
class PluginPermissions:
    """Capabilities a plugin declares up front.

    Anything not declared here is denied by the capability guard. A plugin
    with ``PluginPermissions()`` may not touch the network, the filesystem,
    the environment or system integrations.

    Example:
        permissions = PluginPermissions(
            network=NetworkPermission(
                enabled=True,
                allowed_domains=("api.anthropic.com",),
            ),
            env=EnvPermission(read=True, vars=("ANTHROPIC_API_KEY",)),
        )
    """

    network: NetworkPermission | None = None
    filesystem: FilesystemPermission | None = None
    env: EnvPermission | None = None
    system: SystemPermission | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PluginPermissions:
        """Build permissions from a plain mapping (e.g. a JSON manifest).

        Accepts both ``allowed_domains`` and ``allowedDomains`` spellings.
        """
        network = data.get("network")
        filesystem = data.get("filesystem")
        env = data.get("env")
        system = data.get("system")
        return cls(
            network=NetworkPermission(
                enabled=bool(network.get("enabled", False)),
                allowed_domains=tuple(
                    network.get("allowed_domains", network.get("allowedDomains", ()))
                ),
            ) if network is not None else None,
            filesystem=FilesystemPermission(
                read=bool(filesystem.get("read", False)),
                write=bool(filesystem.get("write", False)),
                paths=tuple(filesystem.get("paths", ())),
            ) if filesystem is not None else None,
            env=EnvPermission(
                read=bool(env.get("read", False)),
                vars=tuple(env.get("vars", ())),
            ) if env is not None else None,
            system=SystemPermission(
                notifications=bool(system.get("notifications", False)),
                clipboard=bool(system.get("clipboard", False)),
            ) if system is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.network is not None:
            result["network"] = {
                "enabled": self.network.enabled,
                "allowed_domains": list(self.network.allowed_domains),
            }
        if self.filesystem is not None:
            result["filesystem"] = {
                "read": self.filesystem.read,
                "write": self.filesystem.write,
                "paths": list(self.filesystem.paths),
            }
        if self.env is not None:
            result["env"] = {"read": self.env.read, "vars": list(self.env.vars)}
        if self.system is not None:
            result["system"] = {
                "notifications": self.system.notifications,
                "clipboard": self.system.clipboard,
            }
        return result


# ---------------------------------------------------------------------------
# Metadata and configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PluginMeta:
    """Display metadata. Nothing in the runtime depends on it.

    Attributes:
        brand_color: Hex color used for provider cards and charts.
        icon: Single glyph for compact displays.
        provider_aliases: Extra provider ids that resolve to this plugin.
    """

    author: str | None = None
    description: str | None = None
    homepage: str | None = None
    repository: str | None = None
    license: str | None = None
    brand_color: str | None = None
    icon: str | None = None
    provider_aliases: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfigField:
    """One plugin setting, as rendered by the settings UI."""

    type: str
    label: str | None = None
    description: str | None = None
    required: bool = False
    default: Any = None
    options: tuple[tuple[str, str], ...] = ()
    min: float | None = None
    max: float | None = None


# ---------------------------------------------------------------------------
# Logger and contexts
# ---------------------------------------------------------------------------


class PluginLogger(logging.LoggerAdapter):
    """Logger handed to plugin code.

    Messages go to the ``tokentop.plugin.<id>`` logger, prefixed with the
    plugin id. Each call accepts an optional ``data`` mapping that is
    appended to the message as JSON.

    Example:
        ctx.logger.warning("quota nearly exhausted", data={"used": 0.93})
    """

    def __init__(self, plugin_id: str):
        super().__init__(
            logging.getLogger(f"tokentop.plugin.{plugin_id}"),
            {"plugin_id": plugin_id},
        )
        self.plugin_id = plugin_id

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        data = kwargs.pop("data", None)
        if data:
            msg = f"{msg} {json.dumps(data, default=str, sort_keys=True)}"
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return f"[{self.plugin_id}] {msg}", kwargs


class CancellationSignal:
    """Cooperative cancellation handed to notification plugins.

    The runtime never kills plugin work; a well-behaved plugin checks
    :attr:`aborted` (or calls :meth:`raise_if_aborted`) between steps.
    """

    def __init__(
        self,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def aborted(self) -> bool:
        if self._cancelled:
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` if there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise TimeoutError("operation aborted by cancellation signal")


@dataclass(frozen=True)
class PluginLifecycleContext:
    """Context passed to lifecycle hooks.

    ``config`` is the same dict object for every hook call of a plugin; the
    runtime only replaces it through explicit config updates.
    """

    config: dict[str, Any]
    logger: PluginLogger


@dataclass(frozen=True)
class PluginContext:
    """Context passed to provider and agent data calls."""

    config: Mapping[str, Any]
    logger: PluginLogger
    http: Any
    signal: CancellationSignal


@dataclass(frozen=True)
class NotificationContext:
    """Context passed to notification plugins."""

    config: Mapping[str, Any]
    logger: PluginLogger
    signal: CancellationSignal


# ---------------------------------------------------------------------------
# Notification events
# ---------------------------------------------------------------------------


class NotificationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [
    NotificationSeverity.INFO,
    NotificationSeverity.WARNING,
    NotificationSeverity.CRITICAL,
]


class NotificationEventType(str, Enum):
    BUDGET_THRESHOLD_CROSSED = "budget.thresholdCrossed"
    BUDGET_LIMIT_REACHED = "budget.limitReached"
    PROVIDER_FETCH_FAILED = "provider.fetchFailed"
    PROVIDER_LIMIT_REACHED = "provider.limitReached"
    PROVIDER_RECOVERED = "provider.recovered"
    PLUGIN_CRASHED = "plugin.crashed"
    PLUGIN_DISABLED = "plugin.disabled"
    APP_STARTED = "app.started"
    APP_UPDATED = "app.updated"


@dataclass(frozen=True)
class NotificationEvent:
    """A domain event delivered to notification plugins.

    Attributes:
        timestamp: Epoch seconds when the event was raised.
        data: Event-specific payload. Read-only once dispatched.
    """

    type: NotificationEventType
    severity: NotificationSeverity
    title: str
    message: str
    timestamp: float = field(default_factory=time.time)
    data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> str:
        """The part of the event type before the dot (``budget``, ``provider``...)."""
        return self.type.value.split(".", 1)[0]


# ---------------------------------------------------------------------------
# Provider usage data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UsageLimit:
    used_percent: float | None = None
    label: str | None = None
    resets_at: float | None = None


@dataclass(frozen=True)
class ProviderLimits:
    primary: UsageLimit | None = None
    secondary: UsageLimit | None = None


@dataclass(frozen=True)
class ProviderUsageData:
    """What a provider plugin returns from ``fetch_usage``.

    Attributes:
        limit_reached: The provider reports a hard rate/usage limit.
        limits: Soft usage windows, as percentages of their quota.
    """

    fetched_at: float = field(default_factory=time.time)
    limit_reached: bool = False
    limits: ProviderLimits | None = None
    error: str | None = None

    @property
    def primary_used_percent(self) -> float | None:
        if self.limits is None or self.limits.primary is None:
            return None
        return self.limits.primary.used_percent


class ProviderAuth(Protocol):
    """Credential discovery a provider plugin must supply."""

    async def discover(self, ctx: PluginContext) -> Mapping[str, Any] | None:
        ...

    def is_configured(self, credentials: Mapping[str, Any] | None) -> bool:
        ...


# ---------------------------------------------------------------------------
# Agent data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentConfig:
    name: str
    command: str | None = None
    config_path: str | None = None
    session_path: str | None = None
    auth_path: str | None = None


@dataclass(frozen=True)
class AgentCapabilities:
    session_parsing: bool = False
    auth_reading: bool = False
    real_time_tracking: bool = False
    multi_provider: bool = False


@dataclass(frozen=True)
class SessionParseOptions:
    session_id: str | None = None
    time_period: str | None = None
    limit: int | None = None
    since: float | None = None


@dataclass(frozen=True)
class SessionUsageData:
    session_id: str
    provider_id: str
    model_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    timestamp: float = 0.0
    session_name: str | None = None
    project_path: str | None = None
    cost: float | None = None


# ---------------------------------------------------------------------------
# Plugin classes
# ---------------------------------------------------------------------------


class Plugin(ABC):
    """Base class for every tokentop plugin.

    Identity is declared with class attributes. Lifecycle hooks are optional:
    the versions here do nothing, and the runtime only calls a hook when
    :meth:`has_hook` says the plugin overrides it, in its class or as an
    instance attribute.

    Lifecycle:

    1. ``initialize(ctx)``: once, after the plugin is registered.
    2. ``start(ctx)``: begin active work (polling, watchers).
    3. ``stop(ctx)``: pause active work, called in reverse order at shutdown.
    4. ``destroy(ctx)``: release resources, always called at shutdown.

    ``on_config_change(config, ctx)`` fires when the user edits the
    plugin's settings.
    """

    type: ClassVar[PluginType]

    id: str = ""
    name: str = ""
    version: str = ""
    api_version: int = CURRENT_API_VERSION
    permissions: PluginPermissions = PluginPermissions()
    meta: PluginMeta | None = None
    config_schema: Mapping[str, ConfigField] | None = None
    default_config: Mapping[str, Any] | None = None

    async def initialize(self, ctx: Any) -> None:
        """Called once after the plugin is loaded and validated."""

    async def start(self, ctx: PluginLifecycleContext) -> None:
        """Called when the plugin should begin active work."""

    async def stop(self, ctx: PluginLifecycleContext) -> None:
        """Called when the plugin should pause active work."""

    async def destroy(self, ctx: PluginLifecycleContext) -> None:
        """Called once before the plugin is unloaded."""

    def on_config_change(
        self,
        config: dict[str, Any],
        ctx: PluginLifecycleContext,
    ) -> Awaitable[None] | None:
        """Called with the new settings when the user changes them."""
        return None

    def has_hook(self, hook: str) -> bool:
        """Return True if this plugin overrides lifecycle hook *hook*.

        A callable assigned on the instance counts as an override.

        Raises:
            ValueError: If *hook* is not a lifecycle hook name.
        """
        if hook not in LIFECYCLE_HOOKS:
            raise ValueError(f"Unknown lifecycle hook: {hook}")
        instance_attrs = getattr(self, "__dict__", {})
        if hook in instance_attrs:
            return callable(instance_attrs[hook])
        return getattr(type(self), hook) is not getattr(Plugin, hook)

    @property
    def key(self) -> tuple[PluginType, str]:
        return (self.type, self.id)

    def __repr__(self) -> str:
        plugin_type = getattr(self, "type", None)
        type_label = plugin_type.value if isinstance(plugin_type, PluginType) else plugin_type
        return f"<{self.__class__.__name__} {type_label}:{self.id}@{self.version}>"


class ProviderPlugin(Plugin):
    """Fetches usage and limit data from an AI provider.

    Required:
        auth: Object with ``discover(ctx)`` and ``is_configured(credentials)``.
        fetch_usage: Returns a :class:`ProviderUsageData`.
    """

    type = PluginType.PROVIDER
    auth: ProviderAuth | None = None

    @abstractmethod
    async def fetch_usage(self, ctx: PluginContext) -> ProviderUsageData:
        ...


class AgentPlugin(Plugin):
    """Reads session usage recorded by a coding agent.

    Required:
        agent: :class:`AgentConfig` describing the agent.
        capabilities: :class:`AgentCapabilities` flags.
        is_installed, parse_sessions.
    """

    type = PluginType.AGENT
    agent: AgentConfig | None = None
    capabilities: AgentCapabilities | None = None

    @abstractmethod
    async def is_installed(self, ctx: PluginContext) -> bool:
        ...

    @abstractmethod
    async def parse_sessions(
        self,
        options: SessionParseOptions,
        ctx: PluginContext,
    ) -> list[SessionUsageData]:
        ...


class ThemePlugin(Plugin):
    """A color palette for the terminal UI. Pure data."""

    type = PluginType.THEME
    color_scheme: str = ""
    colors: Mapping[str, str] = {}
    family: str | None = None
    components: Mapping[str, Mapping[str, str]] | None = None


class NotificationPlugin(Plugin):
    """Delivers notification events to the user.

    ``supports`` filters events before dispatch; the default accepts all.
    """

    type = PluginType.NOTIFICATION

    def supports(self, event: NotificationEvent) -> bool:
        return True

    async def send_test(self, ctx: NotificationContext) -> bool:
        """Deliver a test notification. Returns True if one was sent."""
        return False

    @abstractmethod
    async def notify(self, ctx: NotificationContext, event: NotificationEvent) -> None:
        ...


PLUGIN_CLASSES: dict[PluginType, type[Plugin]] = {
    PluginType.PROVIDER: ProviderPlugin,
    PluginType.AGENT: AgentPlugin,
    PluginType.THEME: ThemePlugin,
    PluginType.NOTIFICATION: NotificationPlugin,
}
