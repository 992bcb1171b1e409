"""
Plugin runtime for tokentop.

tokentop is extended by four kinds of plugins:
- Providers: fetch usage and rate-limit data from AI providers
- Agents: parse session usage recorded by coding agents
- Themes: color palettes for the terminal UI
- Notifications: deliver budget and limit alerts

Runtime components:
    - PluginRegistry: discovers builtin, local and remote plugins and keeps
      one active registration per (type, id)
    - PluginLifecycleManager: drives initialize/start/stop/destroy hooks
    - PluginHost: isolates plugin failures behind a circuit breaker
    - NotificationBus: deduplicates and fans out alert events
    - PluginRuntime: builds and wires the above

Security:
    Plugins declare permissions (network, filesystem, env, system). Calls
    into plugin code run under a capability guard that enforces them.

Example:
    from tokentop.plugins import PluginRuntime
    from tokentop.config import load_config

    runtime = PluginRuntime()
    await runtime.startup(load_config("~/.config/tokentop/config.json"))
    ...
    await runtime.shutdown()
"""

from tokentop.plugins.errors import (
    CircuitOpenError,
    HookFailure,
    HookTimeoutError,
    PluginDiscoveryError,
    PluginError,
    PluginPermissionError,
    PluginValidationError,
    RuntimeNotReadyError,
)
from tokentop.plugins.host import InvokeResult, PluginHealth, PluginHost
from tokentop.plugins.lifecycle import PluginLifecycleManager, PluginLifecycleState
from tokentop.plugins.loader import PluginLoader, PluginLoadResult, ValidationResult, validate_plugin
from tokentop.plugins.notification_bus import NotificationBus
from tokentop.plugins.registry import PluginRegistry
from tokentop.plugins.runtime import PluginRuntime
from tokentop.plugins.sdk import (
    CURRENT_API_VERSION,
    AgentPlugin,
    NotificationEvent,
    NotificationPlugin,
    Plugin,
    PluginPermissions,
    PluginSource,
    PluginType,
    ProviderPlugin,
    ThemePlugin,
)

__all__ = [
    # SDK
    "CURRENT_API_VERSION",
    "Plugin",
    "ProviderPlugin",
    "AgentPlugin",
    "ThemePlugin",
    "NotificationPlugin",
    "NotificationEvent",
    "PluginPermissions",
    "PluginSource",
    "PluginType",
    # Runtime
    "PluginHost",
    "InvokeResult",
    "PluginHealth",
    "PluginLoader",
    "PluginLoadResult",
    "ValidationResult",
    "validate_plugin",
    "PluginRegistry",
    "PluginLifecycleManager",
    "PluginLifecycleState",
    "NotificationBus",
    "PluginRuntime",
    # Errors
    "PluginError",
    "PluginValidationError",
    "PluginDiscoveryError",
    "HookFailure",
    "HookTimeoutError",
    "CircuitOpenError",
    "PluginPermissionError",
    "RuntimeNotReadyError",
]
