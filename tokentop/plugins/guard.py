"""
Capability guard for tokentop plugins.

Plugins declare their permissions up front (see
:class:`~tokentop.plugins.sdk.PluginPermissions`). The guard records which
plugin is currently executing in a context variable, so checks still apply
when plugin code reaches for a shared resource instead of the objects the
runtime hands it.

Enforcement points:
    - Network: HTTP clients from :func:`scoped_http_client` refuse requests
      the executing plugin did not declare.
    - Environment: :func:`getenv` checks ``permissions.env``.
    - Filesystem: :meth:`CapabilityGuard.check_path` checks
      ``permissions.filesystem``.
    - Context data: :func:`deep_freeze` produces read-only views of the data
      handed to plugin code.

Example:
    from tokentop.plugins.guard import run_guarded, scoped_http_client

    async def call_plugin(plugin):
        return await run_guarded(
            plugin.id,
            plugin.permissions,
            lambda: plugin.fetch_usage(ctx),
        )
"""

from __future__ import annotations

import inspect
import logging
import os
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping

import httpx

from tokentop.plugins.errors import PluginPermissionError
from tokentop.plugins.sdk import CancellationSignal, PluginContext, PluginLogger, PluginPermissions

logger = logging.getLogger(__name__)

PLUGIN_CONTEXT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class CapabilityGuard:
    """The plugin currently executing and what it declared.

    Attributes:
        plugin_id: Id of the executing plugin.
        permissions: Its declared permissions.
    """

    plugin_id: str
    permissions: PluginPermissions

    def _deny(self, permission: str, message: str) -> PluginPermissionError:
        scoped_logger(self.plugin_id).error(f"{permission} access blocked: {message}")
        return PluginPermissionError(self.plugin_id, permission, message)

    def check_network(self, host: str) -> None:
        """Raise if the plugin may not talk to *host*.

        Raises:
            PluginPermissionError: Network is not enabled, or *host* is not
                one of ``allowed_domains`` (or a subdomain of one).
        """
        network = self.permissions.network
        if network is None or not network.enabled:
            raise self._deny("network", "Network access not permitted")

        allowed = network.allowed_domains
        if allowed and not any(
            host == domain or host.endswith(f".{domain}") for domain in allowed
        ):
            raise self._deny(
                "network",
                f'Domain "{host}" not in allowlist: {", ".join(allowed)}',
            )

    def check_env(self, name: str) -> None:
        env = self.permissions.env
        if env is None or not env.read:
            raise self._deny("env", "Environment access not permitted")
        if env.vars and name not in env.vars:
            raise self._deny("env", f'Variable "{name}" not declared')

    def check_path(self, path: str | os.PathLike[str], write: bool = False) -> None:
        """Raise if the plugin may not read (or write) *path*.

        Declared paths may use ``~``. A path is allowed when it is one of the
        declared paths or lies beneath one.
        """
        fs = self.permissions.filesystem
        mode = "write" if write else "read"
        if fs is None or not (fs.write if write else fs.read):
            raise self._deny("filesystem", f"Filesystem {mode} not permitted")

        if not fs.paths:
            return

        target = Path(path).expanduser().resolve()
        for declared in fs.paths:
            root = Path(declared).expanduser().resolve()
            if target == root or root in target.parents:
                return
        raise self._deny("filesystem", f'Path "{target}" outside declared paths')


_active_guard: ContextVar[CapabilityGuard | None] = ContextVar(
    "tokentop_active_plugin_guard", default=None
)


def _as_permissions(permissions: PluginPermissions | Mapping[str, Any] | None) -> PluginPermissions:
    if permissions is None:
        return PluginPermissions()
    if isinstance(permissions, PluginPermissions):
        return permissions
    return PluginPermissions.from_dict(permissions)


def get_active_guard() -> CapabilityGuard | None:
    """Return the guard of the plugin currently executing, if any."""
    return _active_guard.get()


async def run_guarded(
    plugin_id: str,
    permissions: PluginPermissions | Mapping[str, Any],
    fn: Callable[[], Any],
) -> Any:
    """Run *fn* with *plugin_id*'s guard active.

    *fn* may return a plain value or an awaitable; awaitables are awaited
    inside the guard. Tasks created by *fn* inherit the guard. Nested calls
    use the innermost guard.
    """
    token = _active_guard.set(CapabilityGuard(plugin_id, _as_permissions(permissions)))
    try:
        result = fn()
        if inspect.isawaitable(result):
            result = await result
        return result
    finally:
        _active_guard.reset(token)


_loggers: dict[str, PluginLogger] = {}


def scoped_logger(plugin_id: str) -> PluginLogger:
    """Return the (cached) :class:`PluginLogger` for *plugin_id*."""
    plugin_logger = _loggers.get(plugin_id)
    if plugin_logger is None:
        plugin_logger = PluginLogger(plugin_id)
        _loggers[plugin_id] = plugin_logger
    return plugin_logger


def getenv(name: str, default: str | None = None) -> str | None:
    """Read an environment variable, enforcing the active guard.

    Outside plugin execution this is ``os.environ.get``.
    """
    guard = get_active_guard()
    if guard is not None:
        guard.check_env(name)
    return os.environ.get(name, default)


def scoped_http_client(
    plugin_id: str,
    permissions: PluginPermissions | Mapping[str, Any],
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` bound to a plugin's permissions.

    Every request is checked before it is sent. When a guard is active the
    executing plugin's permissions apply; otherwise the permissions the
    client was created with do.

    Raises (at request time):
        PluginPermissionError: The request is not covered by the
            permissions in effect.
    """
    owner = CapabilityGuard(plugin_id, _as_permissions(permissions))

    async def check_request(request: httpx.Request) -> None:
        guard = get_active_guard() or owner
        guard.check_network(request.url.host)

    hooks = kwargs.pop("event_hooks", {})
    request_hooks = [check_request, *hooks.get("request", [])]
    return httpx.AsyncClient(
        event_hooks={**hooks, "request": request_hooks},
        **kwargs,
    )


def deep_freeze(obj: Any, _memo: dict[int, Any] | None = None) -> Any:
    """Return a read-only view of *obj*.

    Mappings become ``MappingProxyType`` over frozen copies, lists and tuples
    become tuples, sets become frozensets. Other values are returned as-is.
    Mappings that reference themselves are supported.
    """
    memo = {} if _memo is None else _memo
    key = id(obj)
    if key in memo:
        return memo[key]

    if isinstance(obj, Mapping):
        frozen: dict[Any, Any] = {}
        proxy = MappingProxyType(frozen)
        memo[key] = proxy
        for k, v in obj.items():
            frozen[k] = deep_freeze(v, memo)
        return proxy
    if isinstance(obj, (list, tuple)):
        result = tuple(deep_freeze(v, memo) for v in obj)
        memo[key] = result
        return result
    if isinstance(obj, (set, frozenset)):
        result = frozenset(obj)
        memo[key] = result
        return result
    return obj


def create_plugin_context(
    plugin_id: str,
    permissions: PluginPermissions | Mapping[str, Any] | None,
    config: Mapping[str, Any] | None = None,
    signal: CancellationSignal | None = None,
) -> PluginContext:
    """Build the :class:`~tokentop.plugins.sdk.PluginContext` for a data call.

    The config is frozen, the logger is the plugin's scoped logger and
    ``http`` is a :func:`scoped_http_client` bound to *permissions*. Without
    an explicit *signal* the call gets a fresh
    ``PLUGIN_CONTEXT_TIMEOUT_SECONDS`` deadline.
    """
    return PluginContext(
        config=deep_freeze(dict(config or {})),
        logger=scoped_logger(plugin_id),
        http=scoped_http_client(plugin_id, _as_permissions(permissions)),
        signal=signal if signal is not None else CancellationSignal(timeout=PLUGIN_CONTEXT_TIMEOUT_SECONDS),
    )
