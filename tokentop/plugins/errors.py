"""
Exception hierarchy for the tokentop plugin runtime.

Most of these never reach the host: the runtime converts per-plugin failures
into result objects (:class:`~tokentop.plugins.host.InvokeResult`,
:class:`~tokentop.plugins.loader.PluginLoadResult`) and logs them. They exist
so that the converted data still says *what* went wrong.

Hierarchy::

    PluginError
    +-- PluginValidationError   plugin object fails its shape checks at load
    +-- PluginDiscoveryError    a local/remote candidate failed to load or install
    +-- HookFailure             a hook raised
    |   +-- HookTimeoutError    a hook exceeded its time bound
    +-- CircuitOpenError        call short-circuited by the circuit breaker
    +-- PluginPermissionError   plugin touched an undeclared capability
    +-- RuntimeNotReadyError    runtime used before registration (programmer error)
"""

from __future__ import annotations


class PluginError(Exception):
    """Base class for all plugin runtime errors.

    Attributes:
        plugin_id: Id of the plugin involved, when known.
    """

    def __init__(self, message: str, plugin_id: str | None = None):
        self.plugin_id = plugin_id
        super().__init__(message)


class PluginValidationError(PluginError):
    """Raised when a plugin object fails validation.

    Attributes:
        errors: Every validation error found, in check order.
    """

    def __init__(self, errors: list[str], plugin_id: str | None = None):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid plugin", plugin_id)


class PluginDiscoveryError(PluginError):
    """Raised when a plugin candidate cannot be loaded or installed.

    Attributes:
        candidate: Path or package name that failed.
        reason: Reason for the failure.
        original: Original exception if any.
    """

    def __init__(
        self,
        candidate: str,
        reason: str,
        original: Exception | None = None,
    ):
        self.candidate = candidate
        self.reason = reason
        self.original = original
        super().__init__(f"Failed to load plugin from '{candidate}': {reason}")


class HookFailure(PluginError):
    """A lifecycle or notification hook raised."""

    def __init__(self, plugin_id: str, hook: str, reason: str):
        self.hook = hook
        super().__init__(f'Plugin "{plugin_id}" hook "{hook}" failed: {reason}', plugin_id)


class HookTimeoutError(HookFailure):
    """A hook did not settle within its time bound."""

    def __init__(self, plugin_id: str, hook: str, timeout: float):
        self.timeout = timeout
        super().__init__(plugin_id, hook, f"timed out after {timeout:g}s")


class CircuitOpenError(PluginError):
    """The circuit breaker refused to call into a plugin.

    Distinct from :class:`HookFailure`: the plugin code was never run.
    """

    def __init__(self, plugin_id: str, consecutive_failures: int):
        self.consecutive_failures = consecutive_failures
        super().__init__(
            f'Plugin "{plugin_id}" is temporarily disabled after '
            f"{consecutive_failures} consecutive failures",
            plugin_id,
        )


class PluginPermissionError(PluginError):
    """A plugin used a capability it did not declare.

    Attributes:
        permission: The permission group that was violated
            (``network``, ``filesystem``, ``env``, ``system``).
    """

    def __init__(self, plugin_id: str, permission: str, message: str):
        self.permission = permission
        super().__init__(f'Plugin "{plugin_id}" permission denied: {message}', plugin_id)


class RuntimeNotReadyError(PluginError):
    """A runtime component was used before it was set up."""
