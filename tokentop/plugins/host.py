"""
Fault isolation for plugin calls.

Every call into plugin code goes through a :class:`PluginHost`, which:

    1. Converts any exception raised by the plugin into an
       :class:`InvokeResult` so it never reaches the caller.
    2. Counts consecutive failures per plugin and, once a plugin reaches the
       failure threshold, refuses to call it until a cooldown has elapsed
       (circuit breaker).
    3. Logs every failure through the plugin's scoped logger.

The host knows nothing about plugin types or lifecycle; it keys everything on
the plugin id. ``asyncio.CancelledError`` is a ``BaseException`` and is never
caught, so cancelling the caller still works.

Example:
    host = PluginHost()
    result = await host.invoke(plugin.id, "fetch_usage", lambda: plugin.fetch_usage(ctx))
    if result.ok:
        render(result.value)
    elif result.circuit_open:
        show_disabled_badge(plugin.id)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, TypeVar

from tokentop.plugins.errors import CircuitOpenError
from tokentop.plugins.guard import scoped_logger

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_COOLDOWN_SECONDS = 60.0


@dataclass
class CircuitState:
    """Per-plugin breaker bookkeeping.

    Attributes:
        consecutive_failures: Failures since the last success.
        total_failures: Failures over the process lifetime.
        total_calls: Calls attempted, including refused ones.
        last_failure_at: Epoch seconds of the last failure (0 if none).
        disabled_until: Epoch seconds until which calls are refused
            (0 when the circuit is closed).
    """

    consecutive_failures: int = 0
    total_failures: int = 0
    total_calls: int = 0
    last_failure_at: float = 0.0
    disabled_until: float = 0.0


@dataclass
class InvokeResult(Generic[T]):
    """Outcome of a guarded plugin call.

    Exactly one of ``value`` (when ``ok``) or ``error`` is meaningful.
    ``circuit_open`` is True only when the plugin was not called at all.
    """

    ok: bool
    value: T | None = None
    error: Exception | None = None
    circuit_open: bool = False


@dataclass
class PluginHealth:
    plugin_id: str
    healthy: bool
    consecutive_failures: int
    total_failures: int
    total_calls: int
    disabled_until: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "plugin_id": self.plugin_id,
            "healthy": self.healthy,
            "consecutive_failures": self.consecutive_failures,
            "total_failures": self.total_failures,
            "total_calls": self.total_calls,
            "disabled_until": self.disabled_until,
        }


def _format_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class PluginHost:
    """Circuit-breaking invoker for plugin calls.

    Attributes:
        failure_threshold: Consecutive failures that open a circuit.
        cooldown: Seconds an open circuit refuses calls.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the host.

        Args:
            failure_threshold: Consecutive failures before a plugin is disabled.
            cooldown: Seconds a disabled plugin stays disabled.
            clock: Returns the current time in epoch seconds. Tests pass a
                fake clock to step through cooldowns.
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._circuits: dict[str, CircuitState] = {}

    def _circuit(self, plugin_id: str) -> CircuitState:
        circuit = self._circuits.get(plugin_id)
        if circuit is None:
            circuit = CircuitState()
            self._circuits[plugin_id] = circuit
        return circuit

    def _before_call(self, plugin_id: str, method: str) -> InvokeResult[Any] | None:
        """Count the call and return a refusal if the circuit is open."""
        circuit = self._circuit(plugin_id)
        plugin_logger = scoped_logger(plugin_id)
        circuit.total_calls += 1
        now = self._clock()

        if circuit.disabled_until > now:
            plugin_logger.warning(
                f"Circuit open, skipping {method} "
                f"(disabled until {_format_ts(circuit.disabled_until)})"
            )
            return InvokeResult(
                ok=False,
                error=CircuitOpenError(plugin_id, circuit.consecutive_failures),
                circuit_open=True,
            )

        if circuit.disabled_until > 0:
            plugin_logger.info(f"Circuit half-open, retrying {method}")
        return None

    def _record_success(self, plugin_id: str, method: str) -> None:
        circuit = self._circuit(plugin_id)
        if circuit.consecutive_failures > 0:
            scoped_logger(plugin_id).info(
                f"{method} succeeded, resetting circuit breaker "
                f"(was at {circuit.consecutive_failures} failures)"
            )
        circuit.consecutive_failures = 0
        circuit.disabled_until = 0.0

    def _record_failure(self, plugin_id: str, method: str, error: Exception) -> None:
        circuit = self._circuit(plugin_id)
        plugin_logger = scoped_logger(plugin_id)
        now = self._clock()

        circuit.consecutive_failures += 1
        circuit.total_failures += 1
        circuit.last_failure_at = now

        plugin_logger.error(
            f"{method} failed ({circuit.consecutive_failures}/{self.failure_threshold})",
            data={"error": str(error) or type(error).__name__},
        )

        if circuit.consecutive_failures >= self.failure_threshold:
            circuit.disabled_until = now + self.cooldown
            plugin_logger.error(
                f"Circuit OPEN, plugin disabled for {self.cooldown:g}s after "
                f"{circuit.consecutive_failures} consecutive failures"
            )

    async def invoke(
        self,
        plugin_id: str,
        method: str,
        fn: Callable[[], Awaitable[T]],
    ) -> InvokeResult[T]:
        """Call *fn* under the breaker for *plugin_id*.

        Args:
            plugin_id: Key for circuit tracking and logging.
            method: Human-readable name of the call, used in log lines.
            fn: Zero-argument callable returning an awaitable.

        Returns:
            ``InvokeResult(ok=True, value=...)`` on success, otherwise
            ``ok=False`` with the error. Never raises for plugin failures.
        """
        refused = self._before_call(plugin_id, method)
        if refused is not None:
            return refused

        try:
            value = await fn()
        except Exception as e:
            self._record_failure(plugin_id, method, e)
            return InvokeResult(ok=False, error=e, circuit_open=False)

        self._record_success(plugin_id, method)
        return InvokeResult(ok=True, value=value)

    def invoke_sync(
        self,
        plugin_id: str,
        method: str,
        fn: Callable[[], T],
    ) -> InvokeResult[T]:
        """Synchronous :meth:`invoke` for plain plugin methods."""
        refused = self._before_call(plugin_id, method)
        if refused is not None:
            return refused

        try:
            value = fn()
        except Exception as e:
            self._record_failure(plugin_id, method, e)
            return InvokeResult(ok=False, error=e, circuit_open=False)

        self._record_success(plugin_id, method)
        return InvokeResult(ok=True, value=value)

    def health(self, plugin_id: str) -> PluginHealth:
        circuit = self._circuit(plugin_id)
        now = self._clock()
        return PluginHealth(
            plugin_id=plugin_id,
            healthy=(
                circuit.disabled_until < now
                and circuit.consecutive_failures < self.failure_threshold
            ),
            consecutive_failures=circuit.consecutive_failures,
            total_failures=circuit.total_failures,
            total_calls=circuit.total_calls,
            disabled_until=circuit.disabled_until if circuit.disabled_until > now else None,
        )

    def all_health(self) -> list[PluginHealth]:
        """Health of every plugin the host has seen, in first-seen order."""
        return [self.health(plugin_id) for plugin_id in list(self._circuits)]

    def reset(self, plugin_id: str) -> None:
        """Forget all breaker state for *plugin_id* (manual recovery)."""
        self._circuits.pop(plugin_id, None)

    def reset_all(self) -> None:
        self._circuits.clear()
