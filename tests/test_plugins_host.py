"""Tests for tokentop.plugins.host - circuit-breaking plugin invoker."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from tokentop.plugins.errors import CircuitOpenError
from tokentop.plugins.host import InvokeResult, PluginHost


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def failing(message: str = "boom") -> AsyncMock:
    return AsyncMock(side_effect=RuntimeError(message))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def host(clock):
    return PluginHost(clock=clock)


# ===========================================================================
# invoke
# ===========================================================================


class TestInvoke:

    @pytest.mark.asyncio
    async def test_success_returns_value(self, host):
        result = await host.invoke("p1", "fetch_usage", AsyncMock(return_value=42))
        assert result == InvokeResult(ok=True, value=42)

    @pytest.mark.asyncio
    async def test_failure_is_returned_not_raised(self, host):
        result = await host.invoke("p1", "fetch_usage", failing("kaput"))
        assert result.ok is False
        assert result.circuit_open is False
        assert isinstance(result.error, RuntimeError)
        assert str(result.error) == "kaput"

    @pytest.mark.asyncio
    async def test_failure_counts(self, host):
        await host.invoke("p1", "m", failing())
        await host.invoke("p1", "m", failing())
        health = host.health("p1")
        assert health.consecutive_failures == 2
        assert health.total_failures == 2
        assert health.total_calls == 2
        assert health.healthy is True

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, host):
        await host.invoke("p1", "m", failing())
        await host.invoke("p1", "m", failing())
        await host.invoke("p1", "m", AsyncMock(return_value=None))
        health = host.health("p1")
        assert health.consecutive_failures == 0
        assert health.total_failures == 2
        assert health.total_calls == 3

    @pytest.mark.asyncio
    async def test_plugins_are_tracked_independently(self, host):
        for _ in range(5):
            await host.invoke("bad", "m", failing())
        result = await host.invoke("good", "m", AsyncMock(return_value="ok"))
        assert result.ok is True
        assert host.health("good").healthy is True
        assert host.health("bad").healthy is False

    @pytest.mark.asyncio
    async def test_cancelled_error_propagates(self, host):
        fn = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await host.invoke("p1", "m", fn)
        assert host.health("p1").total_failures == 0

    @pytest.mark.asyncio
    async def test_failure_logged_through_plugin_logger(self, host, caplog):
        with caplog.at_level(logging.ERROR, logger="tokentop.plugin.p1"):
            await host.invoke("p1", "fetch_usage", failing("kaput"))
        assert "[p1] fetch_usage failed (1/5)" in caplog.text
        assert '"error": "kaput"' in caplog.text


# ===========================================================================
# Circuit breaker
# ===========================================================================


class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, host):
        fn = failing()
        for _ in range(5):
            result = await host.invoke("p1", "m", fn)
            assert result.ok is False
            assert result.circuit_open is False
        assert fn.await_count == 5

        result = await host.invoke("p1", "m", fn)
        assert result.ok is False
        assert result.circuit_open is True
        assert isinstance(result.error, CircuitOpenError)
        assert fn.await_count == 5

    @pytest.mark.asyncio
    async def test_refused_calls_count_as_calls(self, host):
        for _ in range(6):
            await host.invoke("p1", "m", failing())
        health = host.health("p1")
        assert health.total_calls == 6
        assert health.total_failures == 5

    @pytest.mark.asyncio
    async def test_circuit_open_error_message(self, host):
        for _ in range(5):
            await host.invoke("acme", "m", failing())
        result = await host.invoke("acme", "m", failing())
        assert str(result.error) == (
            'Plugin "acme" is temporarily disabled after 5 consecutive failures'
        )

    @pytest.mark.asyncio
    async def test_cooldown_then_recovery(self, host, clock):
        for _ in range(5):
            await host.invoke("p1", "m", failing())
        assert host.health("p1").disabled_until == clock.now + 60

        clock.advance(59)
        fixed = AsyncMock(return_value="back")
        result = await host.invoke("p1", "m", fixed)
        assert result.circuit_open is True
        fixed.assert_not_awaited()

        clock.advance(2)
        result = await host.invoke("p1", "m", fixed)
        assert result.ok is True
        assert result.value == "back"
        fixed.assert_awaited_once()

        health = host.health("p1")
        assert health.consecutive_failures == 0
        assert health.disabled_until is None
        assert health.healthy is True

    @pytest.mark.asyncio
    async def test_failed_probe_reopens_immediately(self, host, clock):
        for _ in range(5):
            await host.invoke("p1", "m", failing())
        clock.advance(61)

        result = await host.invoke("p1", "m", failing())
        assert result.circuit_open is False
        assert host.health("p1").consecutive_failures == 6

        result = await host.invoke("p1", "m", failing())
        assert result.circuit_open is True

    @pytest.mark.asyncio
    async def test_half_open_is_logged(self, host, clock, caplog):
        for _ in range(5):
            await host.invoke("p1", "m", failing())
        clock.advance(61)
        with caplog.at_level(logging.INFO, logger="tokentop.plugin.p1"):
            await host.invoke("p1", "fetch_usage", AsyncMock(return_value=None))
        assert "Circuit half-open, retrying fetch_usage" in caplog.text

    @pytest.mark.asyncio
    async def test_custom_threshold(self, clock):
        host = PluginHost(failure_threshold=2, cooldown=10, clock=clock)
        await host.invoke("p1", "m", failing())
        await host.invoke("p1", "m", failing())
        result = await host.invoke("p1", "m", failing())
        assert result.circuit_open is True
        assert host.health("p1").disabled_until == clock.now + 10

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            PluginHost(failure_threshold=0)


# ===========================================================================
# invoke_sync
# ===========================================================================


class TestInvokeSync:

    def test_success(self, host):
        result = host.invoke_sync("p1", "supports", lambda: True)
        assert result.ok is True
        assert result.value is True

    def test_failure_shares_bookkeeping_with_async(self, host):
        fn = MagicMock(side_effect=ValueError("bad predicate"))
        for _ in range(5):
            host.invoke_sync("p1", "supports", fn)
        result = host.invoke_sync("p1", "supports", fn)
        assert result.circuit_open is True
        assert fn.call_count == 5

    @pytest.mark.asyncio
    async def test_async_failures_open_sync_circuit(self, host):
        for _ in range(5):
            await host.invoke("p1", "notify", failing())
        fn = MagicMock(return_value=True)
        result = host.invoke_sync("p1", "supports", fn)
        assert result.circuit_open is True
        fn.assert_not_called()


# ===========================================================================
# Health and reset
# ===========================================================================


class TestHealth:

    def test_unknown_plugin_is_healthy(self, host):
        health = host.health("never-called")
        assert health.healthy is True
        assert health.total_calls == 0
        assert health.disabled_until is None

    @pytest.mark.asyncio
    async def test_all_health_in_first_seen_order(self, host):
        await host.invoke("b", "m", AsyncMock())
        await host.invoke("a", "m", AsyncMock())
        assert [h.plugin_id for h in host.all_health()] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_to_dict(self, host, clock):
        for _ in range(5):
            await host.invoke("p1", "m", failing())
        data = host.health("p1").to_dict()
        assert data == {
            "plugin_id": "p1",
            "healthy": False,
            "consecutive_failures": 5,
            "total_failures": 5,
            "total_calls": 5,
            "disabled_until": clock.now + 60,
        }

    @pytest.mark.asyncio
    async def test_reset_closes_circuit(self, host):
        for _ in range(5):
            await host.invoke("p1", "m", failing())
        host.reset("p1")
        result = await host.invoke("p1", "m", AsyncMock(return_value=1))
        assert result.ok is True
        assert host.health("p1").total_calls == 1

    @pytest.mark.asyncio
    async def test_reset_all(self, host):
        await host.invoke("a", "m", failing())
        await host.invoke("b", "m", failing())
        host.reset_all()
        assert host.all_health() == []
