"""Tests for tokentop.plugins.guard - capability guard."""

from __future__ import annotations

import asyncio
from types import MappingProxyType

import httpx
import pytest

from tokentop.plugins.errors import PluginPermissionError
from tokentop.plugins.guard import (
    PLUGIN_CONTEXT_TIMEOUT_SECONDS,
    CapabilityGuard,
    create_plugin_context,
    deep_freeze,
    get_active_guard,
    getenv,
    run_guarded,
    scoped_http_client,
    scoped_logger,
)
from tokentop.plugins.sdk import (
    CancellationSignal,
    EnvPermission,
    FilesystemPermission,
    NetworkPermission,
    PluginContext,
    PluginPermissions,
)


ANTHROPIC_ONLY = PluginPermissions(
    network=NetworkPermission(enabled=True, allowed_domains=("anthropic.com",)),
)


def ok_transport() -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(200, json={"host": request.url.host}))


# ===========================================================================
# CapabilityGuard
# ===========================================================================


class TestNetworkChecks:

    def test_no_network_permission(self):
        guard = CapabilityGuard("p1", PluginPermissions())
        with pytest.raises(PluginPermissionError) as exc_info:
            guard.check_network("api.anthropic.com")
        assert exc_info.value.permission == "network"
        assert "Network access not permitted" in str(exc_info.value)

    def test_disabled_network_permission(self):
        guard = CapabilityGuard("p1", PluginPermissions(network=NetworkPermission(enabled=False)))
        with pytest.raises(PluginPermissionError):
            guard.check_network("example.com")

    def test_exact_domain_allowed(self):
        CapabilityGuard("p1", ANTHROPIC_ONLY).check_network("anthropic.com")

    def test_subdomain_allowed(self):
        CapabilityGuard("p1", ANTHROPIC_ONLY).check_network("api.anthropic.com")

    def test_lookalike_domain_denied(self):
        guard = CapabilityGuard("p1", ANTHROPIC_ONLY)
        with pytest.raises(PluginPermissionError) as exc_info:
            guard.check_network("evilanthropic.com")
        assert 'Domain "evilanthropic.com" not in allowlist: anthropic.com' in str(exc_info.value)

    def test_empty_allowlist_allows_everything(self):
        guard = CapabilityGuard("p1", PluginPermissions(network=NetworkPermission(enabled=True)))
        guard.check_network("example.org")


class TestEnvChecks:

    def test_no_env_permission(self):
        with pytest.raises(PluginPermissionError):
            CapabilityGuard("p1", PluginPermissions()).check_env("HOME")

    def test_declared_variable(self):
        perms = PluginPermissions(env=EnvPermission(read=True, vars=("OPENAI_API_KEY",)))
        guard = CapabilityGuard("p1", perms)
        guard.check_env("OPENAI_API_KEY")
        with pytest.raises(PluginPermissionError):
            guard.check_env("AWS_SECRET_ACCESS_KEY")

    def test_read_without_var_list_allows_all(self):
        CapabilityGuard("p1", PluginPermissions(env=EnvPermission(read=True))).check_env("ANY")


class TestPathChecks:

    def test_read_inside_declared_path(self, tmp_path):
        perms = PluginPermissions(filesystem=FilesystemPermission(read=True, paths=(str(tmp_path),)))
        guard = CapabilityGuard("p1", perms)
        guard.check_path(tmp_path / "sessions" / "a.jsonl")
        guard.check_path(tmp_path)

    def test_read_outside_declared_path(self, tmp_path):
        allowed = tmp_path / "allowed"
        perms = PluginPermissions(filesystem=FilesystemPermission(read=True, paths=(str(allowed),)))
        with pytest.raises(PluginPermissionError) as exc_info:
            CapabilityGuard("p1", perms).check_path(tmp_path / "other" / "x")
        assert exc_info.value.permission == "filesystem"

    def test_write_requires_write_flag(self, tmp_path):
        perms = PluginPermissions(filesystem=FilesystemPermission(read=True, paths=(str(tmp_path),)))
        guard = CapabilityGuard("p1", perms)
        with pytest.raises(PluginPermissionError):
            guard.check_path(tmp_path / "out.txt", write=True)


# ===========================================================================
# run_guarded / getenv
# ===========================================================================


class TestRunGuarded:

    @pytest.mark.asyncio
    async def test_guard_active_only_during_call(self):
        seen = []

        async def call():
            seen.append(get_active_guard())
            return "done"

        assert get_active_guard() is None
        assert await run_guarded("p1", ANTHROPIC_ONLY, call) == "done"
        assert seen[0].plugin_id == "p1"
        assert get_active_guard() is None

    @pytest.mark.asyncio
    async def test_sync_function(self):
        result = await run_guarded("p1", PluginPermissions(), lambda: get_active_guard().plugin_id)
        assert result == "p1"

    @pytest.mark.asyncio
    async def test_guard_reset_after_exception(self):
        async def call():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await run_guarded("p1", PluginPermissions(), call)
        assert get_active_guard() is None

    @pytest.mark.asyncio
    async def test_concurrent_calls_see_their_own_guard(self):
        async def whoami():
            await asyncio.sleep(0)
            return get_active_guard().plugin_id

        results = await asyncio.gather(
            run_guarded("a", PluginPermissions(), whoami),
            run_guarded("b", PluginPermissions(), whoami),
        )
        assert results == ["a", "b"]

    @pytest.mark.asyncio
    async def test_getenv_enforced_inside_guard(self, monkeypatch):
        monkeypatch.setenv("TOKENTOP_TEST_SECRET", "s3cret")
        assert getenv("TOKENTOP_TEST_SECRET") == "s3cret"

        with pytest.raises(PluginPermissionError):
            await run_guarded("p1", PluginPermissions(), lambda: getenv("TOKENTOP_TEST_SECRET"))

        perms = PluginPermissions(env=EnvPermission(read=True, vars=("TOKENTOP_TEST_SECRET",)))
        value = await run_guarded("p1", perms, lambda: getenv("TOKENTOP_TEST_SECRET"))
        assert value == "s3cret"

    @pytest.mark.asyncio
    async def test_mapping_permissions(self):
        perms = {"network": {"enabled": True, "allowedDomains": ["api.anthropic.com"]}}
        guard = await run_guarded("p1", perms, get_active_guard)
        assert guard.permissions.network.allowed_domains == ("api.anthropic.com",)
        assert guard.permissions.env is None
        guard.check_network("api.anthropic.com")
        with pytest.raises(PluginPermissionError):
            guard.check_network("example.com")

    def test_permissions_dict_round_trip(self):
        perms = PluginPermissions(env=EnvPermission(read=True, vars=("HOME",)))
        assert PluginPermissions.from_dict(perms.to_dict()) == perms


# ===========================================================================
# scoped_http_client
# ===========================================================================


class TestScopedHttpClient:

    @pytest.mark.asyncio
    async def test_allowed_request(self):
        async with scoped_http_client("p1", ANTHROPIC_ONLY, transport=ok_transport()) as client:
            resp = await client.get("https://api.anthropic.com/v1/usage")
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_denied_request(self):
        async with scoped_http_client("p1", ANTHROPIC_ONLY, transport=ok_transport()) as client:
            with pytest.raises(PluginPermissionError):
                await client.get("https://example.com/")

    @pytest.mark.asyncio
    async def test_active_guard_takes_precedence(self):
        client = scoped_http_client("p1", ANTHROPIC_ONLY, transport=ok_transport())
        async with client:
            with pytest.raises(PluginPermissionError) as exc_info:
                await run_guarded(
                    "other",
                    PluginPermissions(),
                    lambda: client.get("https://api.anthropic.com/"),
                )
        assert exc_info.value.plugin_id == "other"

    @pytest.mark.asyncio
    async def test_extra_request_hooks_kept(self):
        seen = []

        async def record(request):
            seen.append(request.url.host)

        client = scoped_http_client(
            "p1",
            ANTHROPIC_ONLY,
            transport=ok_transport(),
            event_hooks={"request": [record]},
        )
        async with client:
            await client.get("https://anthropic.com/")
        assert seen == ["anthropic.com"]


# ===========================================================================
# deep_freeze / scoped_logger
# ===========================================================================


class TestDeepFreeze:

    def test_nested_structures(self):
        frozen = deep_freeze({"a": {"b": [1, {"c": 2}]}, "tags": {"x"}})
        assert isinstance(frozen, MappingProxyType)
        assert isinstance(frozen["a"], MappingProxyType)
        items = frozen["a"]["b"]
        assert isinstance(items, tuple)
        assert items[0] == 1
        assert dict(items[1]) == {"c": 2}
        assert frozen["tags"] == frozenset({"x"})

    def test_mutation_rejected(self):
        frozen = deep_freeze({"a": {"b": 1}})
        with pytest.raises(TypeError):
            frozen["a"]["b"] = 2

    def test_original_untouched(self):
        original = {"a": [1, 2]}
        deep_freeze(original)
        original["a"].append(3)
        assert original == {"a": [1, 2, 3]}

    def test_self_reference(self):
        data: dict = {"name": "loop"}
        data["self"] = data
        frozen = deep_freeze(data)
        assert frozen["self"] is frozen

    def test_scalars_returned_as_is(self):
        assert deep_freeze(3) == 3
        assert deep_freeze("x") == "x"
        assert deep_freeze(None) is None


class TestScopedLogger:

    def test_cached_per_plugin(self):
        assert scoped_logger("p1") is scoped_logger("p1")
        assert scoped_logger("p1") is not scoped_logger("p2")

    def test_prefix_and_data(self, caplog):
        with caplog.at_level("INFO", logger="tokentop.plugin.logger-test"):
            scoped_logger("logger-test").info("hello", data={"n": 1})
        assert '[logger-test] hello {"n": 1}' in caplog.text


# ===========================================================================
# create_plugin_context
# ===========================================================================


class TestCreatePluginContext:

    @pytest.mark.asyncio
    async def test_http_client_enforces_permissions(self):
        ctx = create_plugin_context("p1", ANTHROPIC_ONLY)
        assert isinstance(ctx, PluginContext)
        async with ctx.http:
            with pytest.raises(PluginPermissionError) as exc_info:
                await ctx.http.get("https://evil.example.com/steal")
        assert exc_info.value.plugin_id == "p1"

    @pytest.mark.asyncio
    async def test_no_permissions_denies_network(self):
        ctx = create_plugin_context("p1", None)
        async with ctx.http:
            with pytest.raises(PluginPermissionError):
                await ctx.http.get("https://api.anthropic.com/")

    def test_config_frozen(self):
        source = {"apiKey": "k", "models": ["a"]}
        ctx = create_plugin_context("p1", ANTHROPIC_ONLY, config=source)
        with pytest.raises(TypeError):
            ctx.config["apiKey"] = "changed"
        assert ctx.config["models"] == ("a",)
        source["apiKey"] = "changed"
        assert ctx.config["apiKey"] == "k"

    def test_logger_is_scoped(self, caplog):
        ctx = create_plugin_context("ctx-test", ANTHROPIC_ONLY)
        assert ctx.logger is scoped_logger("ctx-test")
        with caplog.at_level("INFO", logger="tokentop.plugin.ctx-test"):
            ctx.logger.info("fetching")
        assert "[ctx-test] fetching" in caplog.text

    def test_default_signal_deadline(self):
        ctx = create_plugin_context("p1", ANTHROPIC_ONLY)
        assert ctx.signal.aborted is False
        assert 0 < ctx.signal.remaining <= PLUGIN_CONTEXT_TIMEOUT_SECONDS

    def test_explicit_signal_kept(self):
        signal = CancellationSignal()
        ctx = create_plugin_context("p1", ANTHROPIC_ONLY, signal=signal)
        assert ctx.signal is signal
        assert dict(ctx.config) == {}
