"""
tokentop CLI - Plugin Commands

Commands:
    list      - List the plugins the registry would load
    validate  - Load and validate a local plugin file or package
    updates   - Check remote plugins for newer releases
    test      - Send a test notification through a notification plugin
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from tokentop.cli import console, plugin_app
from tokentop.config import AppConfig, ConfigError, load_config
from tokentop.config.settings import settings
from tokentop.plugins.installer import PackageInstaller
from tokentop.plugins.loader import PluginLoader, validate_plugin
from tokentop.plugins.registry import PluginRegistry
from tokentop.plugins.runtime import PluginRuntime
from tokentop.plugins.sdk import PluginType
from tokentop.plugins.update_checker import UpdateChecker


def _load_app_config(ctx: typer.Context) -> AppConfig:
    from tokentop.cli.output import print_error

    path = (ctx.obj or {}).get("config_path", settings.config_path)
    try:
        return load_config(path)
    except ConfigError as e:
        print_error("Could not load configuration", details=str(e))
        raise typer.Exit(1)


def _build_registry() -> PluginRegistry:
    return PluginRegistry(
        loader=PluginLoader(plugins_dir=settings.plugins_dir),
        installer=PackageInstaller(target_dir=settings.remote_plugins_dir),
    )


@plugin_app.command("list")
def list_plugins(
    ctx: typer.Context,
    plugin_type: Optional[PluginType] = typer.Option(
        None,
        "--type",
        "-t",
        help="Only list plugins of this type.",
    ),
    extra: Optional[list[Path]] = typer.Option(
        None,
        "--plugin",
        "-p",
        help="Extra local plugin path (repeatable).",
    ),
    offline: bool = typer.Option(
        False,
        "--offline",
        help="Skip remote plugins.",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table, json.",
    ),
) -> None:
    """
    List plugins.

    Loads builtin, local and remote plugins the same way the dashboard
    does and shows the winning registration for each id.
    """
    from tokentop.cli.output import print_json, print_table

    config = _load_app_config(ctx)
    plugins_config = config.plugins
    if offline:
        plugins_config = plugins_config.model_copy(update={"remote": []})

    registry = _build_registry()
    asyncio.run(registry.initialize(plugins_config, cli_plugins=extra or []))

    plugins = (
        registry.get_all(plugin_type) if plugin_type is not None
        else registry.get_all_plugins()
    )

    if format == "json":
        data = [
            {
                "id": p.id,
                "type": p.type.value,
                "name": p.name,
                "version": p.version,
                "source": registry.get_source(p.type, p.id).value,
                "official": registry.is_official(p.type, p.id),
                "package": registry.get_package_name(p.type, p.id),
            }
            for p in plugins
        ]
        print_json({"plugins": data})
        return

    rows = []
    for p in plugins:
        source = registry.get_source(p.type, p.id).value
        if registry.is_official(p.type, p.id):
            source = f"[green]{source}[/green]"
        rows.append([p.id, p.type.value, p.name, p.version, source])

    print_table(
        "tokentop Plugins",
        [("ID", "cyan"), "Type", "Name", "Version", "Source"],
        rows,
        footer=f"Total: {len(plugins)} plugins",
    )


@plugin_app.command("validate")
def validate_plugin_command(
    path: Path = typer.Argument(
        ...,
        help="Path to a plugin file or package directory.",
    ),
) -> None:
    """
    Validate a plugin.

    Imports the plugin the way the registry would and reports every
    validation error and warning.
    """
    from tokentop.cli.output import print_error, print_success, print_warning

    console.print(f"Validating plugin at [cyan]{path}[/cyan]...")
    console.print()

    result = asyncio.run(PluginLoader().load_local_plugin(path))
    if not result.success:
        print_error("Plugin validation failed", details=result.error)
        raise typer.Exit(1)

    for warning in validate_plugin(result.plugin).warnings:
        print_warning(warning)

    plugin = result.plugin
    print_success(f"{plugin.type.value} plugin {plugin.id} ({plugin.name} {plugin.version}) is valid")


@plugin_app.command("updates")
def check_updates(
    ctx: typer.Context,
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table, json.",
    ),
) -> None:
    """
    Check remote plugins for updates.

    Compares each remote plugin's loaded version with the newest release
    on the package index.
    """
    from tokentop.cli.output import print_info, print_json, print_table

    config = _load_app_config(ctx)
    registry = _build_registry()
    checker = UpdateChecker(index_url=settings.PACKAGE_INDEX_URL)

    async def run() -> dict:
        await registry.initialize(config.plugins)
        return await checker.check_all_updates(registry)

    updates = asyncio.run(run())

    if format == "json":
        print_json({key: info.to_dict() for key, info in updates.items()})
        return

    if not updates:
        print_info("No remote plugins installed")
        return

    rows = []
    for key, info in updates.items():
        if info.error:
            status = f"[red]error: {info.error}[/red]"
        elif info.has_update:
            status = "[yellow]update available[/yellow]"
        else:
            status = "[green]up to date[/green]"
        rows.append([key, info.package_name, info.current_version, info.latest_version, status])

    print_table(
        "Plugin Updates",
        [("Plugin", "cyan"), "Package", "Current", "Latest", "Status"],
        rows,
    )


@plugin_app.command("test")
def test_notification(
    ctx: typer.Context,
    plugin_id: str = typer.Argument(
        ...,
        help="Id of the notification plugin.",
    ),
) -> None:
    """
    Send a test notification.

    Starts the plugin runtime, asks one notification plugin to deliver
    a test message, then shuts the runtime down.
    """
    from tokentop.cli.output import print_error, print_success

    config = _load_app_config(ctx)
    runtime = PluginRuntime()

    async def run() -> bool | None:
        await runtime.startup(config)
        try:
            if not runtime.registry.has(PluginType.NOTIFICATION, plugin_id):
                return None
            return await runtime.bus.send_test_notification(plugin_id)
        finally:
            await runtime.shutdown()

    delivered = asyncio.run(run())
    if delivered is None:
        print_error(
            f"Notification plugin not found: {plugin_id}",
            hint="Run 'tokentop plugin list --type notification' to see available ids",
        )
        raise typer.Exit(1)
    if not delivered:
        print_error(f"Plugin {plugin_id} did not deliver the test notification")
        raise typer.Exit(1)
    print_success(f"Test notification sent via {plugin_id}")
