"""
tokentop CLI - Configuration Commands

Commands:
    show  - Print the effective configuration
    path  - Print the configuration file location
    init  - Write a default configuration file
"""

from __future__ import annotations

import typer

from tokentop.cli import config_app, console
from tokentop.config import AppConfig, ConfigError, load_config, save_config
from tokentop.config.settings import settings


@config_app.command("show")
def show_config(ctx: typer.Context) -> None:
    """
    Display the effective configuration.

    Missing keys are filled with defaults, exactly as the dashboard sees
    them.
    """
    from tokentop.cli.output import print_error, print_json

    path = (ctx.obj or {}).get("config_path", settings.config_path)
    try:
        config = load_config(path, strict=True)
    except ConfigError as e:
        print_error("Invalid configuration", details=str(e))
        raise typer.Exit(1)
    print_json(config.model_dump(mode="json", by_alias=True))


@config_app.command("path")
def config_path(ctx: typer.Context) -> None:
    """Print the configuration file location."""
    console.print(str((ctx.obj or {}).get("config_path", settings.config_path)))


@config_app.command("init")
def init_config(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite an existing configuration file.",
    ),
) -> None:
    """Write a configuration file containing the defaults."""
    from tokentop.cli.output import print_success, print_warning

    path = (ctx.obj or {}).get("config_path", settings.config_path)
    if path.exists() and not force:
        print_warning(f"Configuration already exists at {path}")
        print_warning("Use --force to overwrite")
        raise typer.Exit(1)

    save_config(AppConfig(), path)
    print_success(f"Wrote default configuration to {path}")
