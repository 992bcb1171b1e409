"""
tokentop - Command Line Interface

Plugin and configuration management for tokentop. Built with Typer for
the command surface and Rich for output.

Usage:
    $ tokentop --help
    $ tokentop plugin list --type theme
    $ tokentop plugin validate ~/.config/tokentop/plugins/my_theme.py
    $ tokentop --config ./config.json config show

Sub-command Groups:
    plugin   - Plugin listing, validation, update checks, test notifications
    config   - Show, locate and initialize config.json
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from tokentop import __version__
from tokentop.config.settings import settings

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="tokentop",
    help="tokentop - AI token usage dashboard",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

plugin_app = typer.Typer(
    name="plugin",
    help="Plugin management commands",
    no_args_is_help=True,
)

config_app = typer.Typer(
    name="config",
    help="Configuration file commands",
    no_args_is_help=True,
)

app.add_typer(plugin_app, name="plugin")
app.add_typer(config_app, name="config")


def version_callback(value: bool) -> None:
    if value:
        console.print(f"tokentop version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log at DEBUG level (overrides TOKENTOP_LOG_LEVEL).",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.json (default: TOKENTOP_CONFIG_PATH).",
    ),
) -> None:
    """
    tokentop - AI token usage dashboard

    Manage the plugins that feed usage data, themes and alerts into
    the dashboard.
    """
    level = logging.DEBUG if verbose else settings.TOKENTOP_LOG_LEVEL
    logging.basicConfig(level=level, format=LOG_FORMAT)
    ctx.obj = {"config_path": config_file.expanduser() if config_file else settings.config_path}


def _register_subcommands() -> None:
    from tokentop.cli import config  # noqa: F401
    from tokentop.cli import plugins  # noqa: F401


__all__ = [
    "app",
    "cli",
    "config_app",
    "plugin_app",
    "console",
    "err_console",
]


def cli() -> None:
    """Console script entry point."""
    _register_subcommands()
    app()


if __name__ == "__main__":
    cli()
