"""
tokentop CLI - Rich Output Helpers

Tables and JSON go to stdout, errors to stderr. Status lines share one
``Label: message`` format so scripts can grep them.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional, Sequence, Union

from rich.console import Console
from rich.json import JSON
from rich.table import Table

from tokentop.cli import console, err_console

Column = Union[str, tuple[str, Optional[str]]]


def print_table(
    title: str,
    columns: Sequence[Column],
    rows: Iterable[Sequence[Any]],
    footer: Optional[str] = None,
) -> None:
    """
    Print a rich table.

    Args:
        title: Table title
        columns: Header names, or ``(header, style)`` pairs
        rows: Cell values; converted with ``str``, ``None`` shown as ``-``
        footer: Optional dimmed line printed under the table
    """
    table = Table(title=title)
    for column in columns:
        header, style = (column, None) if isinstance(column, str) else column
        table.add_column(header, style=style)

    width = len(columns)
    for row in rows:
        cells = ["-" if cell is None else str(cell) for cell in row][:width]
        table.add_row(*cells, *[""] * (width - len(cells)))

    console.print(table)
    if footer:
        console.print()
        console.print(f"[dim]{footer}[/dim]")


def print_json(data: Any, indent: int = 2) -> None:
    """Print *data* as highlighted JSON."""
    console.print(JSON(json.dumps(data, indent=indent, default=str)))


def _status(target: Console, label: str, color: str, message: str) -> None:
    target.print(f"[bold {color}]{label}:[/bold {color}] {message}")


def print_error(
    message: str,
    details: Optional[str] = None,
    hint: Optional[str] = None,
) -> None:
    """
    Print an error to stderr.

    Args:
        message: One-line summary
        details: Underlying error text, printed dimmed
        hint: Suggested fix
    """
    _status(err_console, "Error", "red", message)
    if details:
        err_console.print(f"[dim]{details}[/dim]", highlight=False)
    if hint:
        _status(err_console, "Hint", "yellow", hint)


def print_success(message: str) -> None:
    _status(console, "Success", "green", message)


def print_warning(message: str) -> None:
    _status(console, "Warning", "yellow", message)


def print_info(message: str) -> None:
    _status(console, "Info", "blue", message)
