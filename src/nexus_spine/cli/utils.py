"""
CLI output helpers.
"""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from nexus_spine.execution.batch import BatchSummary

console = Console()
err_console = Console(stderr=True)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of flat dicts as a rich table (columns from the first row)."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False)
    for column in rows[0]:
        table.add_column(column.replace("_", " ").title())
    for row in rows:
        table.add_row(*(_fmt(v) for v in row.values()))
    console.print(table)


def print_summary(summary: BatchSummary) -> None:
    """Render one batch summary: a status line plus its error entries."""
    style = "yellow" if summary.errors or summary.aborted else "green"
    duration = summary.duration_seconds
    console.print(
        f"[bold {style}]{summary.source}[/bold {style}] "
        f"fetched={summary.fetched}/{summary.total} stored={summary.stored} "
        f"errors={len(summary.errors)} skipped={summary.skipped} "
        f"cache_hits={summary.cache_hits}"
        + (" [red]aborted[/red]" if summary.aborted else "")
        + (f" [dim]({duration:.1f}s)[/dim]" if duration is not None else "")
    )
    for error in summary.errors:
        console.print(f"  [red]•[/red] {error}")


def print_error(source: str, error: BaseException) -> None:
    err_console.print(f"[bold red]Error[/bold red] {source}: {error}")


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)
