"""
Root Typer application for the nexus-spine CLI.

Runs enrichment sources by hand, outside the scheduler::

    nexus-spine sources
    nexus-spine enrich sec-edgar fcc-licenses
    nexus-spine enrich --all --database /tmp/content.db --json

Exit codes:
    0  every requested source completed (per-entity errors are still 0)
    1  at least one source raised (for example a content-store failure)
    2  an unknown source name was requested
"""

from __future__ import annotations

import asyncio
from typing import Any

import typer
from typer import Typer

from nexus_spine import __version__
from nexus_spine.cli.utils import print_error, print_json, print_summary, print_table
from nexus_spine.core.errors import UnknownSourceError
from nexus_spine.core.logging import configure_logging
from nexus_spine.core.settings import NexusSettings, get_settings
from nexus_spine.domains.enrichment import build_adapter
from nexus_spine.execution.batch import BatchSummary
from nexus_spine.execution.runner import create_runner
from nexus_spine.framework.registry import list_adapters
from nexus_spine.framework.sources.http import HttpJsonClient

app = Typer(
    name="nexus-spine",
    help="nexus-spine: resilient data enrichment for the space-industry dashboard.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"nexus-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """nexus-spine CLI: list and run enrichment sources."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("sources")
def sources_command(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List registered enrichment sources."""
    settings = get_settings()
    rows: list[dict[str, Any]] = []
    for name in list_adapters():
        adapter = build_adapter(name, settings)
        config = adapter.config
        rows.append(
            {
                "name": name,
                "entities": len(adapter.entities()),
                "delay_seconds": config.delay_seconds,
                "timeout_seconds": config.request_timeout,
                "abort_on_rate_limit": config.abort_on_rate_limit,
                "section": config.section,
            }
        )

    if as_json:
        print_json(rows)
    else:
        print_table(rows, title="Enrichment sources")


@app.command("enrich")
def enrich_command(
    sources: list[str] | None = typer.Argument(None, help="Source names to run."),
    run_all: bool = typer.Option(False, "--all", help="Run every registered source."),
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite content store path."),
    as_json: bool = typer.Option(False, "--json", help="Output summaries as JSON."),
) -> None:
    """Run one or more enrichment sources and print their batch summaries."""
    names = list_adapters() if run_all else list(dict.fromkeys(sources or []))
    if not names:
        print_error("enrich", ValueError("name at least one source, or pass --all"))
        raise typer.Exit(code=2)

    available = list_adapters()
    unknown = [name for name in names if name not in available]
    if unknown:
        for name in unknown:
            print_error("enrich", UnknownSourceError(name, available=available))
        raise typer.Exit(code=2)

    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_path": database})

    results = asyncio.run(_run_sources(names, settings))

    failed = False
    payload: dict[str, Any] = {}
    for name, outcome in results.items():
        if isinstance(outcome, BatchSummary):
            payload[name] = outcome.to_dict()
            if not as_json:
                print_summary(outcome)
        else:
            failed = True
            payload[name] = {"error": str(outcome), "error_type": type(outcome).__name__}
            print_error(name, outcome)

    if as_json:
        print_json(payload)
    if failed:
        raise typer.Exit(code=1)


async def _run_sources(
    names: list[str], settings: NexusSettings
) -> dict[str, BatchSummary | Exception]:
    runner = create_runner(settings)
    try:
        async with HttpJsonClient(user_agent=settings.user_agent) as client:
            adapters = [build_adapter(name, settings, client=client) for name in names]
            return await runner.run_many(adapters)
    finally:
        close = getattr(runner.store, "close", None)
        if close is not None:
            close()


if __name__ == "__main__":
    app()
