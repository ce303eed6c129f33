"""
Tests for the nexus-spine Typer CLI.

Batch execution is patched out (``_run_sources``) except in
``TestRunSources``, which drives the real runner against a throwaway
adapter and a temporary SQLite file.
"""

from __future__ import annotations

import json
import logging
from unittest.mock import patch

import pytest
import structlog
from typer.testing import CliRunner

from nexus_spine import __version__
from nexus_spine.cli import app as cli_app
from nexus_spine.core.errors import StorageError
from nexus_spine.core.settings import NexusSettings
from nexus_spine.execution.batch import BatchSummary
from nexus_spine.framework.sources.protocol import EnrichmentAdapter, SourceConfig

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging():
    """The app callback points logging at the runner's stderr; undo it."""
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


def _summary(source: str, **kwargs) -> BatchSummary:
    return BatchSummary(source=source, total=kwargs.pop("total", 2), **kwargs)


class FakeRunSources:
    """Async stand-in for ``_run_sources`` that records what it was asked to run."""

    def __init__(self, outcomes: dict):
        self.outcomes = outcomes
        self.calls: list[tuple[list[str], NexusSettings]] = []

    async def __call__(self, names, settings):
        self.calls.append((names, settings))
        return {name: self.outcomes[name] for name in names}


class TestVersionAndHelp:
    def test_version(self):
        result = runner.invoke(cli_app.app, ["--version"])
        assert result.exit_code == 0
        assert result.output.strip() == f"nexus-spine {__version__}"

    def test_help_lists_commands(self):
        result = runner.invoke(cli_app.app, ["--help"])
        assert result.exit_code == 0
        assert "enrich" in result.output
        assert "sources" in result.output


class TestSourcesCommand:
    def test_sources_json(self):
        result = runner.invoke(cli_app.app, ["sources", "--json"])
        assert result.exit_code == 0
        rows = json.loads(result.output)
        by_name = {row["name"]: row for row in rows}
        assert list(by_name) == ["fcc-licenses", "github-activity", "sec-edgar", "uspto-patents"]
        assert by_name["github-activity"]["abort_on_rate_limit"] is True
        assert by_name["sec-edgar"]["entities"] == 14
        assert by_name["uspto-patents"]["timeout_seconds"] == 20.0

    def test_sources_table(self):
        result = runner.invoke(cli_app.app, ["sources"])
        assert result.exit_code == 0
        assert "sec-edgar" in result.output

    def test_sources_reflect_env_overrides(self, monkeypatch):
        monkeypatch.setenv("NEXUS_SOURCES__SEC_EDGAR__DELAY_SECONDS", "4")
        result = runner.invoke(cli_app.app, ["sources", "--json"])
        rows = {row["name"]: row for row in json.loads(result.output)}
        assert rows["sec-edgar"]["delay_seconds"] == 4.0


class TestEnrichCommand:
    def test_requires_a_source(self):
        result = runner.invoke(cli_app.app, ["enrich"])
        assert result.exit_code == 2
        assert "--all" in result.output

    def test_unknown_source(self):
        fake = FakeRunSources({})
        with patch.object(cli_app, "_run_sources", fake):
            result = runner.invoke(cli_app.app, ["enrich", "spacetrack"])
        assert result.exit_code == 2
        assert "Unknown enrichment source: 'spacetrack'" in result.output
        assert fake.calls == []

    def test_runs_named_sources(self):
        fake = FakeRunSources({"sec-edgar": _summary("sec-edgar", fetched=2, stored=2)})
        with patch.object(cli_app, "_run_sources", fake):
            result = runner.invoke(cli_app.app, ["enrich", "sec-edgar"])
        assert result.exit_code == 0
        assert fake.calls[0][0] == ["sec-edgar"]
        assert "fetched=2/2" in result.output

    def test_all_sources_json(self):
        names = ["fcc-licenses", "github-activity", "sec-edgar", "uspto-patents"]
        fake = FakeRunSources({name: _summary(name) for name in names})
        with patch.object(cli_app, "_run_sources", fake):
            result = runner.invoke(cli_app.app, ["enrich", "--all", "--json"])
        assert result.exit_code == 0
        assert fake.calls[0][0] == names
        payload = json.loads(result.output)
        assert set(payload) == set(names)
        assert payload["sec-edgar"]["total"] == 2

    def test_database_option_overrides_settings(self, tmp_path):
        fake = FakeRunSources({"sec-edgar": _summary("sec-edgar")})
        db = str(tmp_path / "content.db")
        with patch.object(cli_app, "_run_sources", fake):
            runner.invoke(cli_app.app, ["enrich", "sec-edgar", "-d", db])
        assert fake.calls[0][1].database_path == db

    def test_source_failure_exits_one(self):
        fake = FakeRunSources(
            {
                "sec-edgar": _summary("sec-edgar"),
                "fcc-licenses": StorageError("database is locked"),
            }
        )
        with patch.object(cli_app, "_run_sources", fake):
            result = runner.invoke(cli_app.app, ["enrich", "sec-edgar", "fcc-licenses"])
        assert result.exit_code == 1
        assert "database is locked" in result.output

    def test_repeated_source_runs_once(self):
        fake = FakeRunSources(
            {
                "sec-edgar": StorageError("database is locked"),
                "fcc-licenses": _summary("fcc-licenses"),
            }
        )
        with patch.object(cli_app, "_run_sources", fake):
            result = runner.invoke(cli_app.app, ["enrich", "sec-edgar", "fcc-licenses", "sec-edgar"])
        assert fake.calls[0][0] == ["sec-edgar", "fcc-licenses"]
        assert result.exit_code == 1
        assert "database is locked" in result.output

    def test_entity_errors_still_exit_zero(self):
        summary = _summary("github-activity", fetched=1, errors=["github-activity: failed to fetch NASA (nasa): boom"])
        fake = FakeRunSources({"github-activity": summary})
        with patch.object(cli_app, "_run_sources", fake):
            result = runner.invoke(cli_app.app, ["enrich", "github-activity"])
        assert result.exit_code == 0
        assert "failed to fetch NASA (nasa)" in result.output


class Beacons(EnrichmentAdapter[str, dict]):
    default_config = SourceConfig(name="beacons", delay_seconds=0)

    def entities(self):
        return ["b1", "b2"]

    def entity_key(self, entity):
        return entity

    async def fetch_one(self, entity):
        return self.result(entity, {"beacon": entity})


class TestRunSources:
    @pytest.mark.asyncio
    async def test_runs_and_persists(self, tmp_path):
        from nexus_spine.core.storage import SqliteContentStore

        db = tmp_path / "content.db"
        settings = NexusSettings(_env_file=None, database_path=str(db))

        def fake_build(name, settings, client=None):
            return Beacons(client=client, settings=settings)

        with patch.object(cli_app, "build_adapter", fake_build):
            results = await cli_app._run_sources(["beacons"], settings)

        assert results["beacons"].stored == 2
        store = SqliteContentStore(db)
        try:
            assert [row.content_key for row in store.list("company-enrichment")] == [
                "beacons:b1",
                "beacons:b2",
            ]
        finally:
            store.close()
