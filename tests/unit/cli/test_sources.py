"""Tests for upload, process, ingest-web, sources and remove commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from woodpecker.cli.main import app
from woodpecker.db.models import SourceStatus
from woodpecker.ingest.crawl import CrawlResult

_TEXT = "Ribosomes build proteins from amino acids. " * 40


def _upload(runner, project: Path, *names: str, extra=()):
    paths = []
    for name in names:
        path = project / name
        path.write_text(_TEXT, encoding="utf-8")
        paths.append(str(path))
    return runner.invoke(app, ["upload", *paths, "--wait", *extra])


def test_upload_and_ingest(project, runner, project_repo) -> None:
    result = _upload(runner, project, "bio.txt")
    assert result.exit_code == 0, result.output
    assert "1 file(s) uploaded successfully" in result.output

    sources = project_repo.list_sources()
    assert len(sources) == 1
    assert sources[0].status is SourceStatus.READY
    assert sources[0].chunk_count > 0


def test_upload_links_to_workspace(project, runner, project_repo) -> None:
    runner.invoke(app, ["workspace", "create", "Bio"])
    ws = project_repo.list_workspaces()[0]
    result = _upload(runner, project, "bio.txt", extra=("--workspace", ws.id))
    assert result.exit_code == 0, result.output
    assert project_repo.enabled_source_ids(ws.id) == [project_repo.list_sources()[0].id]


def test_upload_rejects_unsupported_type(project, runner, project_repo) -> None:
    result = _upload(runner, project, "tool.exe")
    assert result.exit_code == 1
    assert "File type .exe not supported" in result.output
    assert project_repo.list_sources() == []


def test_upload_missing_file(project, runner) -> None:
    result = runner.invoke(app, ["upload", str(project / "ghost.txt")])
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_sources_lists_status(project, runner) -> None:
    _upload(runner, project, "bio.txt")
    result = runner.invoke(app, ["sources"])
    assert result.exit_code == 0
    assert "bio.txt" in result.output
    assert "ready" in result.output


def test_sources_empty(project, runner) -> None:
    result = runner.invoke(app, ["sources"])
    assert result.exit_code == 0
    assert "No sources yet" in result.output


def test_process_reingests_ready_source(project, runner, project_repo) -> None:
    _upload(runner, project, "bio.txt")
    source = project_repo.list_sources()[0]
    result = runner.invoke(app, ["process", source.id])
    assert result.exit_code == 0, result.output
    assert "chunks" in result.output
    assert project_repo.get_source(source.id).chunk_generation == source.chunk_generation + 1


def test_process_unknown_source(project, runner) -> None:
    result = runner.invoke(app, ["process", "nope"])
    assert result.exit_code == 1
    assert "Source not found" in result.output


def test_ingest_web_requires_api_key(project, runner) -> None:
    result = runner.invoke(app, ["ingest-web", "example.com"])
    assert result.exit_code == 1
    assert "FIRECRAWL_API_KEY" in result.output


def test_ingest_web_success(project, runner, project_repo, monkeypatch) -> None:
    monkeypatch.setenv("FIRECRAWL_API_KEY", "fc-test")
    with patch(
        "woodpecker.ingest.orchestrator.CrawlAdapter.fetch",
        return_value=CrawlResult(text=_TEXT, page_count=3),
    ):
        result = runner.invoke(app, ["ingest-web", "example.com", "--crawl"])
    assert result.exit_code == 0, result.output
    assert "3 page(s)" in result.output
    source = project_repo.list_sources()[0]
    assert source.name == "example.com"
    assert source.status is SourceStatus.READY


def test_ingest_web_failure_exits_1(project, runner, project_repo, monkeypatch) -> None:
    monkeypatch.setenv("FIRECRAWL_API_KEY", "fc-test")
    with patch(
        "woodpecker.ingest.orchestrator.CrawlAdapter.fetch",
        return_value=CrawlResult(text="", page_count=0),
    ):
        result = runner.invoke(app, ["ingest-web", "example.com"])
    assert result.exit_code == 1
    assert "No content extracted from website" in result.output
    assert project_repo.list_sources()[0].status is SourceStatus.ERROR


def test_remove_source(project, runner, project_repo) -> None:
    _upload(runner, project, "bio.txt")
    source = project_repo.list_sources()[0]
    result = runner.invoke(app, ["remove", source.id, "--yes"])
    assert result.exit_code == 0, result.output
    assert project_repo.get_source(source.id) is None
    assert not (project / ".woodpecker" / "objects" / source.file_path).exists()


def test_remove_cancelled(project, runner, project_repo) -> None:
    _upload(runner, project, "bio.txt")
    source = project_repo.list_sources()[0]
    result = runner.invoke(app, ["remove", source.id], input="n\n")
    assert result.exit_code == 0
    assert project_repo.get_source(source.id) is not None


def test_process_recrawls_web_source(project, runner, project_repo, monkeypatch) -> None:
    monkeypatch.setenv("FIRECRAWL_API_KEY", "fc-test")
    with patch(
        "woodpecker.ingest.orchestrator.CrawlAdapter.fetch",
        return_value=CrawlResult(text=_TEXT, page_count=1),
    ) as fetch:
        runner.invoke(app, ["ingest-web", "example.com"])
        source = project_repo.list_sources()[0]
        result = runner.invoke(app, ["process", source.id, "--crawl"])
    assert result.exit_code == 0, result.output
    fetch.assert_called_with("https://example.com", True, False)
    refreshed = project_repo.get_source(source.id)
    assert refreshed.status is SourceStatus.READY
    assert refreshed.chunk_generation == source.chunk_generation + 1
