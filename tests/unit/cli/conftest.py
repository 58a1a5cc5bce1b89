"""Fixtures for CLI tests: an initialized project in a temp working directory."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from woodpecker.cli.main import app
from woodpecker.db.connection import Database
from woodpecker.db.repository import Repository


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def project(tmp_path: Path, monkeypatch, runner: CliRunner) -> Path:
    """Run ``woodpecker init`` in tmp_path and chdir into it."""
    monkeypatch.setattr("woodpecker.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("WOODPECKER_CHAT_MODEL", "WOODPECKER_LOG_LEVEL", "FIRECRAWL_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0, result.output
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def project_repo(project: Path):
    conn = Database(project / ".woodpecker.db").connect()
    yield Repository(conn)
    conn.close()
