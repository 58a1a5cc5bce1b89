"""Tests for woodpecker init and the top-level app."""

from __future__ import annotations

from pathlib import Path

from woodpecker.cli.main import app


def test_init_creates_scaffold(tmp_path: Path, runner) -> None:
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0, result.output
    assert (tmp_path / "woodpecker.yaml").exists()
    assert (tmp_path / ".woodpecker.db").exists()
    assert (tmp_path / ".woodpecker" / "objects").is_dir()
    assert "Workspace initialized" in result.output


def test_init_twice_preserves_data(tmp_path: Path, runner) -> None:
    runner.invoke(app, ["init", str(tmp_path)])
    (tmp_path / "woodpecker.yaml").write_text("retrieval:\n  top_k: 9\n", encoding="utf-8")
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0
    assert "existing data preserved" in result.output
    assert "top_k: 9" in (tmp_path / "woodpecker.yaml").read_text(encoding="utf-8")


def test_version(runner) -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("woodpecker ")


def test_command_without_db_exits_1(tmp_path: Path, runner, monkeypatch) -> None:
    monkeypatch.setattr("woodpecker.config._GLOBAL_CONFIG_PATH", tmp_path / "none.yaml")
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["sources"])
    assert result.exit_code == 1
    assert "woodpecker init" in result.output


def test_invalid_config_exits_1(project: Path, runner) -> None:
    (project / "woodpecker.yaml").write_text("chunking:\n  chunk_size: 0\n", encoding="utf-8")
    result = runner.invoke(app, ["sources"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
