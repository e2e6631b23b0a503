"""Tests for the command line interface."""

import json

import pytest
from typer.testing import CliRunner

from contextkeeper.cli.commands import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def config_path(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    monkeypatch.setattr("contextkeeper.config.loader.get_config_path", lambda: path)
    return path


class TestCommands:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "contextkeeper v" in result.output

    def test_score(self):
        result = runner.invoke(app, ["score", "variable", "sql"])
        assert result.exit_code == 0
        assert "Level 26" in result.output

    def test_models(self):
        result = runner.invoke(app, ["models"])
        assert result.exit_code == 0
        assert "openai/gpt-4" in result.output

    def test_budget(self):
        result = runner.invoke(app, ["budget", "--window", "8192", "--system-tokens", "100"])
        assert result.exit_code == 0
        assert "healthy" in result.output

    def test_summarize(self, tmp_path):
        path = tmp_path / "subjects.json"
        path.write_text(json.dumps([
            {"keywords": ["postgres", "index"], "name": "Indexing", "messageCount": 4},
            {"keywords": ["ethics"], "name": "AI Ethics"},
        ]))
        result = runner.invoke(app, ["summarize", str(path), "--budget", "1000"])
        assert result.exit_code == 0
        assert "Past subjects (2) [balanced mode]:" in result.output

    def test_summarize_missing_file(self, tmp_path):
        result = runner.invoke(app, ["summarize", str(tmp_path / "nope.json")])
        assert result.exit_code == 1

    def test_init_then_refuses_overwrite(self, config_path):
        assert runner.invoke(app, ["init"]).exit_code == 0
        assert config_path.exists()
        assert runner.invoke(app, ["init"]).exit_code == 1
        assert runner.invoke(app, ["init", "--force"]).exit_code == 0

    def test_status(self):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Model:" in result.output
