"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from cli import cli


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "database:\n"
        f"  url: sqlite:///{tmp_path / 'garden.sqlite3'}\n"
        "logging:\n"
        "  level: WARNING\n"
        "  format: text\n"
        f"  file: {tmp_path / 'logs' / 'garden.log'}\n"
        "workspace:\n"
        f"  base_path: {tmp_path / 'repos'}\n"
    )
    return str(path)


def invoke(config_path, *args):
    return CliRunner().invoke(cli, ["--config", config_path, *args])


def test_create_queues_task(config_path):
    result = invoke(config_path, "create", "Echo Service", "echoes requests")
    assert result.exit_code == 0, result.output
    assert "Queued task 1 (echo_service)" in result.output

    result = invoke(config_path, "list")
    assert result.exit_code == 0
    assert "echo_service" in result.output
    assert "not_started" in result.output


def test_create_duplicate_fails(config_path):
    invoke(config_path, "create", "echo", "first")
    result = invoke(config_path, "create", "Echo", "second")
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_status(config_path):
    invoke(config_path, "create", "echo", "echoes")
    result = invoke(config_path, "status", "1")
    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["name"] == "echo"
    assert payload["stage"] == "not_started"
    assert payload["error"] is None


def test_status_unknown_task(config_path):
    result = invoke(config_path, "status", "42")
    assert result.exit_code == 1
    assert "No task with id 42" in result.output


def test_missing_config(tmp_path):
    result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "list"])
    assert result.exit_code == 1
    assert "not found" in result.output
