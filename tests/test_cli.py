"""Tests for the swarm CLI."""

import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from taskswarm.cli import main


def invoke(home: Path, *args: str):
    runner = CliRunner()
    return runner.invoke(main, ["--home", str(home), "--debug", *args])


def test_version() -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_init(tmp_path: Path) -> None:
    result = invoke(tmp_path, "init")
    assert result.exit_code == 0
    assert "initialized" in result.output.lower()
    assert (tmp_path / "data" / "taskswarm.db").exists()


def test_submit(tmp_path: Path) -> None:
    result = invoke(tmp_path, "submit", "Add a REST API for invoices")
    assert result.exit_code == 0
    assert "assigned" in result.output
    assert "backend-developer" in result.output


def test_submit_execute(tmp_path: Path) -> None:
    result = invoke(tmp_path, "submit", "Add a REST API for invoices", "--priority", "high", "--execute")
    assert result.exit_code == 0
    assert "completed" in result.output


def test_submit_blocked(tmp_path: Path) -> None:
    result = invoke(tmp_path, "submit", "fix it", "--via", "project-manager")
    assert result.exit_code == 0
    assert "blocked" in result.output


def test_queue(tmp_path: Path) -> None:
    invoke(tmp_path, "submit", "Add a REST API for invoices")
    result = invoke(tmp_path, "queue")
    assert result.exit_code == 0
    assert "Agent Load" in result.output
    assert "Queue is empty" in result.output


def test_sync(tmp_path: Path) -> None:
    invoke(tmp_path, "submit", "Add a REST API for invoices")
    result = invoke(tmp_path, "sync")
    assert result.exit_code == 0
    assert "1 active, 0 queued" in result.output


def test_check(tmp_path: Path) -> None:
    result = invoke(tmp_path, "check")
    assert result.exit_code == 0
    assert "State consistent" in result.output


def test_check_resyncs_after_restart(tmp_path: Path) -> None:
    invoke(tmp_path, "submit", "Add a REST API for invoices")
    result = invoke(tmp_path, "check")
    assert result.exit_code == 0
    assert "resynchronized" in result.output
    assert "assigned: 1" in result.output


def test_trigger_unknown_task(tmp_path: Path) -> None:
    result = invoke(tmp_path, "trigger", "task-missing")
    assert result.exit_code == 1
    assert "Task not found" in result.output


def test_show_unknown_task(tmp_path: Path) -> None:
    result = invoke(tmp_path, "show", "task-missing")
    assert result.exit_code == 1


def test_coordinate(tmp_path: Path) -> None:
    result = invoke(tmp_path, "coordinate", "Design the invoice portal", "--strategy", "pipeline")
    assert result.exit_code == 0
    assert "completed" in result.output


def test_coordinate_rejects_unknown_strategy(tmp_path: Path) -> None:
    result = invoke(tmp_path, "coordinate", "Design the invoice portal", "--strategy", "freestyle")
    assert result.exit_code == 2


def test_agents(tmp_path: Path) -> None:
    result = invoke(tmp_path, "agents")
    assert result.exit_code == 0
    assert "Agents" in result.output


def test_quota(tmp_path: Path) -> None:
    result = invoke(tmp_path, "quota")
    assert result.exit_code == 0
    assert "Quota Usage" in result.output


def test_run_once(tmp_path: Path) -> None:
    invoke(tmp_path, "submit", "Add a REST API for invoices")
    result = invoke(tmp_path, "run", "--once")
    assert result.exit_code == 0
    assert "Loops" in result.output


def test_log_level_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASKSWARM_LOG_LEVEL", "ERROR")
    result = invoke(tmp_path, "agents")
    assert result.exit_code == 0
    assert logging.getLogger().level == logging.ERROR

    result = invoke(tmp_path, "--log-level", "DEBUG", "agents")
    assert result.exit_code == 0
    assert logging.getLogger().level == logging.DEBUG


def test_invalid_environment_is_reported(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASKSWARM_REQUESTS_PER_HOUR", "lots")
    result = invoke(tmp_path, "agents")
    assert result.exit_code == 1
    assert "TASKSWARM_REQUESTS_PER_HOUR" in result.output
