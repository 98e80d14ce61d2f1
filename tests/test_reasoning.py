"""Tests for the reasoning backends."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskswarm.config import ReasonerSettings
from taskswarm.engine.reasoning import CliReasoner, EchoReasoner, build_reasoner
from taskswarm.errors import ConfigError, ExecutionFailed

pytestmark = pytest.mark.anyio


def write_script(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "claude"
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(0o755)
    return path


def cli_reasoner(binary: Path, **overrides: object) -> CliReasoner:
    return CliReasoner(ReasonerSettings(backend="cli", cli_bin=str(binary), **overrides))  # type: ignore[arg-type]


class TestBuildReasoner:
    def test_debug_mode_uses_echo(self) -> None:
        assert isinstance(build_reasoner(ReasonerSettings(backend="cli"), debug_mode=True), EchoReasoner)

    def test_backends(self) -> None:
        assert isinstance(build_reasoner(ReasonerSettings(backend="echo")), EchoReasoner)
        assert isinstance(build_reasoner(ReasonerSettings(backend="cli")), CliReasoner)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ConfigError, match="carrier-pigeon"):
            build_reasoner(ReasonerSettings(backend="carrier-pigeon"))


class TestCliReasoner:
    async def test_returns_stdout(self, tmp_path: Path) -> None:
        reasoner = cli_reasoner(write_script(tmp_path, 'echo "args: $*"'))
        result = await reasoner.think(
            "Task: Add a REST API", {"agent": "backend-developer", "system_prompt": "You are a backend developer."}
        )
        assert result["agent"] == "backend-developer"
        assert "--model claude-sonnet-4-20250514" in result["output"]
        assert "-p Task: Add a REST API" in result["output"]
        assert "--append-system-prompt You are a backend developer." in result["output"]

    async def test_unmapped_model_is_passed_through(self, tmp_path: Path) -> None:
        reasoner = cli_reasoner(write_script(tmp_path, 'echo "args: $*"'), model="custom-model")
        result = await reasoner.think("hello", {"agent": "qa-engineer"})
        assert "--model custom-model" in result["output"]

    async def test_missing_binary(self, tmp_path: Path) -> None:
        reasoner = cli_reasoner(tmp_path / "nowhere")
        with pytest.raises(ConfigError, match="not found"):
            await reasoner.think("hello", {"agent": "qa-engineer"})

    async def test_binary_must_be_executable(self, tmp_path: Path) -> None:
        binary = write_script(tmp_path, "echo hi")
        binary.chmod(0o644)
        with pytest.raises(ConfigError, match="not executable"):
            await cli_reasoner(binary).think("hello", {"agent": "qa-engineer"})

    async def test_nonzero_exit_reports_stderr(self, tmp_path: Path) -> None:
        reasoner = cli_reasoner(write_script(tmp_path, 'echo "usage limit reached" >&2\nexit 3'))
        with pytest.raises(ExecutionFailed) as excinfo:
            await reasoner.think("hello", {"agent": "qa-engineer", "task_id": "t-1"})
        assert excinfo.value.message == "usage limit reached"
        assert excinfo.value.task_id == "t-1"
        assert excinfo.value.agent == "qa-engineer"

    async def test_nonzero_exit_without_stderr(self, tmp_path: Path) -> None:
        reasoner = cli_reasoner(write_script(tmp_path, "exit 3"))
        with pytest.raises(ExecutionFailed, match="exit code 3"):
            await reasoner.think("hello", {"agent": "qa-engineer"})

    async def test_timeout_kills_process(self, tmp_path: Path) -> None:
        reasoner = cli_reasoner(write_script(tmp_path, "exec sleep 5"), timeout_seconds=0.2)
        with pytest.raises(ExecutionFailed, match="timed out"):
            await reasoner.think("hello", {"agent": "qa-engineer"})

    async def test_empty_prompt_rejected(self, tmp_path: Path) -> None:
        reasoner = cli_reasoner(write_script(tmp_path, "echo hi"))
        with pytest.raises(ValueError):
            await reasoner.think("   ", {"agent": "qa-engineer"})

    def test_control_characters_are_stripped(self) -> None:
        assert CliReasoner._validate_prompt("a\x00b\tc\nd\x07") == "ab\tc\nd"
