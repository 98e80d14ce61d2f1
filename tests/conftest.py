"""Shared fixtures: temp data dirs, a scripted reasoner and a ready runtime."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from taskswarm.config import Settings
from taskswarm.engine.orchestrator import SwarmRuntime
from taskswarm.storage.database import Database
from taskswarm.storage.task_store import TaskStore


class ScriptedReasoner:
    """Records every call; raises for agents listed in ``fail_for``."""

    def __init__(self, delay: float = 0.0) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_for: set[str] = set()
        self.delay = delay

    async def think(self, prompt: str, context: dict[str, Any]) -> Any:
        agent = context["agent"]
        self.calls.append({"agent": agent, "phase": context.get("phase"), "prompt": prompt})
        if self.delay:
            await asyncio.sleep(self.delay)
        if agent in self.fail_for:
            raise RuntimeError(f"{agent} could not finish")
        return {"agent": agent, "phase": context.get("phase"), "answer": f"output from {agent}"}

    def agents_called(self) -> list[str]:
        return [call["agent"] for call in self.calls]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    settings = Settings(data_dir=tmp_path / "swarm")
    settings.debug_mode = True
    settings.reasoner.backend = "echo"
    return settings


@pytest.fixture
def reasoner() -> ScriptedReasoner:
    return ScriptedReasoner()


@pytest.fixture
async def store(tmp_path: Path) -> TaskStore:
    db = Database(tmp_path / "swarm")
    await db.ensure_tables()
    return TaskStore(db)


@pytest.fixture
async def runtime(settings: Settings, reasoner: ScriptedReasoner) -> AsyncIterator[SwarmRuntime]:
    rt = SwarmRuntime.from_settings(settings, reasoner=reasoner)
    await rt.open()
    yield rt
    await rt.close()
