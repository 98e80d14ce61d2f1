"""Tests for the polling loops and the event bus."""

from __future__ import annotations

import asyncio

import pytest

from taskswarm.engine.events import EventBus, task_channel
from taskswarm.engine.orchestrator import SwarmRuntime
from taskswarm.models import Task, TaskStatus

pytestmark = pytest.mark.anyio


async def test_run_once_drives_task_to_completion(runtime: SwarmRuntime) -> None:
    await runtime.store.create(Task.new("Add a REST API for invoices", task_id="t-loop"))

    status = await runtime.scheduler.run_once()

    task = await runtime.store.get("t-loop")
    assert task is not None
    assert task.status == TaskStatus.COMPLETED
    assert task.assigned_to == "backend-developer"
    assert set(status["loops"]) == {
        "main",
        "coordinator",
        "consistency",
        *(f"agent:{name}" for name in runtime.registry.names()),
    }
    assert all(loop["iterations"] == 1 for loop in status["loops"].values())


async def test_failing_iteration_is_counted_not_fatal(
    runtime: SwarmRuntime, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def broken() -> None:
        raise RuntimeError("coordinator exploded")

    monkeypatch.setattr(runtime.router, "poll_coordinator", broken)
    await runtime.store.create(Task.new("Add a REST API for invoices", task_id="t-survive"))

    status = await runtime.scheduler.run_once()

    assert status["loops"]["coordinator"]["errors"] == 1
    assert status["loops"]["coordinator"]["last_error"] == "coordinator exploded"
    assert status["loops"]["consistency"]["errors"] == 0
    task = await runtime.store.get("t-survive")
    assert task is not None
    assert task.status == TaskStatus.COMPLETED


async def test_start_and_stop(runtime: SwarmRuntime) -> None:
    loops = runtime.settings.loops
    loops.main_interval = loops.agent_interval = 0.01
    loops.coordinator_interval = loops.consistency_interval = 0.01
    loops.initial_sync_delay = 0.0

    runtime.start_loops()
    assert runtime.scheduler.running
    await asyncio.sleep(0.1)
    await runtime.stop_loops()

    assert not runtime.scheduler.running
    status = runtime.scheduler.status()
    assert status["loops"]["main"]["iterations"] >= 1
    assert status["inflight"] == 0


async def test_subscribers_filter_by_prefix() -> None:
    bus = EventBus()
    async with bus.subscribe("task:") as tasks, bus.subscribe("queue:") as queue:
        await bus.publish(task_channel("t-1"), {"status": "assigned"})
        await bus.publish("queue:update", {"queue_length": 1})
        assert bus.subscriber_count == 2

        event = tasks.get_nowait()
        assert event.channel == "task:t-1:status"
        assert event.payload == {"status": "assigned"}
        assert tasks.empty()
        assert queue.get_nowait().payload == {"queue_length": 1}
    assert bus.subscriber_count == 0


async def test_slow_subscriber_drops_events() -> None:
    bus = EventBus(max_queue=2)
    async with bus.subscribe() as queue:
        for i in range(5):
            await bus.publish("queue:update", {"n": i})
        assert queue.qsize() == 2
    assert bus.dropped == 3
    assert [e.payload["n"] for e in bus.recent(limit=2)] == [3, 4]
    assert bus.recent()[0].to_sse().startswith("data: ")
