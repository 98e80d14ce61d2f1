"""Background polling loops.

Each loop runs on its own interval as an asyncio task. An iteration that
raises is logged and counted; the next iteration still runs on schedule.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from taskswarm.config import LoopSettings
from taskswarm.engine.router import TaskRouter

logger = logging.getLogger(__name__)

Tick = Callable[[], Awaitable[Any]]


@dataclass
class LoopStats:
    name: str
    interval: float
    iterations: int = 0
    errors: int = 0
    last_run: float | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "interval": self.interval,
            "iterations": self.iterations,
            "errors": self.errors,
            "last_run": self.last_run,
            "last_error": self.last_error,
        }


class LoopScheduler:
    """Starts and stops the router's polling loops.

    Per-agent ticks are launched as separate tasks so a long reasoning call on
    one task does not hold up the next tick for the same agent; the router's
    admission check turns a busy agent's tick into a no-op.
    """

    def __init__(
        self,
        router: TaskRouter,
        settings: LoopSettings | None = None,
        maintenance: Tick | None = None,
    ) -> None:
        self.router = router
        self.settings = settings or LoopSettings()
        self.maintenance = maintenance
        self._tasks: list[asyncio.Task[None]] = []
        self._inflight: set[asyncio.Task[Any]] = set()
        self.stats: dict[str, LoopStats] = {}

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def _loops(self) -> list[tuple[str, float, Tick, bool]]:
        s = self.settings
        loops: list[tuple[str, float, Tick, bool]] = [("main", s.main_interval, self.router.poll_main, False)]
        for agent in self.router.registry.names():
            loops.append((f"agent:{agent}", s.agent_interval, self._agent_tick(agent), True))
        loops.append(("coordinator", s.coordinator_interval, self.router.poll_coordinator, False))
        loops.append(("consistency", s.consistency_interval, self._consistency_tick, False))
        return loops

    def _agent_tick(self, agent: str) -> Tick:
        async def tick() -> Any:
            return await self.router.poll_agent(agent)

        return tick

    async def _consistency_tick(self) -> bool:
        changed = await self.router.ensure_consistency()
        if self.maintenance is not None:
            await self.maintenance()
        return changed

    def start(self) -> None:
        if self.running:
            return
        self.stats = {}
        for name, interval, tick, detached in self._loops():
            self.stats[name] = LoopStats(name, interval)
            self._tasks.append(asyncio.create_task(self._run(name, interval, tick, detached), name=f"loop-{name}"))
        self._tasks.append(asyncio.create_task(self._initial_sync(), name="loop-initial-sync"))
        logger.info("Started %d polling loops", len(self.stats))

    async def stop(self) -> None:
        tasks = [*self._tasks, *self._inflight]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._inflight.clear()
        logger.info("Stopped polling loops")

    async def _initial_sync(self) -> None:
        await asyncio.sleep(self.settings.initial_sync_delay)
        try:
            await self.router.sync_state()
        except Exception:
            logger.exception("Initial state sync failed")

    async def _run(self, name: str, interval: float, tick: Tick, detached: bool) -> None:
        stats = self.stats[name]
        while True:
            if detached:
                child = asyncio.create_task(self._guarded(stats, tick))
                self._inflight.add(child)
                child.add_done_callback(self._inflight.discard)
            else:
                await self._guarded(stats, tick)
            await asyncio.sleep(interval)

    async def _guarded(self, stats: LoopStats, tick: Tick) -> None:
        stats.iterations += 1
        stats.last_run = time.time()
        try:
            await tick()
        except Exception as exc:
            stats.errors += 1
            stats.last_error = str(exc) or exc.__class__.__name__
            logger.exception("Loop %s iteration failed", stats.name)

    async def run_once(self) -> dict[str, Any]:
        """Run one iteration of every loop in order, for tests and the ``run --once`` command."""
        if not self.stats:
            self.stats = {name: LoopStats(name, interval) for name, interval, _, _ in self._loops()}
        for name, _, tick, _ in self._loops():
            await self._guarded(self.stats[name], tick)
        return self.status()

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "loops": {name: stats.to_dict() for name, stats in self.stats.items()},
            "inflight": len(self._inflight),
        }
