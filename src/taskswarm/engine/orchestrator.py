"""Swarm runtime - wires the store, ledger, bus, router, engine and loops together."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from taskswarm import __version__
from taskswarm.config import Settings
from taskswarm.engine.coordination import CoordinationEngine
from taskswarm.engine.events import EventBus
from taskswarm.engine.quota import QuotaLedger, QuotaStore
from taskswarm.engine.reasoning import QuotaGuardedReasoner, Reasoner, build_reasoner
from taskswarm.engine.registry import AgentRegistry, default_team
from taskswarm.engine.router import TaskRouter
from taskswarm.engine.scheduler import LoopScheduler
from taskswarm.storage.database import Database
from taskswarm.storage.task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class SwarmRuntime:
    """Everything one scheduling process needs.

    Workflow:
    1. ``from_settings`` builds the components
    2. ``open`` creates tables
    3. ``start_loops`` launches the polling loops (optional; the router's
       operations also work without them)
    4. ``close`` stops the loops
    """

    settings: Settings
    registry: AgentRegistry
    db: Database
    store: TaskStore
    quota: QuotaLedger
    bus: EventBus
    router: TaskRouter
    engine: CoordinationEngine
    scheduler: LoopScheduler
    started_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        reasoner: Reasoner | None = None,
        registry: AgentRegistry | None = None,
    ) -> SwarmRuntime:
        settings = settings or Settings.from_env()
        registry = registry or default_team()
        db = Database(settings.data_dir)
        store = TaskStore(db)
        quota = QuotaLedger(QuotaStore(db), settings.quota, agents=registry.names())
        bus = EventBus()
        reasoner = reasoner or build_reasoner(settings.reasoner, debug_mode=settings.debug_mode)

        router = TaskRouter(
            registry,
            store,
            reasoner,
            publisher=bus,
            quota=quota,
            main_batch=settings.loops.main_batch,
            coordinator_batch=settings.loops.coordinator_batch,
        )
        engine = CoordinationEngine(
            registry,
            QuotaGuardedReasoner(reasoner, quota),
            can_accept=router.can_accept,
            store=store,
            session_ttl=settings.session_ttl_seconds,
        )

        async def maintenance() -> None:
            purged = await quota.purge()
            reaped = engine.reap()
            if purged or reaped:
                logger.debug("Maintenance: purged %d quota entries, reaped %d sessions", purged, reaped)

        scheduler = LoopScheduler(router, settings.loops, maintenance=maintenance)
        return cls(
            settings=settings,
            registry=registry,
            db=db,
            store=store,
            quota=quota,
            bus=bus,
            router=router,
            engine=engine,
            scheduler=scheduler,
        )

    async def open(self) -> SwarmRuntime:
        await self.db.ensure_tables()
        return self

    def start_loops(self) -> None:
        self.scheduler.start()

    async def stop_loops(self) -> None:
        await self.scheduler.stop()

    async def close(self) -> None:
        await self.stop_loops()

    async def __aenter__(self) -> SwarmRuntime:
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(time.monotonic() - self.started_at, 1),
            "debug_mode": self.settings.debug_mode,
            "loops_running": self.scheduler.running,
            "agents": len(self.registry),
            "database": str(self.db.db_path),
        }
