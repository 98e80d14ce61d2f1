"""Coordination Engine - run one task across several agents and keep session records."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from taskswarm.engine.reasoning import Reasoner
from taskswarm.engine.registry import AgentRegistry
from taskswarm.errors import StoreUnavailable, UnknownStrategy
from taskswarm.models import CoordinationSession, SessionStatus, Task, utcnow
from taskswarm.storage.task_store import TaskStore
from taskswarm.strategies import STRATEGIES, BaseStrategy, StrategyContext

logger = logging.getLogger(__name__)


@dataclass
class CoordinationOutcome:
    """Result of one ``coordinate_task`` call."""

    session_id: str
    strategy: str
    status: SessionStatus
    result: Any = None
    results: list[dict[str, Any]] = field(default_factory=list)
    participants: list[str] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "strategy": self.strategy,
            "status": self.status.value,
            "result": self.result,
            "results": self.results,
            "participants": self.participants,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class CoordinationEngine:
    """Runs coordination strategies and owns the session table.

    Finished sessions are kept for ``session_ttl`` seconds. Expiry is checked
    whenever a session is read, and ``reap()`` drops everything expired.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        reasoner: Reasoner,
        can_accept: Callable[[str], bool],
        store: TaskStore | None = None,
        session_ttl: float = 3_600,
        strategies: dict[str, type[BaseStrategy]] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.store = store
        self.session_ttl = session_ttl
        self.strategies = strategies or STRATEGIES
        self.clock = clock
        self.context = StrategyContext(
            registry=registry,
            reasoner=reasoner,
            can_accept=can_accept,
            coordinator=registry.coordinator,
        )
        self._sessions: dict[str, CoordinationSession] = {}

    def strategy_names(self) -> list[str]:
        return list(self.strategies)

    async def coordinate_task(self, task: Task | str, strategy: str) -> CoordinationOutcome:
        """Run ``strategy`` for ``task``. The session always ends completed or failed."""
        strategy_cls = self.strategies.get(strategy)
        if strategy_cls is None:
            raise UnknownStrategy(strategy, self.strategy_names())
        if isinstance(task, str):
            task = Task.new(task)

        session = CoordinationSession(id=f"coord-{uuid.uuid4().hex[:12]}", task=task.to_dict(), strategy=strategy)
        self._sessions[session.id] = session
        logger.info("Session %s started: %s for %s", session.id, strategy, task.id)

        started = time.monotonic()
        try:
            session.result = await strategy_cls().run(session, self.context)
        except Exception as exc:
            session.status = SessionStatus.FAILED
            session.error = str(exc) or exc.__class__.__name__
            logger.error("Session %s failed: %s", session.id, session.error)
        else:
            session.status = SessionStatus.COMPLETED
            await self._attach_result(task, session)
        finally:
            session.completed_at = utcnow()
            session.expires_at = self.clock() + self.session_ttl

        return CoordinationOutcome(
            session_id=session.id,
            strategy=strategy,
            status=session.status,
            result=session.result,
            results=[r.to_dict() for r in session.results],
            participants=list(session.participants),
            error=session.error,
            duration_seconds=time.monotonic() - started,
        )

    async def _attach_result(self, task: Task, session: CoordinationSession) -> None:
        if self.store is None:
            return
        try:
            if await self.store.get(task.id) is not None:
                await self.store.update_fields(task.id, result={"session_id": session.id, "result": session.result})
        except StoreUnavailable:
            logger.exception("Could not attach session %s result to %s", session.id, task.id)

    def _expired(self, session: CoordinationSession) -> bool:
        return session.expires_at is not None and session.expires_at <= self.clock()

    def get_session(self, session_id: str) -> CoordinationSession | None:
        session = self._sessions.get(session_id)
        if session is not None and self._expired(session):
            del self._sessions[session_id]
            return None
        return session

    def list_sessions(self) -> list[CoordinationSession]:
        self.reap()
        return list(self._sessions.values())

    def reap(self) -> int:
        expired = [sid for sid, s in self._sessions.items() if self._expired(s)]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Reaped %d coordination sessions", len(expired))
        return len(expired)

    def status(self) -> dict[str, Any]:
        sessions = self.list_sessions()
        by_status: dict[str, int] = {}
        for session in sessions:
            by_status[session.status.value] = by_status.get(session.status.value, 0) + 1
        return {
            "total_sessions": len(sessions),
            "by_status": by_status,
            "active": [s.id for s in sessions if not s.finished],
            "strategies": self.strategy_names(),
        }
