"""Quota Ledger - sliding-window request accounting with adaptive throttling.

Each agent owns a fraction of a global hourly request limit. Requests are
recorded as timestamped entries; admission counts the entries inside the
trailing window. Old entries are never deleted on write, only excluded by
the window query and purged once their TTL has passed.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Iterable
from enum import StrEnum
from typing import Any

from taskswarm.config import QuotaSettings
from taskswarm.models import TaskPriority
from taskswarm.storage.database import Database

GLOBAL_KEY = "global"


class RequestPriority(StrEnum):
    URGENT = "urgent"
    NORMAL = "normal"
    BACKGROUND = "background"


def request_priority(priority: TaskPriority | str) -> RequestPriority:
    """Map a task priority onto a quota priority."""
    priority = TaskPriority(priority)
    if priority == TaskPriority.CRITICAL:
        return RequestPriority.URGENT
    if priority == TaskPriority.LOW:
        return RequestPriority.BACKGROUND
    return RequestPriority.NORMAL


class QuotaStore:
    """Time-sorted counter store on SQLite."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, key: str, ts: float, ttl: float) -> None:
        await self.db.execute_insert(
            "INSERT INTO quota_entries (key, ts, expires_at) VALUES (?, ?, ?)",
            (key, ts, ts + ttl),
        )

    async def count_since(self, key: str, since: float, now: float) -> int:
        rows = await self.db.execute(
            "SELECT COUNT(*) AS n FROM quota_entries WHERE key = ? AND ts > ? AND expires_at > ?",
            (key, since, now),
        )
        return int(rows[0]["n"])

    async def oldest_since(self, key: str, since: float, now: float) -> float | None:
        rows = await self.db.execute(
            "SELECT MIN(ts) AS ts FROM quota_entries WHERE key = ? AND ts > ? AND expires_at > ?",
            (key, since, now),
        )
        value = rows[0]["ts"]
        return float(value) if value is not None else None

    async def purge_expired(self, now: float) -> int:
        return await self.db.execute_update("DELETE FROM quota_entries WHERE expires_at <= ?", (now,))


class QuotaLedger:
    """Per-agent and global admission control over a rolling window."""

    EMA_WEIGHT = 0.9
    HIGH_LATENCY_FACTOR = 0.9
    LOW_LATENCY_FACTOR = 1.05

    def __init__(
        self,
        store: QuotaStore,
        settings: QuotaSettings | None = None,
        agents: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.settings = settings or QuotaSettings()
        self.clock = clock
        self._fractions = dict(self.settings.fractions)
        self._latency: dict[str, float] = {}
        self._agents = list(dict.fromkeys([*self._fractions, *agents]))

    @staticmethod
    def agent_key(agent: str) -> str:
        return f"agent:{agent}"

    def fraction_for(self, agent: str) -> float:
        return self._fractions.get(agent, self.settings.default_fraction)

    def quota_for(self, agent: str) -> int:
        # small epsilon so 0.15 * 100 floors to 15, not 14
        return math.floor(self.settings.requests_per_hour * self.fraction_for(agent) + 1e-9)

    def average_latency(self, agent: str) -> float:
        return self._latency.get(agent, self.settings.initial_latency_ms)

    async def check(
        self, agent: str, priority: RequestPriority | str = RequestPriority.NORMAL
    ) -> tuple[bool, str]:
        """Return ``(allowed, reason)`` for one more request by ``agent``."""
        priority = RequestPriority(priority)
        now = self.clock()
        since = now - self.settings.window_seconds

        global_count = await self.store.count_since(GLOBAL_KEY, since, now)
        if global_count >= self.settings.requests_per_hour:
            return False, f"global limit reached ({global_count}/{self.settings.requests_per_hour})"

        quota = self.quota_for(agent)
        used = await self.store.count_since(self.agent_key(agent), since, now)
        if used < quota:
            return True, "within quota"
        if priority == RequestPriority.URGENT and used < quota * self.settings.urgent_overdraft:
            return True, "urgent overdraft"
        return False, f"agent quota exhausted ({used}/{quota})"

    async def can_make_request(
        self, agent: str, priority: RequestPriority | str = RequestPriority.NORMAL
    ) -> bool:
        allowed, _ = await self.check(agent, priority)
        return allowed

    async def record_request(self, agent: str, priority: RequestPriority | str = RequestPriority.NORMAL) -> None:
        now = self.clock()
        ttl = self.settings.entry_ttl_seconds
        await self.store.add(self.agent_key(agent), now, ttl)
        await self.store.add(GLOBAL_KEY, now, ttl)

    def adjust_throttling(self, agent: str, response_ms: float) -> float:
        """Fold one latency sample into the agent's average and retune its fraction.

        Returns the agent's fraction after the adjustment.
        """
        average = self.EMA_WEIGHT * self.average_latency(agent) + (1 - self.EMA_WEIGHT) * response_ms
        self._latency[agent] = average

        fraction = self.fraction_for(agent)
        if average > self.settings.high_latency_ms:
            fraction *= self.HIGH_LATENCY_FACTOR
        elif average < self.settings.low_latency_ms:
            fraction = min(fraction * self.LOW_LATENCY_FACTOR, self.settings.max_fraction)
        self._fractions[agent] = fraction
        if agent not in self._agents:
            self._agents.append(agent)
        return fraction

    async def estimate_time_until_available(self, agent: str) -> float:
        """Seconds until ``agent`` may make a normal-priority request again.

        Each exhausted limit frees up when its oldest entry leaves the window;
        the longest of those waits wins.
        """
        now = self.clock()
        since = now - self.settings.window_seconds
        limits = (
            (GLOBAL_KEY, self.settings.requests_per_hour),
            (self.agent_key(agent), self.quota_for(agent)),
        )
        wait = 0.0
        for key, limit in limits:
            if await self.store.count_since(key, since, now) < limit:
                continue
            oldest = await self.store.oldest_since(key, since, now)
            if oldest is not None:
                wait = max(wait, oldest + self.settings.window_seconds - now)
        return wait

    async def status(self) -> dict[str, Any]:
        now = self.clock()
        since = now - self.settings.window_seconds
        limit = self.settings.requests_per_hour
        global_used = await self.store.count_since(GLOBAL_KEY, since, now)

        agents: dict[str, dict[str, Any]] = {}
        for agent in self._agents:
            quota = self.quota_for(agent)
            used = await self.store.count_since(self.agent_key(agent), since, now)
            agents[agent] = {
                "used": used,
                "quota": quota,
                "remaining": max(0, quota - used),
                "percentage": round(used / quota * 100, 1) if quota else 100.0,
                "fraction": round(self.fraction_for(agent), 4),
                "avg_latency_ms": round(self.average_latency(agent), 1),
                "available_in_seconds": round(await self.estimate_time_until_available(agent), 1),
            }
        return {
            "global": {
                "used": global_used,
                "limit": limit,
                "remaining": max(0, limit - global_used),
                "percentage": round(global_used / limit * 100, 1) if limit else 100.0,
            },
            "agents": agents,
        }

    async def purge(self) -> int:
        return await self.store.purge_expired(self.clock())
