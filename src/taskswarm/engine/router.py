"""Task Router - assignment, admission control, queuing and state reconciliation.

The router owns two in-memory structures: the per-agent active-task sets and
the pending queue. Every read or write of them happens under one
``asyncio.Lock``; store, pub/sub and reasoning calls happen outside it.

A slot in an agent's active set is reserved under the lock *before* the
conditional store claim is attempted, and released again if the claim loses.
That keeps ``active_count(agent) <= max_concurrent_tasks`` true at every
await point, and the conditional claim keeps two callers from both winning
the same task.

``run_assigned`` is the only code path that executes a task. The per-agent
poll loop calls it, and so does ``route_task(execute=True)`` for callers that
want the result right away.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from taskswarm.engine.events import QUEUE_CHANNEL, Publisher, agent_channel, task_channel
from taskswarm.engine.matching import CapabilityMatcher, delegation_matcher, routing_matcher
from taskswarm.engine.quota import QuotaLedger, request_priority
from taskswarm.engine.reasoning import Reasoner
from taskswarm.engine.registry import AgentDescriptor, AgentRegistry
from taskswarm.engine.triage import TaskAnalysis, TriageCoordinator
from taskswarm.errors import StoreUnavailable, TaskBlocked, TaskNotFound, TriggerRejected
from taskswarm.models import (
    LIVE_STATUSES,
    QueuedTask,
    RouteOutcome,
    Task,
    TaskPriority,
    TaskStatus,
    utcnow,
)
from taskswarm.storage.task_store import TaskStore

logger = logging.getLogger(__name__)

# Estimated minutes of wait per running task and per task ahead in the queue.
WAIT_PER_ACTIVE = 5
WAIT_PER_QUEUED = 3

CLAIMABLE = (TaskStatus.PENDING, TaskStatus.QUEUED)

UNSETTLED_REASON = "finished; status not yet recorded in the store"


class TaskRouter:
    """Routes tasks to agents and drives them through their lifecycle."""

    def __init__(
        self,
        registry: AgentRegistry,
        store: TaskStore,
        reasoner: Reasoner,
        publisher: Publisher | None = None,
        quota: QuotaLedger | None = None,
        matcher: CapabilityMatcher | None = None,
        delegation: CapabilityMatcher | None = None,
        triage: TriageCoordinator | None = None,
        main_batch: int = 10,
        coordinator_batch: int = 5,
    ) -> None:
        self.registry = registry
        self.store = store
        self.reasoner = reasoner
        self.publisher = publisher
        self.quota = quota
        self.matcher = matcher or routing_matcher()
        self.delegation = delegation or delegation_matcher()
        self.triage = triage or TriageCoordinator()
        self.main_batch = main_batch
        self.coordinator_batch = coordinator_batch

        self._lock = asyncio.Lock()
        self._active: dict[str, dict[str, Task]] = {agent.name: {} for agent in registry}
        self._queue: list[QueuedTask] = []
        # finished tasks whose terminal status could not be written yet
        self._unsettled: dict[str, tuple[str, Task, dict[str, Any]]] = {}

    # ── Admission ────────────────────────────────────────────────────────

    def select_agent(self, task: Task) -> str:
        """Pick the candidate agent for a task. Same text, same answer."""
        agent = self.matcher.select(task.text)
        if agent is None or agent not in self.registry:
            return self.registry.coordinator
        return agent

    def active_count(self, agent: str) -> int:
        return len(self._active.get(agent, {}))

    def can_accept(self, agent: str) -> bool:
        descriptor = self.registry.get(agent)
        if descriptor is None:
            return False
        return self.active_count(agent) < descriptor.max_concurrent_tasks

    def active_tasks(self, agent: str) -> list[Task]:
        return list(self._active.get(agent, {}).values())

    def queued_entries(self) -> list[QueuedTask]:
        return list(self._queue)

    def memory_ids(self) -> set[str]:
        ids = {task_id for tasks in self._active.values() for task_id in tasks}
        ids.update(entry.task.id for entry in self._queue)
        ids.update(self._unsettled)
        return ids

    def _reserve(self, agent: str, task: Task) -> bool:
        """Take a slot for an untracked ``task`` on ``agent``. Caller holds the lock."""
        if not self.can_accept(agent):
            return False
        self._active[agent][task.id] = task
        return True

    def _release(self, agent: str, task_id: str) -> None:
        """Caller holds the lock."""
        self._active.get(agent, {}).pop(task_id, None)

    def _dequeue(self, task_id: str) -> None:
        """Caller holds the lock."""
        self._queue = [entry for entry in self._queue if entry.task.id != task_id]

    def _tracked_agent(self, task_id: str) -> str | None:
        for agent, tasks in self._active.items():
            if task_id in tasks:
                return agent
        return None

    # ── Routing ──────────────────────────────────────────────────────────

    async def submit_task(
        self,
        title: str,
        description: str = "",
        *,
        type: str = "general",
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        via: str | None = None,
        execute: bool = False,
    ) -> RouteOutcome:
        """Create a pending task record and route it."""
        task = Task.new(title, description, type=type, priority=priority)
        await self.store.create(task)
        await self._publish(task_channel(task.id), {"status": task.status.value, "title": task.title})
        return await self.route_task(task, via=via, execute=execute)

    async def route_task(self, task: Task, *, via: str | None = None, execute: bool = False) -> RouteOutcome:
        """Assign, delegate or queue one task.

        ``via`` names the agent the task arrived through; a triage agent may
        block it instead of routing it. With ``execute=True`` an assigned task
        runs to completion before this returns.
        """
        await self.store.create(task)

        candidate: str | None = None
        via_agent = self.registry.get(via)
        if via_agent is not None and via_agent.triage:
            analysis = self.triage.analyze(task)
            if analysis.blocked:
                return await self._block(task, analysis)
            if analysis.primary_agent in self.registry:
                candidate = analysis.primary_agent
        if candidate is None:
            candidate = self.select_agent(task)

        async with self._lock:
            holder = self._tracked_agent(task.id)
            reserved = holder is None and self._reserve(candidate, task)
        if holder is not None:
            return RouteOutcome(task_id=task.id, status=TaskStatus.ASSIGNED, agent=holder, reason="already assigned")
        if reserved:
            outcome = await self._assign(candidate, task)
            if outcome is not None:
                return await self.run_assigned(candidate, task) if execute else outcome
            return await self._current(task.id, "task was claimed elsewhere")

        descriptor = self.registry.require(candidate)
        if descriptor.can_delegate:
            delegated = await self._delegate(task, descriptor, execute)
            if delegated is not None:
                return delegated
            logger.info("Delegation of %s by %s failed, queuing", task.id, candidate)
            return await self._enqueue(task, candidate, delegation_failed=True)
        return await self._enqueue(task, candidate)

    async def _assign(self, agent: str, task: Task, **fields: Any) -> RouteOutcome | None:
        """Claim a reserved task in the store. Returns None (and frees the slot) if the claim loses."""
        try:
            claimed = await self.store.claim(task.id, agent, CLAIMABLE, **fields)
        except StoreUnavailable:
            async with self._lock:
                self._release(agent, task.id)
            raise
        async with self._lock:
            if not claimed:
                self._release(agent, task.id)
                return None
            self._dequeue(task.id)
            task.status = TaskStatus.ASSIGNED
            task.assigned_to = agent
            task.assigned_at = utcnow()
            for key, value in fields.items():
                setattr(task, key, value)

        logger.info("Assigned %s to %s", task.id, agent)
        await self._publish(task_channel(task.id), {"status": TaskStatus.ASSIGNED.value, "agent": agent})
        await self._publish_agent(agent)
        return RouteOutcome(
            task_id=task.id,
            status=TaskStatus.ASSIGNED,
            agent=agent,
            delegated_by=fields.get("delegated_by"),
        )

    async def _delegate(self, task: Task, delegator: AgentDescriptor, execute: bool) -> RouteOutcome | None:
        target = self.delegation.select((task.description or task.title).lower(), exclude={delegator.name})
        if target is None or target not in self.registry:
            return None
        async with self._lock:
            reserved = self._reserve(target, task)
        if not reserved:
            return None
        outcome = await self._assign(target, task, delegated_by=delegator.name)
        if outcome is None:
            return None
        logger.info("%s delegated %s to %s", delegator.name, task.id, target)
        return await self.run_assigned(target, task) if execute else outcome

    async def _enqueue(
        self,
        task: Task,
        agent: str,
        *,
        delegation_failed: bool = False,
        **fields: Any,
    ) -> RouteOutcome:
        async with self._lock:
            position = next((i for i, e in enumerate(self._queue, 1) if e.task.id == task.id), None)
            if position is not None:
                entry = self._queue[position - 1]
            else:
                ahead = sum(1 for e in self._queue if e.preferred_agent == agent)
                entry = QueuedTask(
                    task=task,
                    preferred_agent=agent,
                    estimated_wait=WAIT_PER_ACTIVE * self.active_count(agent) + WAIT_PER_QUEUED * ahead,
                    delegation_failed=delegation_failed,
                )
                self._queue.append(entry)
                position = len(self._queue)
            task.status = TaskStatus.QUEUED
            task.preferred_agent = agent

        try:
            await self.store.transition(
                task.id, (TaskStatus.PENDING, TaskStatus.QUEUED), TaskStatus.QUEUED, preferred_agent=agent, **fields
            )
        except StoreUnavailable:
            logger.exception("Could not persist queued state for %s", task.id)

        await self._publish(
            QUEUE_CHANNEL,
            {
                "task_id": task.id,
                "preferred_agent": agent,
                "position": position,
                "estimated_wait": entry.estimated_wait,
                "queue_length": len(self._queue),
            },
        )
        return RouteOutcome(
            task_id=task.id,
            status=TaskStatus.QUEUED,
            preferred_agent=agent,
            position=position,
            estimated_wait=entry.estimated_wait,
            reason="delegation failed" if entry.delegation_failed else "agent at capacity",
        )

    async def _block(self, task: Task, analysis: TaskAnalysis) -> RouteOutcome:
        logger.warning("Task %s blocked: %s", task.id, analysis.reason)
        await self.store.mark_blocked(task.id, analysis.reason, analysis.next_action)
        task.status = TaskStatus.BLOCKED
        task.blocking_reason = analysis.reason
        task.next_action = analysis.next_action
        await self._publish(
            task_channel(task.id),
            {"status": TaskStatus.BLOCKED.value, "reason": analysis.reason, "next_action": analysis.next_action},
        )
        return RouteOutcome(
            task_id=task.id,
            status=TaskStatus.BLOCKED,
            reason=analysis.reason,
            next_action=analysis.next_action,
        )

    async def _current(self, task_id: str, reason: str) -> RouteOutcome:
        task = await self.store.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return RouteOutcome(task_id=task_id, status=task.status, agent=task.assigned_to, reason=reason)

    # ── Execution ────────────────────────────────────────────────────────

    async def run_assigned(self, agent: str, task: Task) -> RouteOutcome:
        """Execute an assigned task on ``agent``.

        A task already holding a slot uses it; otherwise the agent needs free
        capacity. No capacity or no quota makes this a no-op.
        """
        descriptor = self.registry.require(agent)
        async with self._lock:
            slot = self._active[agent].get(task.id)
            if slot is None:
                if not self.can_accept(agent):
                    return RouteOutcome(task_id=task.id, status=task.status, agent=agent, reason="agent at capacity")
                self._active[agent][task.id] = task
                slot = task
            elif slot.status == TaskStatus.IN_PROGRESS:
                return RouteOutcome(task_id=task.id, status=TaskStatus.IN_PROGRESS, agent=agent, reason="already running")
            slot.status = TaskStatus.IN_PROGRESS

        priority = request_priority(task.priority)
        try:
            if self.quota is not None:
                allowed, reason = await self.quota.check(agent, priority)
                if not allowed:
                    logger.info("Quota denied %s for %s: %s", agent, task.id, reason)
                    async with self._lock:
                        slot.status = TaskStatus.ASSIGNED
                    return RouteOutcome(task_id=task.id, status=TaskStatus.ASSIGNED, agent=agent, reason=reason)
            started = await self.store.transition(
                task.id, (TaskStatus.ASSIGNED,), TaskStatus.IN_PROGRESS, started_at=utcnow()
            )
        except StoreUnavailable:
            # still assigned in the store, so the slot must be runnable again
            async with self._lock:
                slot.status = TaskStatus.ASSIGNED
            raise
        if not started:
            async with self._lock:
                self._release(agent, task.id)
            return await self._current(task.id, "task is no longer assigned")

        if self.quota is not None:
            try:
                await self.quota.record_request(agent, priority)
            except StoreUnavailable:
                logger.exception("Could not record quota usage for %s on %s", agent, task.id)
        await self._publish(task_channel(task.id), {"status": TaskStatus.IN_PROGRESS.value, "agent": agent})
        await self._publish_agent(agent)

        context = {
            "agent": agent,
            "task_id": task.id,
            "system_prompt": descriptor.system_prompt,
            "project_id": task.project_id,
            "quota_priority": priority.value,
        }
        began = time.monotonic()
        try:
            result = await self.reasoner.think(self._task_prompt(task), context)
        except Exception as exc:
            return await self._finish_failed(agent, task, str(exc) or exc.__class__.__name__)
        finally:
            if self.quota is not None:
                self.quota.adjust_throttling(agent, (time.monotonic() - began) * 1000)
        return await self._finish_completed(agent, task, result)

    async def _finish_completed(self, agent: str, task: Task, result: Any) -> RouteOutcome:
        task.status = TaskStatus.COMPLETED
        task.completed_at = utcnow()
        task.result = result
        logger.info("%s completed %s", agent, task.id)

        settled = await self._settle(agent, task, {"completed_at": task.completed_at, "result": result, "error": None})
        next_agent = await self._announce(agent, task) if settled else None
        await self.process_queue()
        return RouteOutcome(
            task_id=task.id,
            status=TaskStatus.COMPLETED,
            agent=agent,
            next_agent=next_agent,
            reason=None if settled else UNSETTLED_REASON,
            result=result,
        )

    async def _finish_failed(self, agent: str, task: Task, error: str) -> RouteOutcome:
        task.status = TaskStatus.FAILED
        task.failed_at = utcnow()
        task.error = error
        logger.error("%s failed %s: %s", agent, task.id, error)

        settled = await self._settle(agent, task, {"failed_at": task.failed_at, "error": error})
        if settled:
            await self._announce(agent, task)
        await self.process_queue()
        return RouteOutcome(
            task_id=task.id,
            status=TaskStatus.FAILED,
            agent=agent,
            reason=None if settled else UNSETTLED_REASON,
            error=error,
        )

    async def _settle(self, agent: str, task: Task, fields: dict[str, Any]) -> bool:
        """Write a finished task's terminal status and free its slot.

        The slot is freed either way since nothing is executing the task any
        more. A failed write is kept and retried by ``flush_unsettled``.
        """
        try:
            await self.store.transition(task.id, (TaskStatus.IN_PROGRESS,), task.status, **fields)
        except StoreUnavailable:
            logger.exception("Could not record %s for %s; will retry", task.status.value, task.id)
            async with self._lock:
                self._unsettled[task.id] = (agent, task, fields)
            return False
        finally:
            async with self._lock:
                self._release(agent, task.id)
        return True

    async def _announce(self, agent: str, task: Task) -> str | None:
        """Publish a recorded terminal status and queue the workflow successor.

        Returns the next agent in the task's workflow, if any.
        """
        payload: dict[str, Any] = {"status": task.status.value, "agent": agent}
        next_agent = None
        if task.status == TaskStatus.FAILED:
            payload["error"] = task.error
        elif task.project_id:
            next_agent = self.triage.next_agent_in_workflow(task, agent)
            payload["next_agent"] = next_agent
        await self._publish(task_channel(task.id), payload)
        await self._publish_agent(agent)
        if task.status == TaskStatus.COMPLETED:
            try:
                await self._trigger_next_step(task)
            except StoreUnavailable:
                logger.exception("Could not queue the workflow successor of %s", task.id)
        return next_agent

    async def flush_unsettled(self) -> int:
        """Retry terminal writes that failed earlier. Returns how many are still outstanding."""
        async with self._lock:
            pending = list(self._unsettled.values())
        for agent, task, fields in pending:
            try:
                await self.store.transition(task.id, (TaskStatus.IN_PROGRESS,), task.status, **fields)
            except StoreUnavailable:
                logger.warning("Still cannot record %s for %s", task.status.value, task.id)
                continue
            async with self._lock:
                self._unsettled.pop(task.id, None)
            logger.info("Recorded deferred %s for %s", task.status.value, task.id)
            await self._announce(agent, task)
        return len(self._unsettled)

    @staticmethod
    def _task_prompt(task: Task) -> str:
        parts = [f"Task: {task.title}"]
        if task.description:
            parts.append(task.description)
        parts.append(f"Type: {task.type}\nPriority: {task.priority.value}")
        return "\n\n".join(parts)

    async def _trigger_next_step(self, task: Task) -> RouteOutcome | None:
        """Queue the workflow successor of a completed project task."""
        if not task.project_id:
            return None
        successor = await self.store.successor_of(task.id)
        if successor is None or successor.status != TaskStatus.PENDING:
            return None
        agent = successor.preferred_agent if successor.preferred_agent in self.registry else None
        logger.info("Workflow step %s complete, queuing %s", task.id, successor.id)
        return await self._enqueue(successor, agent or self.select_agent(successor), ready_at=utcnow())

    async def process_queue(self) -> list[RouteOutcome]:
        """Claim queued tasks for every agent that has free capacity, FIFO per agent."""
        async with self._lock:
            ready: list[QueuedTask] = []
            taken: set[str] = set()
            for entry in self._queue:
                if self._tracked_agent(entry.task.id) is not None:
                    taken.add(entry.task.id)
                elif self._reserve(entry.preferred_agent, entry.task):
                    ready.append(entry)
                    taken.add(entry.task.id)
            self._queue = [entry for entry in self._queue if entry.task.id not in taken]

        outcomes = []
        for index, entry in enumerate(ready):
            try:
                outcome = await self._assign(entry.preferred_agent, entry.task)
            except StoreUnavailable:
                logger.exception("Store unavailable while draining queue")
                async with self._lock:
                    for pending in reversed(ready[index:]):
                        self._release(pending.preferred_agent, pending.task.id)
                        if all(e.task.id != pending.task.id for e in self._queue):
                            self._queue.insert(0, pending)
                break
            if outcome is None:
                logger.info("Dropped queued task %s: no longer claimable", entry.task.id)
                continue
            outcomes.append(outcome)
        return outcomes

    # ── Queue status ─────────────────────────────────────────────────────

    def estimate_wait(self, agent: str, ahead: int) -> int:
        return WAIT_PER_ACTIVE * self.active_count(agent) + WAIT_PER_QUEUED * ahead

    async def queue_status(self) -> dict[str, Any]:
        async with self._lock:
            seen: dict[str, int] = {}
            queued = []
            for position, entry in enumerate(self._queue, 1):
                ahead = seen.get(entry.preferred_agent, 0)
                seen[entry.preferred_agent] = ahead + 1
                queued.append(
                    {
                        "task_id": entry.task.id,
                        "title": entry.task.title,
                        "preferred_agent": entry.preferred_agent,
                        "queued_at": entry.queued_at,
                        "position": position,
                        "estimated_wait": self.estimate_wait(entry.preferred_agent, ahead),
                        "delegation_failed": entry.delegation_failed,
                    }
                )
            active = {
                agent.name: {
                    "count": self.active_count(agent.name),
                    "max_capacity": agent.max_concurrent_tasks,
                    "tasks": list(self._active[agent.name]),
                }
                for agent in self.registry
            }
            unsettled = list(self._unsettled)
        return {
            "queue_length": len(queued),
            "active_tasks_by_agent": active,
            "queued_tasks": queued,
            "unsettled_tasks": unsettled,
        }

    # ── Polling loops ────────────────────────────────────────────────────

    async def poll_main(self) -> list[RouteOutcome]:
        """Route new pending tasks, adopt stray assigned ones, then drain the queue."""
        try:
            tasks = await self.store.find(
                statuses=(TaskStatus.PENDING, TaskStatus.ASSIGNED), order="created", limit=self.main_batch
            )
        except StoreUnavailable:
            logger.exception("Main loop could not read tasks")
            return []

        outcomes: list[RouteOutcome] = []
        for task in tasks:
            if task.status == TaskStatus.PENDING:
                try:
                    outcomes.append(await self.route_task(task))
                except StoreUnavailable:
                    logger.exception("Could not route %s", task.id)
            else:
                await self._adopt(task)
        try:
            outcomes.extend(await self.process_queue())
        except StoreUnavailable:
            logger.exception("Could not drain queue")
        return outcomes

    async def _adopt(self, task: Task) -> bool:
        """Track an assigned task the router is not yet holding, if its agent is idle."""
        agent = task.assigned_to
        if agent is None or agent not in self.registry:
            logger.warning("Task %s is assigned to unknown agent %s", task.id, agent)
            return False
        async with self._lock:
            if self._tracked_agent(task.id) is not None or self.active_count(agent) > 0:
                return False
            self._active[agent][task.id] = task
        return True

    async def poll_agent(self, agent: str) -> RouteOutcome | None:
        """Start the highest-priority assigned task for ``agent``, if it has room."""
        async with self._lock:
            waiting = [t for t in self._active.get(agent, {}).values() if t.status == TaskStatus.ASSIGNED]
            has_room = self.can_accept(agent)
        try:
            if waiting:
                task = min(waiting, key=lambda t: (-t.priority.rank, t.created_at))
            elif has_room:
                found = await self.store.find(
                    statuses=(TaskStatus.ASSIGNED,), assigned_to=agent, order="priority", limit=1
                )
                if not found:
                    return None
                task = found[0]
            else:
                return None
            return await self.run_assigned(agent, task)
        except StoreUnavailable:
            logger.exception("Agent loop for %s could not reach the store", agent)
            return None

    async def poll_coordinator(self) -> list[RouteOutcome]:
        """Triage unmanaged tasks, group them into projects and queue them for their primary agent."""
        triage_agent = self.registry.triage_agent
        if triage_agent is None:
            return []
        try:
            tasks = await self.store.find(unmanaged=True, order="priority", limit=self.coordinator_batch)
        except StoreUnavailable:
            logger.exception("Coordinator loop could not read tasks")
            return []

        outcomes = []
        for task in tasks:
            analysis = self.triage.analyze(task)
            try:
                if analysis.blocked:
                    outcomes.append(await self._block(task, analysis))
                    continue
                primary = analysis.primary_agent if analysis.primary_agent in self.registry else self.select_agent(task)
                task.project_id = await self.store.attach_project(
                    task.id, analysis.project_type, estimated_effort=analysis.estimated_effort.value
                )
                task.estimated_effort = analysis.estimated_effort.value
                outcomes.append(await self._enqueue(task, primary))
            except StoreUnavailable:
                logger.exception("Could not triage %s", task.id)
        return outcomes

    async def ensure_consistency(self) -> bool:
        """Resync if the in-memory view and the store disagree. Returns True if a resync ran.

        Terminal writes that failed earlier are retried first.
        """
        await self.flush_unsettled()
        try:
            store_ids = await self.store.live_ids()
        except StoreUnavailable:
            logger.exception("Consistency check could not read the store")
            return False
        async with self._lock:
            memory_ids = self.memory_ids()
        if memory_ids == store_ids:
            return False
        logger.warning(
            "State divergence: %d only in memory, %d only in store; resyncing",
            len(memory_ids - store_ids),
            len(store_ids - memory_ids),
        )
        await self.sync_state()
        return True

    async def sync_state(self) -> dict[str, int]:
        """Rebuild the active sets and the queue from the store's live records."""
        try:
            tasks = await self.store.find(statuses=LIVE_STATUSES, order="created")
        except StoreUnavailable:
            logger.exception("State sync could not read the store")
            return {"active": sum(len(t) for t in self._active.values()), "queued": len(self._queue)}

        async with self._lock:
            self._active = {agent.name: {} for agent in self.registry}
            self._queue = []
            for task in tasks:
                if task.id in self._unsettled:
                    continue
                if task.status in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS):
                    agent = task.assigned_to
                    if agent not in self._active:
                        logger.warning("Task %s is assigned to unknown agent %s", task.id, agent)
                        continue
                    self._active[agent][task.id] = task
                    if self.active_count(agent) > self.registry.require(agent).max_concurrent_tasks:
                        logger.warning("Store has %s over capacity", agent)
                else:
                    preferred = task.preferred_agent if task.preferred_agent in self.registry else None
                    self._queue.append(
                        QueuedTask(
                            task=task,
                            preferred_agent=preferred or self.select_agent(task),
                            queued_at=task.updated_at or task.created_at,
                        )
                    )
            for position, entry in enumerate(self._queue):
                ahead = sum(1 for e in self._queue[:position] if e.preferred_agent == entry.preferred_agent)
                entry.estimated_wait = self.estimate_wait(entry.preferred_agent, ahead)
            stats = {"active": sum(len(t) for t in self._active.values()), "queued": len(self._queue)}

        logger.info("State synced: %d active, %d queued", stats["active"], stats["queued"])
        return stats

    # ── Operator actions ─────────────────────────────────────────────────

    async def manual_trigger(self, task_id: str) -> RouteOutcome:
        """Push one task through its next step right now."""
        task = await self.store.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if task.status == TaskStatus.PENDING:
            return await self.route_task(task, execute=True)
        if task.status == TaskStatus.ASSIGNED and task.assigned_to:
            if task.assigned_to not in self.registry:
                raise TriggerRejected(task_id, task.status.value, f"assigned to unknown agent {task.assigned_to}")
            async with self._lock:
                held = self._active.get(task.assigned_to, {}).get(task.id)
            return await self.run_assigned(task.assigned_to, held or task)
        if task.status == TaskStatus.QUEUED:
            agent = task.preferred_agent if task.preferred_agent in self.registry else self.select_agent(task)
            async with self._lock:
                reserved = self._tracked_agent(task.id) is None and self._reserve(agent, task)
            if not reserved:
                return await self._enqueue(task, agent)
            outcome = await self._assign(agent, task)
            if outcome is None:
                return await self._current(task.id, "task was claimed elsewhere")
            return await self.run_assigned(agent, task)
        if task.status == TaskStatus.BLOCKED:
            raise TaskBlocked(task_id, task.blocking_reason or "insufficient detail", task.next_action or "")
        raise TriggerRejected(task_id, task.status.value)

    # ── Publishing ───────────────────────────────────────────────────────

    async def _publish(self, channel: str, payload: dict[str, Any]) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish(channel, {**payload, "timestamp": utcnow()})
        except Exception:
            logger.warning("Publish to %s failed", channel, exc_info=True)

    async def _publish_agent(self, agent: str) -> None:
        descriptor = self.registry.get(agent)
        await self._publish(
            agent_channel(agent),
            {
                "agent": agent,
                "active": self.active_count(agent),
                "max_capacity": descriptor.max_concurrent_tasks if descriptor else None,
            },
        )
