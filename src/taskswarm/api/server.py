"""FastAPI server exposing task dispatch and coordination."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import click
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from taskswarm import __version__
from taskswarm.config import Settings
from taskswarm.engine.orchestrator import SwarmRuntime
from taskswarm.errors import (
    StoreUnavailable,
    TaskBlocked,
    TaskNotFound,
    TaskSwarmError,
    TriggerRejected,
    UnknownStrategy,
)
from taskswarm.logging_config import configure_logging
from taskswarm.models import Task, TaskPriority

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0

_ERROR_STATUS: dict[type[TaskSwarmError], int] = {
    TaskNotFound: 404,
    TriggerRejected: 409,
    TaskBlocked: 409,
    UnknownStrategy: 400,
    StoreUnavailable: 503,
}


def create_app(runtime: SwarmRuntime | None = None, *, start_loops: bool = False) -> FastAPI:
    """Build the API around a runtime (a fresh one from the environment if not given)."""
    runtime = runtime or SwarmRuntime.from_settings()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await runtime.open()
        if start_loops:
            runtime.start_loops()
        try:
            yield
        finally:
            await runtime.close()

    app = FastAPI(
        title="taskswarm API",
        version=__version__,
        description="Multi-agent task dispatch and coordination API",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    @app.exception_handler(TaskSwarmError)
    async def swarm_error(_: Request, exc: TaskSwarmError) -> JSONResponse:
        status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 400)
        return JSONResponse(status_code=status, content={"error": str(exc), "type": exc.__class__.__name__})

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check."""
        return await runtime.health()

    @app.get("/api/agents")
    async def agents() -> dict[str, Any]:
        """Registered agents and their current load."""
        return {
            "agents": [
                {**agent.to_dict(), "active": runtime.router.active_count(agent.name)} for agent in runtime.registry
            ]
        }

    @app.post("/api/tasks")
    async def submit_task(request: dict[str, Any]) -> dict[str, Any]:
        """Submit a task; it is assigned, delegated, queued or blocked straight away."""
        title = str(request.get("title", "")).strip()
        if not title:
            raise HTTPException(status_code=400, detail="title is required")
        try:
            priority = TaskPriority(request.get("priority", TaskPriority.MEDIUM))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"invalid priority: {request.get('priority')}") from None
        outcome = await runtime.router.submit_task(
            title,
            str(request.get("description", "")),
            type=str(request.get("type", "general")),
            priority=priority,
            via=request.get("via"),
            execute=bool(request.get("execute", False)),
        )
        return outcome.to_dict()

    @app.get("/api/tasks/queue")
    async def queue_status() -> dict[str, Any]:
        """Pending queue and per-agent load."""
        return await runtime.router.queue_status()

    @app.post("/api/tasks/sync")
    async def sync() -> dict[str, Any]:
        """Rebuild in-memory state from the store."""
        return await runtime.router.sync_state()

    @app.post("/api/tasks/consistency-check")
    async def consistency_check() -> dict[str, Any]:
        """Compare in-memory state with the store, resyncing on divergence."""
        resynced = await runtime.router.ensure_consistency()
        return {"resynced": resynced, "queue": await runtime.router.queue_status()}

    @app.get("/api/tasks/{task_id}")
    async def get_task(task_id: str) -> dict[str, Any]:
        task = await runtime.store.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task.to_dict()

    @app.get("/api/projects/{project_id}")
    async def get_project(project_id: str) -> dict[str, Any]:
        project = await runtime.store.get_project(project_id)
        if project is None:
            raise HTTPException(status_code=404, detail=f"project not found: {project_id}")
        return project

    @app.post("/api/tasks/{task_id}/trigger")
    async def trigger(task_id: str) -> dict[str, Any]:
        """Force a pending, queued or assigned task through its next step."""
        outcome = await runtime.router.manual_trigger(task_id)
        return outcome.to_dict()

    @app.post("/api/tasks/{task_id}/next-step")
    async def link_next_step(task_id: str, request: dict[str, Any]) -> dict[str, Any]:
        """Declare the task that follows ``task_id`` in its workflow."""
        next_id = str(request.get("next_task_id", ""))
        for tid in (task_id, next_id):
            if not tid or await runtime.store.get(tid) is None:
                raise TaskNotFound(tid or "<missing>")
        await runtime.store.link_next_step(task_id, next_id)
        return {"task_id": task_id, "next_task_id": next_id}

    @app.post("/api/loops/start")
    async def start_loops() -> dict[str, Any]:
        runtime.start_loops()
        return runtime.scheduler.status()

    @app.post("/api/loops/stop")
    async def stop_loops() -> dict[str, Any]:
        await runtime.stop_loops()
        return runtime.scheduler.status()

    @app.get("/api/loops/status")
    async def loops_status() -> dict[str, Any]:
        return runtime.scheduler.status()

    @app.post("/api/coordinate")
    async def coordinate(request: dict[str, Any]) -> dict[str, Any]:
        """Run a coordination session to completion."""
        strategy = str(request.get("strategy", "delegated"))
        title = str(request.get("task") or request.get("title") or "").strip()
        if not title:
            raise HTTPException(status_code=400, detail="task is required")
        task = Task.new(title, str(request.get("description", "")))
        outcome = await runtime.engine.coordinate_task(task, strategy)
        return outcome.to_dict()

    @app.get("/api/coordinate")
    async def sessions() -> dict[str, Any]:
        return runtime.engine.status()

    @app.get("/api/coordinate/{session_id}")
    async def session_status(session_id: str) -> dict[str, Any]:
        session = runtime.engine.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"session not found: {session_id}")
        return session.to_dict()

    @app.get("/api/quota")
    async def quota() -> dict[str, Any]:
        """Per-agent and global request usage in the current window."""
        return await runtime.quota.status()

    @app.get("/api/stream")
    async def stream() -> StreamingResponse:
        """SSE endpoint for task, queue and agent status events."""

        async def event_generator() -> AsyncGenerator[str, None]:
            async with runtime.bus.subscribe() as queue:
                while True:
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": keepalive\n\n"
                        continue
                    yield event.to_sse()

        return StreamingResponse(event_generator(), media_type="text/event-stream")

    return app


app = create_app()


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--loops/--no-loops", default=True, help="Run the background polling loops")
@click.option("--log-level", default=None, help="Logging level (default TASKSWARM_LOG_LEVEL or INFO)")
def main(port: int, host: str, loops: bool, log_level: str | None) -> None:
    """Start the taskswarm API server."""
    import uvicorn

    settings = Settings.from_env()
    configure_logging(log_level or settings.log_level)
    uvicorn.run(create_app(SwarmRuntime.from_settings(settings), start_loops=loops), host=host, port=port, log_config=None)
