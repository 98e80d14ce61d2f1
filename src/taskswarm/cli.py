"""CLI entry point for taskswarm."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from taskswarm import __version__
from taskswarm.config import Settings
from taskswarm.errors import ConfigError, TaskSwarmError
from taskswarm.logging_config import configure_logging
from taskswarm.models import RouteOutcome, TaskPriority, TaskStatus
from taskswarm.strategies import STRATEGIES

console = Console()

T = TypeVar("T")

STATUS_STYLES = {
    TaskStatus.ASSIGNED: "cyan",
    TaskStatus.QUEUED: "yellow",
    TaskStatus.BLOCKED: "red",
    TaskStatus.IN_PROGRESS: "blue",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red bold",
}


@click.group()
@click.version_option(version=__version__, prog_name="swarm")
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="TASKSWARM_HOME",
    default=None,
    help="Data directory (default ~/.taskswarm)",
)
@click.option("--debug", is_flag=True, help="Use the offline echo reasoner")
@click.option("--log-level", default=None, help="Logging level (default TASKSWARM_LOG_LEVEL or INFO)")
@click.pass_context
def main(ctx: click.Context, home: Path | None, debug: bool, log_level: str | None) -> None:
    """taskswarm: multi-agent task dispatch."""
    try:
        settings = Settings.from_env(data_dir=home)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(log_level or settings.log_level)
    ctx.obj = {"settings": settings, "debug": debug}


def _settings(ctx: click.Context) -> Settings:
    settings = ctx.obj["settings"]
    if ctx.obj["debug"]:
        settings.debug_mode = True
        settings.reasoner.backend = "echo"
    return settings


def _run(ctx: click.Context, action: Callable[[Any], Awaitable[T]]) -> T:
    """Open a runtime, run one async action against it, and close it."""
    from taskswarm.engine.orchestrator import SwarmRuntime

    async def go() -> T:
        async with SwarmRuntime.from_settings(_settings(ctx)) as runtime:
            return await action(runtime)

    try:
        return asyncio.run(go())
    except TaskSwarmError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the data directory and database."""
    from taskswarm.storage.database import Database

    db = Database(_settings(ctx).data_dir)
    try:
        asyncio.run(db.ensure_tables())
    except TaskSwarmError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]taskswarm initialized at {db.data_dir}[/green]")
    console.print(f"  Database: {db.db_path}")


@main.command()
@click.argument("title")
@click.option("--description", "-d", default="", help="Task details")
@click.option("--type", "task_type", default="general", help="Task type tag")
@click.option(
    "--priority",
    type=click.Choice([p.value for p in TaskPriority]),
    default=TaskPriority.MEDIUM.value,
    show_default=True,
)
@click.option("--via", default=None, help="Agent the task arrives through (e.g. project-manager)")
@click.option("--execute", is_flag=True, help="Run the task now if it is assigned")
@click.pass_context
def submit(
    ctx: click.Context,
    title: str,
    description: str,
    task_type: str,
    priority: str,
    via: str | None,
    execute: bool,
) -> None:
    """Submit a task for routing."""
    outcome = _run(
        ctx,
        lambda rt: rt.router.submit_task(
            title, description, type=task_type, priority=priority, via=via, execute=execute
        ),
    )
    _print_outcome(outcome)


@main.command()
@click.argument("task_id")
@click.pass_context
def show(ctx: click.Context, task_id: str) -> None:
    """Show one task record."""
    task = _run(ctx, lambda rt: rt.store.get(task_id))
    if task is None:
        raise click.ClickException(f"Task not found: {task_id}")
    table = Table(title=f"Task {task.id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in task.to_dict().items():
        if value is None or value == "":
            continue
        if key == "result":
            value = json.dumps(value, default=str)[:200]
        table.add_row(key, str(value))
    console.print(table)


@main.command()
@click.pass_context
def queue(ctx: click.Context) -> None:
    """Show agent load and the pending queue (after a resync from the store)."""

    async def action(rt: Any) -> dict[str, Any]:
        await rt.router.sync_state()
        return await rt.router.queue_status()

    status = _run(ctx, action)

    table = Table(title="Agent Load")
    table.add_column("Agent", style="cyan")
    table.add_column("Active", justify="right")
    table.add_column("Capacity", justify="right")
    for agent, load in status["active_tasks_by_agent"].items():
        full = load["count"] >= load["max_capacity"]
        table.add_row(agent, str(load["count"]), str(load["max_capacity"]), style="red" if full else None)
    console.print(table)
    if status["unsettled_tasks"]:
        console.print(f"[yellow]Awaiting store write:[/yellow] {', '.join(status['unsettled_tasks'])}")

    if not status["queued_tasks"]:
        console.print("[dim]Queue is empty.[/dim]")
        return
    queued = Table(title=f"Queue ({status['queue_length']})")
    queued.add_column("#", justify="right")
    queued.add_column("Task", style="cyan")
    queued.add_column("Title", max_width=40)
    queued.add_column("Preferred Agent", style="green")
    queued.add_column("Est. Wait", justify="right")
    for item in status["queued_tasks"]:
        queued.add_row(
            str(item["position"]),
            item["task_id"],
            item["title"][:40],
            item["preferred_agent"],
            f"{item['estimated_wait']} min",
        )
    console.print(queued)


@main.command()
@click.argument("task_id")
@click.pass_context
def trigger(ctx: click.Context, task_id: str) -> None:
    """Force a task through its next step now."""

    async def action(rt: Any) -> RouteOutcome:
        await rt.router.sync_state()
        return await rt.router.manual_trigger(task_id)

    _print_outcome(_run(ctx, action))


@main.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Rebuild agent load and the queue from the store."""
    stats = _run(ctx, lambda rt: rt.router.sync_state())
    console.print(f"[green]Synced:[/green] {stats['active']} active, {stats['queued']} queued")


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Run one consistency check against the store."""

    async def action(rt: Any) -> tuple[bool, dict[str, int]]:
        changed = await rt.router.ensure_consistency()
        return changed, await rt.store.counts_by_status()

    changed, counts = _run(ctx, action)
    console.print("[yellow]State resynchronized from store[/yellow]" if changed else "[green]State consistent[/green]")
    for status, count in sorted(counts.items()):
        console.print(f"  {status}: {count}")


@main.command()
@click.argument("task")
@click.option(
    "--strategy",
    "-s",
    type=click.Choice(list(STRATEGIES)),
    default="delegated",
    show_default=True,
)
@click.option("--description", "-d", default="", help="Task details")
@click.pass_context
def coordinate(ctx: click.Context, task: str, strategy: str, description: str) -> None:
    """Run a multi-agent coordination session."""
    from taskswarm.models import Task

    console.print(f"[bold cyan]{strategy}:[/bold cyan] {task}")
    outcome = _run(ctx, lambda rt: rt.engine.coordinate_task(Task.new(task, description), strategy))

    style = "green" if outcome.status.value == "completed" else "red"
    console.print(f"[{style}]Session {outcome.session_id}: {outcome.status.value}[/{style}]")
    console.print(f"  Participants: {', '.join(outcome.participants) or '-'}")
    console.print(f"  Duration:     {outcome.duration_seconds:.1f}s")
    if outcome.error:
        console.print(f"  [red]Error: {outcome.error}[/red]")

    table = Table(title="Phase Results")
    table.add_column("Phase", style="cyan")
    table.add_column("Agent", style="green")
    table.add_column("Output", max_width=60)
    for phase in outcome.results:
        table.add_row(phase["phase"], phase["agent"], json.dumps(phase["output"], default=str)[:60])
    console.print(table)


@main.command()
@click.pass_context
def quota(ctx: click.Context) -> None:
    """Show request quota usage."""
    status = _run(ctx, lambda rt: rt.quota.status())
    table = Table(title="Quota Usage (trailing hour)")
    table.add_column("Agent", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Quota", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Usage", justify="right")
    table.add_column("Available In", justify="right")
    for agent, row in status["agents"].items():
        wait = row["available_in_seconds"]
        table.add_row(
            agent,
            str(row["used"]),
            str(row["quota"]),
            str(row["remaining"]),
            f"{row['percentage']}%",
            f"{wait:.0f}s" if wait else "now",
        )
    g = status["global"]
    table.add_row("[bold]global[/bold]", str(g["used"]), str(g["limit"]), str(g["remaining"]), f"{g['percentage']}%", "")
    console.print(table)


@main.command()
def agents() -> None:
    """List the agent team."""
    from taskswarm.engine.registry import default_team

    table = Table(title="Agents")
    table.add_column("Name", style="cyan")
    table.add_column("Specialization", max_width=50)
    table.add_column("Max Tasks", justify="right")
    table.add_column("Delegates")
    for agent in default_team():
        table.add_row(agent.name, agent.specialization, str(agent.max_concurrent_tasks), "yes" if agent.can_delegate else "")
    console.print(table)


@main.command()
@click.option("--once", is_flag=True, help="Run one iteration of every loop and exit")
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
@click.pass_context
def run(ctx: click.Context, once: bool, duration: float | None) -> None:
    """Run the polling loops in the foreground."""

    async def action(rt: Any) -> dict[str, Any]:
        if once:
            await rt.router.sync_state()
            return await rt.scheduler.run_once()
        rt.start_loops()
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            status = rt.scheduler.status()
            await rt.stop_loops()
        return status

    try:
        status = _run(ctx, action)
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")
        return

    table = Table(title="Loops")
    table.add_column("Loop", style="cyan")
    table.add_column("Iterations", justify="right")
    table.add_column("Errors", justify="right")
    for name, stats in status["loops"].items():
        table.add_row(name, str(stats["iterations"]), str(stats["errors"]))
    console.print(table)


def _print_outcome(outcome: RouteOutcome) -> None:
    style = STATUS_STYLES.get(outcome.status, "white")
    console.print(f"[bold]{outcome.task_id}[/bold] [{style}]{outcome.status.value}[/{style}]")
    if outcome.agent:
        suffix = f" (delegated by {outcome.delegated_by})" if outcome.delegated_by else ""
        console.print(f"  Agent: {outcome.agent}{suffix}")
    if outcome.status == TaskStatus.QUEUED:
        console.print(f"  Preferred agent: {outcome.preferred_agent}")
        console.print(f"  Position: {outcome.position}  Estimated wait: {outcome.estimated_wait} min")
    if outcome.reason and outcome.status != TaskStatus.QUEUED:
        console.print(f"  Reason: {outcome.reason}")
    if outcome.next_action:
        console.print(f"  Next action: {outcome.next_action}")
    if outcome.next_agent:
        console.print(f"  Next agent: {outcome.next_agent}")
    if outcome.error:
        console.print(f"  [red]Error: {outcome.error}[/red]")
    if outcome.result is not None:
        console.print(f"  Result: {json.dumps(outcome.result, default=str)[:200]}")
