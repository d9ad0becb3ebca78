"""Queue inspection commands."""

import asyncio
from typing import Dict, List, Optional

import pendulum
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import Config
from ..pipeline import PipelineRuntime
from ..queue import Job, JobState, QueueName
from .common import load_config

console = Console()
queue_app = typer.Typer(help="Inspect job queues")


async def _counts(config: Config) -> Dict[str, Dict[str, int]]:
    async with PipelineRuntime(config) as runtime:
        return {name: await queue.counts() for name, queue in runtime.queues.items()}


async def _failed(config: Config, names: List[str], limit: int) -> List[Job]:
    async with PipelineRuntime(config) as runtime:
        jobs = []
        for name in names:
            jobs.extend(await runtime.queue(name).failed_jobs(limit))
        return jobs


@queue_app.command("stats")
def queue_stats(ctx: typer.Context) -> None:
    """Show job counts per queue."""
    counts = asyncio.run(_counts(load_config(ctx)))

    table = Table(title="Job queues")
    table.add_column("Queue", style="cyan")
    for state in JobState:
        table.add_column(state.value.capitalize(), justify="right")

    for name, by_state in counts.items():
        table.add_row(name, *(str(by_state[state.value]) for state in JobState))

    console.print(table)


@queue_app.command("failed")
def queue_failed(
    ctx: typer.Context,
    queue: Optional[str] = typer.Option(None, "--queue", "-q", help="Only this queue"),
    limit: int = typer.Option(20, "--limit", "-n", help="Jobs per queue"),
) -> None:
    """List failed jobs with their last error."""
    if queue is not None and queue not in QueueName.ALL:
        console.print(f"[red]Unknown queue: {queue}[/red]")
        raise typer.Exit(1)

    names = [queue] if queue else list(QueueName.ALL)
    jobs = asyncio.run(_failed(load_config(ctx), names, limit))

    if not jobs:
        console.print("[green]No failed jobs.[/green]")
        return

    table = Table(title="Failed jobs")
    table.add_column("Queue", style="cyan")
    table.add_column("Job", style="magenta")
    table.add_column("Attempts", justify="right")
    table.add_column("Failed at", style="yellow")
    table.add_column("Reason", style="red")

    for job in jobs:
        failed_at = (
            pendulum.from_timestamp(job.finished_at / 1000).to_datetime_string()
            if job.finished_at
            else "-"
        )
        table.add_row(
            job.queue, job.id, str(job.attempts_made), failed_at, escape(job.failed_reason or "")
        )

    console.print(table)
