"""Long-running worker and scheduler commands."""

import asyncio
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config import Config
from ..pipeline import PipelineRuntime
from ..queue import QueueName
from ..scheduler import TickStats
from .common import install_stop_handlers, load_config

console = Console()


async def _run_workers(config: Config, names: List[str]) -> None:
    stop_event = asyncio.Event()
    install_stop_handlers(stop_event)
    async with PipelineRuntime(config) as runtime:
        await runtime.run_workers(stop_event, names)


def worker_command(
    ctx: typer.Context,
    queues: Optional[List[str]] = typer.Option(
        None,
        "--queue",
        "-q",
        help="Queue to consume (repeatable). Default: all queues",
    ),
) -> None:
    """Process jobs until interrupted."""
    names = queues or list(QueueName.ALL)
    unknown = [name for name in names if name not in QueueName.ALL]
    if unknown:
        console.print(f"[red]Unknown queue(s): {', '.join(unknown)}[/red]")
        raise typer.Exit(1)

    config = load_config(ctx)
    console.print(f"[dim]Starting workers for: {', '.join(names)}[/dim]")
    asyncio.run(_run_workers(config, names))
    console.print("[yellow]Workers stopped[/yellow]")


def print_tick_stats(stats: TickStats) -> None:
    table = Table(title="Scheduler tick")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Pages", str(stats.pages))
    table.add_row("Feeds seen", str(stats.feeds_seen))
    table.add_row("Enqueued", str(stats.enqueued))
    table.add_row("Already queued", str(stats.coalesced))
    table.add_row("Placeholders skipped", str(stats.skipped_placeholders))
    table.add_row("Enqueue failures", str(stats.enqueue_failures))
    table.add_row("Aborted", "yes" if stats.aborted else "no")
    console.print(table)


async def _run_scheduler(config: Config, once: bool) -> Optional[TickStats]:
    async with PipelineRuntime(config) as runtime:
        if once:
            return await runtime.scheduler.tick()
        stop_event = asyncio.Event()
        install_stop_handlers(stop_event)
        await runtime.scheduler.run(stop_event)
    return None


def scheduler_command(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit"),
) -> None:
    """Enqueue sync jobs for outdated feeds periodically."""
    config = load_config(ctx)
    stats = asyncio.run(_run_scheduler(config, once))
    if stats is not None:
        print_tick_stats(stats)
        if stats.aborted:
            raise typer.Exit(1)
