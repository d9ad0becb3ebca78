"""Import command implementation."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from ..errors import QueueError
from ..models import ArticleMetadata
from ..config import Config
from ..pipeline import PipelineRuntime
from ..queue import QueueName
from .common import load_config

console = Console()


async def _import(
    config: Config,
    url: str,
    title: Optional[str],
    make_readable: bool,
    wait: float,
    with_worker: bool,
) -> ArticleMetadata:
    async with PipelineRuntime(config) as runtime:
        if with_worker:
            runtime.start_workers([QueueName.IMPORT_ARTICLE])
        return await runtime.submit_import(
            url, title=title, make_readable=make_readable, wait_timeout=wait
        )


def import_command(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Article URL"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Article title"),
    wait: float = typer.Option(60.0, "--wait", "-w", help="Seconds to wait for the result"),
    make_readable: bool = typer.Option(
        True, "--readable/--no-readable", help="Cache a readable view"
    ),
    with_worker: bool = typer.Option(
        True,
        "--with-worker/--no-worker",
        help="Process the job in this process instead of relying on running workers",
    ),
) -> None:
    """Import a single article and print its metadata."""
    config = load_config(ctx)
    try:
        metadata = asyncio.run(_import(config, url, title, make_readable, wait, with_worker))
    except QueueError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(
        Panel(
            f"[bold]{metadata.title}[/bold]\n"
            f"{metadata.description or ''}\n\n"
            f"Site: {metadata.site_name}\n"
            f"Author: {metadata.author or '-'}\n"
            f"Published: {metadata.published_at.isoformat()}\n"
            f"Readable: {'yes' if metadata.readable else 'no'}\n"
            f"Image: {metadata.image or '-'}",
            title=metadata.link,
            style="green",
        )
    )
