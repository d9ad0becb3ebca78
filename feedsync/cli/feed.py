"""Feed inspection command."""

import asyncio

import httpx
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..ingestion import FeedParser, HttpFetcher
from .common import load_config

console = Console()


async def _load_feed(url: str, user_agent: str, timeout: float):
    async with httpx.AsyncClient(follow_redirects=True) as client:
        parser = FeedParser(HttpFetcher(client, user_agent=user_agent), timeout=timeout)
        return await parser.load_feed(url)


def feed_command(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Feed or site URL"),
    limit: int = typer.Option(20, "--limit", "-n", help="Entries to show"),
) -> None:
    """Parse a feed and list its entries, newest first."""
    settings = load_config(ctx).config.http
    result = asyncio.run(_load_feed(url, settings.user_agent, settings.feed_timeout))

    if result.is_err():
        console.print(f"[red]❌ {escape(str(result.error))}[/red]")
        raise typer.Exit(1)

    feed = result.value
    table = Table(title=f"{feed.title or feed.url} ({feed.type or 'unknown'})")
    table.add_column("Published", style="magenta")
    table.add_column("Title", style="cyan")
    table.add_column("Link", style="blue")

    for entry in feed.entries[:limit]:
        table.add_row(
            entry.published_at.strftime("%Y-%m-%d %H:%M") if entry.published_at else "-",
            entry.title or "Untitled",
            entry.link or "-",
        )

    console.print(table)
    console.print(f"[dim]{len(feed.entries)} entries[/dim]")
