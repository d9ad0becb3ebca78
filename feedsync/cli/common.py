"""Helpers shared by CLI commands."""

import asyncio
import signal

import typer
from rich.console import Console
from rich.markup import escape

from ..config import Config

console = Console()


def load_config(ctx: typer.Context) -> Config:
    """Config for the path given on the command line, validated eagerly."""
    config_path = (ctx.obj or {}).get("config_path")
    config = Config(config_path)
    try:
        config.config
    except ValueError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise typer.Exit(1)
    return config


def install_stop_handlers(stop_event: asyncio.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)
