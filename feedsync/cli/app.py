"""Main CLI application."""

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

from ..log import setup_logging
from .feed import feed_command
from .import_article import import_command
from .init import init_command
from .queue import queue_app
from .run import scheduler_command, worker_command

app = typer.Typer(
    name="feedsync",
    help="Feedsync - RSS/Atom article synchronization workers",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="FEEDSYNC_CONFIG",
        help="Path to config.yaml (default: ~/.config/feedsync/config.yaml)",
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
) -> None:
    """Feedsync command line."""
    setup_logging(log_level)
    ctx.obj = {"config_path": config_path}


# Register commands
app.command("init")(init_command)
app.command("worker")(worker_command)
app.command("scheduler")(scheduler_command)
app.command("feed")(feed_command)
app.command("import")(import_command)
app.add_typer(queue_app, name="queue", help="Inspect job queues")


if __name__ == "__main__":
    app()
