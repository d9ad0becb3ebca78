"""Init command implementation."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from ..config import ConfigModel, save_config
from ..db import create_connection_pool, init_database, validate_connection

console = Console()


async def _init_schema(db_config: dict) -> bool:
    pool = create_connection_pool(db_config)
    await pool.open()
    try:
        if not await validate_connection(pool):
            return False
        await init_database(pool)
        return True
    finally:
        await pool.close()


def init_command(
    config_dir: Path = typer.Option(
        Path.home() / ".config" / "feedsync",
        "--config-dir",
        "-c",
        help="Configuration directory",
    ),
    redis_host: str = typer.Option("localhost", "--redis-host", help="Redis host"),
    redis_port: int = typer.Option(6379, "--redis-port", help="Redis port"),
    db_host: str = typer.Option("localhost", "--db-host", help="Postgres host"),
    db_port: int = typer.Option(5432, "--db-port", help="Postgres port"),
    db_name: str = typer.Option("feedsync", "--db-name", help="Database name"),
    db_user: str = typer.Option("feedsync", "--db-user", help="Database user"),
    skip_db: bool = typer.Option(False, "--skip-db", help="Only write the config file"),
) -> None:
    """Initialize feedsync configuration and database."""
    console.print(Panel.fit("📰 Feedsync - Initialization", style="bold blue"))

    # Create configuration directory
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"

    # Create default configuration
    config = ConfigModel(
        redis={"host": redis_host, "port": redis_port, "password_env": "REDIS_PASSWORD"},
        postgres={
            "host": db_host,
            "port": db_port,
            "database": db_name,
            "user": db_user,
            "password_env": "FEEDSYNC_DB_PASSWORD",
        },
    )

    # Save configuration
    save_config(config, config_path)
    console.print(f"✅ Created config: {config_path}")

    if skip_db:
        return

    console.print("\n[bold]Initializing database schema...[/bold]")
    try:
        initialized = asyncio.run(_init_schema(config.postgres.model_dump()))
    except Exception as e:
        console.print(f"[red]❌ Failed to initialize database: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    if not initialized:
        console.print(
            "[red]❌ Database connection failed![/red]\n"
            "Please ensure Postgres is running and credentials are correct.\n"
            "Set the password via environment variable: "
            "[bold]export FEEDSYNC_DB_PASSWORD=your_password[/bold]"
        )
        raise typer.Exit(1)

    console.print("✅ Database schema initialized")

    # Success message
    console.print(
        Panel(
            f"[green]✅ Feedsync initialized successfully![/green]\n\n"
            f"Configuration: {config_path}\n\n"
            f"Next steps:\n"
            f"1. Start workers: [bold]feedsync worker[/bold]\n"
            f"2. Start the scheduler: [bold]feedsync scheduler[/bold]",
            style="green",
        )
    )
