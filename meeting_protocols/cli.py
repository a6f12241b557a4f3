"""
Meeting Protocols - CLI Entry Point

Usage:
    # Run the API server
    meeting-protocols serve --port 8000

    # Create all tables (development only, production uses migrations)
    meeting-protocols init-db
"""

import asyncio

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel

from meeting_protocols import __version__
from meeting_protocols.core.config import settings
from meeting_protocols.core.logging_config import configure_logging

app = typer.Typer(
    name="meeting-protocols",
    help="Collaborative meeting protocol service",
    add_completion=False,
)
console = Console()


def print_banner() -> None:
    """Print the application banner."""
    console.print(Panel.fit(
        f"[bold blue]{settings.app_name}[/bold blue] [dim]v{__version__}[/dim]\n"
        f"[dim]environment: {settings.environment}[/dim]",
        border_style="blue",
    ))
    console.print()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
) -> None:
    """Run the HTTP and WebSocket server."""
    print_banner()
    fan_out = "redis" if settings.realtime_redis_enabled else "local"
    console.print(f"Listening on [cyan]http://{host}:{port}[/cyan] (fan-out: {fan_out})")
    uvicorn.run(
        "meeting_protocols.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("init-db")
def init_db() -> None:
    """Create all database tables."""
    # Model modules register their tables on import
    import meeting_protocols.protocols.models  # noqa: F401
    import meeting_protocols.tasks.models  # noqa: F401
    from meeting_protocols.core.database import create_all

    configure_logging()
    print_banner()
    with console.status("[bold]Creating tables...[/bold]"):
        asyncio.run(create_all())
    console.print("[green]✓[/green] Database tables created")


if __name__ == "__main__":
    app()
