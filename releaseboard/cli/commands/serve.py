"""``releaseboard serve`` — run the HTTP/WebSocket server and scheduler."""

from __future__ import annotations

import typer
import uvicorn
from rich.console import Console

from releaseboard.broadcast.server import create_app
from releaseboard.cli.context import board_config
from releaseboard.config import configure_logging

console = Console()


def serve_cmd(
    host: str = typer.Option(None, "--host", help="Bind address."),
    port: int = typer.Option(None, "--port", "-p", help="Bind port."),
    db: str = typer.Option(None, "--db", help="Path to the releaseboard SQLite database."),
    scripts_dir: str = typer.Option(
        None, "--scripts", "-s", help="Directory holding deploy_<item>.sh scripts."
    ),
    interval: float = typer.Option(
        None, "--interval", "-i", help="Scheduler interval in seconds."
    ),
) -> None:
    """Start the board server with the scheduler running in-process."""
    cfg = board_config(db, scripts_dir)
    if interval is not None:
        cfg = cfg.model_copy(update={"scheduler_interval_seconds": interval})
    configure_logging(cfg.log_level)

    bind_host = host or cfg.host
    bind_port = port or cfg.port
    console.print(
        f"[bold green]Releaseboard[/bold green] on http://{bind_host}:{bind_port} "
        f"[dim](db: {cfg.db_path}, scripts: {cfg.scripts_dir})[/dim]"
    )
    uvicorn.run(create_app(cfg), host=bind_host, port=bind_port, log_level=cfg.log_level.lower())
