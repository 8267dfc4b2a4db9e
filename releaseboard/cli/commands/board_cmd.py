"""``releaseboard board`` — show the kanban board in the terminal.

The board is a pure read-only projection over the store.  Live mode
re-reads the store on every refresh.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from releaseboard.cli.context import board_config
from releaseboard.core.store import ReleaseStore
from releaseboard.monitor.projection import BoardProjection
from releaseboard.monitor.renderer import BoardRenderer

console = Console()


def board_cmd(
    live: bool = typer.Option(
        False,
        "--live",
        "-L",
        help="Enable continuous live mode (Ctrl+C to exit).",
    ),
    refresh_hz: float = typer.Option(
        1.0,
        "--refresh",
        "-r",
        help="Refresh rate in Hz for live mode.",
    ),
    db: str = typer.Option(None, "--db", help="Path to the releaseboard SQLite database."),
) -> None:
    """Show every release grouped by environment column."""
    db_path = Path(board_config(db).db_path)
    if not db_path.exists():
        console.print(f"[bold red]Store not found:[/bold red] {db_path}")
        console.print("[dim]Create a release first with: releaseboard create[/dim]")
        raise typer.Exit(code=1)

    projection = BoardProjection(ReleaseStore(db_path))
    renderer = BoardRenderer(console=console)

    if live:
        console.print(f"[dim]Live board at {refresh_hz} Hz. Press Ctrl+C to exit.[/dim]")
        renderer.render_live(projection, refresh_hz=refresh_hz)
    else:
        renderer.print_snapshot(projection.snapshot())
