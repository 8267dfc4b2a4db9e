"""``releaseboard tick`` — run one scheduler pass in the foreground.

Useful for cron-driven setups and for debugging deployment scripts
without starting the server.  Waits for every deployment pass the tick
started before exiting.
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from releaseboard.cli.context import open_services
from releaseboard.config import configure_logging
from releaseboard.models.release import Release

console = Console()


def tick_cmd(
    db: str = typer.Option(None, "--db", help="Path to the releaseboard SQLite database."),
    scripts_dir: str = typer.Option(
        None, "--scripts", "-s", help="Directory holding deploy_<item>.sh scripts."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Promote and deploy every due release once."""
    configure_logging("DEBUG" if verbose else "INFO")
    services = open_services(db, scripts_dir)

    async def _tick() -> list[Release | None]:
        tasks = await services.scheduler.tick()
        return list(await asyncio.gather(*tasks))

    finished = [r for r in asyncio.run(_tick()) if r is not None]
    if not finished:
        console.print("[dim]No releases were due.[/dim]")
        return

    table = Table(title="Deployment passes")
    table.add_column("Release", style="cyan")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    for release in finished:
        style = "red" if release.status.value == "Error" else "green"
        table.add_row(
            str(release.id)[:8],
            release.title,
            f"[{style}]{release.status.value}[/{style}]",
            f"{release.progress:.0f}%",
        )
    console.print(table)
