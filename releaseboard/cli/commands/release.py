"""Release management commands: ``create``, ``clear``, ``status``, ``delete``.

Each command opens the store named by ``--db`` (or the configured one),
runs one service operation and prints the result.  Rejected requests
exit with code 1.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime

import typer
from rich.console import Console
from rich.panel import Panel

from releaseboard.cli.context import open_services
from releaseboard.core.service import ReleaseConflictError, ReleaseNotFoundError
from releaseboard.models.release import Client, Release

console = Console()

# Every rejection a service call can raise for bad input or board state.
_REJECTIONS = (ValueError, ReleaseConflictError, ReleaseNotFoundError)


def _parse_id(release_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(release_id)
    except ValueError:
        console.print(f"[bold red]Not a release id:[/bold red] {release_id}")
        raise typer.Exit(code=1)


def _resolve_client(clients: list[Client], client: str) -> str:
    """Accept a client id or a (case-insensitive) client name."""
    for c in clients:
        if str(c.id) == client or c.name.lower() == client.lower():
            return str(c.id)
    return client


def _print_release(release: Release, headline: str) -> None:
    items = ", ".join(
        f"{item.name} ({item.status.value})" for item in release.deployment_items
    )
    console.print(
        Panel(
            "\n".join([
                f"[bold green]{headline}[/bold green]",
                "",
                f"[bold]ID:[/bold]          {release.id}",
                f"[bold]Title:[/bold]       {release.title}",
                f"[bold]Status:[/bold]      {release.status.value}",
                f"[bold]Path:[/bold]        {release.current_environment.value} -> "
                f"{release.target_environment.value}"
                + (" (skip staging)" if release.skip_staging else ""),
                f"[bold]Items:[/bold]       {items}",
                f"[bold]Scheduled:[/bold]   {release.scheduled_at.isoformat()}",
            ]),
            title="[bold]Releaseboard[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )


def create_cmd(
    title: str = typer.Argument(..., help="Release title."),
    client: str = typer.Option(..., "--client", "-c", help="Client id or name."),
    items: str = typer.Option(
        "data,solr,app", "--items", help="Comma-separated deployment items."
    ),
    current: str = typer.Option("development", "--from", help="Current environment."),
    target: str = typer.Option("staging", "--to", help="Target environment."),
    skip_staging: bool = typer.Option(
        False, "--skip-staging", help="Go straight from development to production."
    ),
    scheduled_at: str = typer.Option(
        None, "--at", help="ISO-8601 time the deployment may start."
    ),
    created_by: str = typer.Option("cli", "--by", help="Recorded creator."),
    db: str = typer.Option(None, "--db", help="Path to the releaseboard SQLite database."),
) -> None:
    """Create a release in InDevelopment."""
    services = open_services(db)
    when = datetime.fromisoformat(scheduled_at) if scheduled_at else None
    item_names = [name.strip() for name in items.split(",") if name.strip()]

    async def _create() -> Release:
        clients = await services.service.list_clients()
        return await services.service.create_release(
            title,
            _resolve_client(clients, client),
            current,
            target,
            item_names,
            scheduled_at=when,
            created_by=created_by,
            skip_staging=skip_staging,
        )

    try:
        release = asyncio.run(_create())
    except _REJECTIONS as exc:
        console.print(f"[bold red]Rejected:[/bold red] {exc}")
        raise typer.Exit(code=1)
    _print_release(release, "Release created")
    console.print(f"[bold]{release.id}[/bold]")


def clear_cmd(
    release_id: str = typer.Argument(..., help="The release to clear."),
    db: str = typer.Option(None, "--db", help="Path to the releaseboard SQLite database."),
) -> None:
    """Advance a release to its next waiting or final status."""
    services = open_services(db)
    try:
        release = asyncio.run(services.service.clear_release(_parse_id(release_id)))
    except _REJECTIONS as exc:
        console.print(f"[bold red]Rejected:[/bold red] {exc}")
        raise typer.Exit(code=1)
    _print_release(release, "Release cleared")


def status_cmd(
    release_id: str = typer.Argument(..., help="The release to update."),
    status: str = typer.Argument(..., help="'clear' or a status name, e.g. Blocked."),
    db: str = typer.Option(None, "--db", help="Path to the releaseboard SQLite database."),
) -> None:
    """Force a release into a named status."""
    services = open_services(db)
    try:
        release = asyncio.run(services.service.set_status(_parse_id(release_id), status))
    except _REJECTIONS as exc:
        console.print(f"[bold red]Rejected:[/bold red] {exc}")
        raise typer.Exit(code=1)
    _print_release(release, f"Status set to {release.status.value}")


def delete_cmd(
    release_id: str = typer.Argument(..., help="The release to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    db: str = typer.Option(None, "--db", help="Path to the releaseboard SQLite database."),
) -> None:
    """Delete a release permanently."""
    rid = _parse_id(release_id)
    if not yes:
        typer.confirm(f"Delete release {rid}?", abort=True)
    services = open_services(db)
    try:
        asyncio.run(services.service.delete_release(rid))
    except ReleaseNotFoundError as exc:
        console.print(f"[bold red]Rejected:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(f"[green]Deleted release {rid}[/green]")
