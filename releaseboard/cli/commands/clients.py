"""``releaseboard clients`` — list clients, seeding the defaults if none exist."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from releaseboard.cli.context import open_services

console = Console()


def clients_cmd(
    db: str = typer.Option(None, "--db", help="Path to the releaseboard SQLite database."),
) -> None:
    """List known clients."""
    services = open_services(db)
    clients = asyncio.run(services.service.seed_default_clients())

    table = Table(title="Clients")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    for client in clients:
        table.add_row(str(client.id), client.name)
    console.print(table)
