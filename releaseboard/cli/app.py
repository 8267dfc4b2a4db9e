"""Main Typer application — imports and registers all CLI commands.

Entry point: ``releaseboard`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from releaseboard.cli.commands.board_cmd import board_cmd
from releaseboard.cli.commands.clients import clients_cmd
from releaseboard.cli.commands.release import clear_cmd, create_cmd, delete_cmd, status_cmd
from releaseboard.cli.commands.serve import serve_cmd
from releaseboard.cli.commands.tick import tick_cmd

app = typer.Typer(
    name="releaseboard",
    help="Releaseboard: track client releases from development to production.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="serve", help="Run the board server and scheduler.")(serve_cmd)
app.command(name="board", help="Show the release board.")(board_cmd)
app.command(name="create", help="Create a release.")(create_cmd)
app.command(name="clear", help="Clear a release to its next stage.")(clear_cmd)
app.command(name="status", help="Force a release into a named status.")(status_cmd)
app.command(name="delete", help="Delete a release.")(delete_cmd)
app.command(name="tick", help="Run one scheduler pass.")(tick_cmd)
app.command(name="clients", help="List clients.")(clients_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
