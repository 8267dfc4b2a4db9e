"""Rich terminal renderer for the release board.

Turns ``BoardSnapshot`` into a three-column kanban table, with optional
continuous ``Rich.Live`` mode.

Color scheme
------------
- yellow    : Deploying*
- cyan      : Waiting*
- green     : ReadyToTest* / Cleared*
- bold red  : Error / Blocked
- dim       : InDevelopment
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from releaseboard.models.release import Environment, ReleaseStatus

if TYPE_CHECKING:
    from releaseboard.monitor.projection import BoardProjection, BoardSnapshot, ReleaseCard


def _status_style(status: ReleaseStatus) -> str:
    name = status.value
    if status in (ReleaseStatus.ERROR, ReleaseStatus.BLOCKED):
        return "bold red"
    if name.startswith("Deploying"):
        return "yellow"
    if name.startswith("Waiting"):
        return "cyan"
    if name.startswith(("ReadyToTest", "Cleared")):
        return "green"
    return "dim"


class BoardRenderer:
    """Renders ``BoardSnapshot`` as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_snapshot(self, snapshot: BoardSnapshot) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        for env in Environment:
            count = len(snapshot.column(env).cards)
            table.add_column(f"{env.value} ({count})", ratio=1)

        cells = [
            [self._render_card(card) for card in snapshot.column(env).cards]
            for env in Environment
        ]
        depth = max((len(c) for c in cells), default=0)
        for row in range(depth):
            table.add_row(*(col[row] if row < len(col) else Text("") for col in cells))

        summary_parts = [
            f"[bold]Releases:[/bold] {snapshot.total_releases}",
            f"[bold]Deploying:[/bold] {len(snapshot.deploying_releases)}",
        ]
        if snapshot.failed_releases:
            summary_parts.append(
                f"[bold red]Failed:[/bold red] {len(snapshot.failed_releases)}"
            )
        summary = "  |  ".join(summary_parts)

        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]Release Board[/bold]",
            subtitle=f"Last updated: {snapshot.taken_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def _render_card(self, card: ReleaseCard) -> Text:
        style = _status_style(card.status)
        text = Text()
        text.append(card.title, style="bold")
        text.append(f"\n{card.client_name}", style="dim")
        text.append(f"\n{card.status.value}", style=style)
        if card.items_total:
            text.append(
                f"\n{card.items_done}/{card.items_total} items  {card.progress:.0f}%"
            )
        if card.failed_items:
            text.append(f"\nfailed: {', '.join(card.failed_items)}", style="red")
        if card.clearable:
            text.append("\n[clearable]", style="green")
        text.append(f"\n{card.release_id[:8]}\n", style="dim")
        return text

    def render_live(self, projection: BoardProjection, *, refresh_hz: float = 1.0) -> None:
        """Continuously re-read and render the board.  Ctrl+C to stop."""
        interval = 1.0 / max(refresh_hz, 0.1)
        with Live(console=self.console, refresh_per_second=refresh_hz) as live:
            try:
                while True:
                    live.update(self.render_snapshot(projection.snapshot()))
                    time.sleep(interval)
            except KeyboardInterrupt:
                live.update(self.render_snapshot(projection.snapshot()))

    def print_snapshot(self, snapshot: BoardSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))
