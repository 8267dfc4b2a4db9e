"""BoardProjection — pure read-only kanban view over the release store.

Each release lands in the column given by ``environment_of``.  Every
call re-reads the store; nothing is cached between snapshots.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from releaseboard.core.state_machine import (
    can_be_cleared,
    environment_of,
    is_item_success,
)
from releaseboard.core.store import ReleaseStore
from releaseboard.models.release import Environment, Release, ReleaseStatus


class ReleaseCard(BaseModel):
    """One release as it appears on the board."""

    model_config = ConfigDict(frozen=True)

    release_id: str
    title: str
    client_name: str
    status: ReleaseStatus
    column: Environment
    progress: float = 0.0
    items_done: int = 0
    items_total: int = 0
    failed_items: list[str] = []
    clearable: bool = False
    scheduled_at: datetime | None = None


class BoardColumn(BaseModel):
    model_config = ConfigDict(frozen=True)

    environment: Environment
    cards: list[ReleaseCard] = []


class BoardSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of the whole board.

    Computed fresh on every ``snapshot()`` call and never persisted.
    """

    model_config = ConfigDict(frozen=True)

    columns: list[BoardColumn] = []
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_releases(self) -> int:
        return sum(len(c.cards) for c in self.columns)

    @property
    def failed_releases(self) -> list[ReleaseCard]:
        """Cards currently in Error or Blocked."""
        return [
            card
            for column in self.columns
            for card in column.cards
            if card.status in (ReleaseStatus.ERROR, ReleaseStatus.BLOCKED)
        ]

    @property
    def deploying_releases(self) -> list[ReleaseCard]:
        return [
            card
            for column in self.columns
            for card in column.cards
            if card.status.value.startswith("Deploying")
        ]

    def column(self, environment: Environment) -> BoardColumn:
        for col in self.columns:
            if col.environment == environment:
                return col
        return BoardColumn(environment=environment)


class BoardProjection:
    """Pure read-only projection over a ``ReleaseStore``.

    Parameters
    ----------
    store:
        The store to project from.
    """

    def __init__(self, store: ReleaseStore) -> None:
        self._store = store

    def snapshot(self) -> BoardSnapshot:
        """Re-read every release and client and group them into columns."""
        client_names = {str(c.id): c.name for c in self._store.get_all_clients()}
        grouped: dict[Environment, list[ReleaseCard]] = {env: [] for env in Environment}
        for release in self._store.get_all_releases():
            card = self._card(release, client_names)
            grouped[card.column].append(card)

        columns = [
            BoardColumn(environment=env, cards=grouped[env])
            for env in sorted(Environment, key=lambda e: e.ordinal)
        ]
        return BoardSnapshot(columns=columns)

    @staticmethod
    def _card(release: Release, client_names: dict[str, str]) -> ReleaseCard:
        items = release.deployment_items
        return ReleaseCard(
            release_id=str(release.id),
            title=release.title,
            client_name=client_names.get(release.client_id, release.client_id),
            status=release.status,
            column=environment_of(release.status, release.current_environment),
            progress=release.progress,
            items_done=sum(1 for item in items if is_item_success(item.status)),
            items_total=len(items),
            failed_items=[item.name for item in items if item.status == ReleaseStatus.ERROR],
            clearable=can_be_cleared(release.status),
            scheduled_at=release.scheduled_at,
        )
