"""Release service — the operations offered to the API and CLI layers.

Validation and conflict errors are raised synchronously and never
retried.  Every write to an existing release runs under the same
per-release lock the orchestrator uses.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime

from releaseboard.broadcast.hub import BroadcastHub
from releaseboard.core.orchestrator import ReleaseLocks
from releaseboard.core.state_machine import (
    DEPLOYING_STATUSES,
    NotClearableError,
    apply_status,
    is_active,
    next_status_when_cleared,
    parse_environment,
    validate_deployment_path,
)
from releaseboard.core.store import ReleaseStore
from releaseboard.models.release import (
    DEPLOYMENT_ITEM_KINDS,
    Client,
    DeploymentItem,
    Environment,
    Release,
    ReleaseStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_NAMES: tuple[str, ...] = (
    "Acme Corporation",
    "Globex Industries",
    "Stark Enterprises",
    "Wayne Enterprises",
    "Umbrella Corporation",
    "Cyberdyne Systems",
    "Oscorp Industries",
    "Massive Dynamic",
    "Soylent Corp",
    "Initech",
)

# Action name accepted by ``set_status`` in place of a status.
CLEAR_ACTION = "clear"


class ReleaseValidationError(ValueError):
    """Raised when a release request is malformed."""


class ReleaseConflictError(RuntimeError):
    """Raised when a request conflicts with the current state of the board."""


class ReleaseNotFoundError(LookupError):
    """Raised when a release id does not exist."""


class ReleaseService:
    """Create, clear, update and delete releases.

    Parameters
    ----------
    store:
        Entity store.
    hub:
        Broadcast hub notified of every change.
    locks:
        Per-release locks shared with the orchestrator.
    allowed_items:
        Deployment item vocabulary accepted at creation.
    """

    def __init__(
        self,
        store: ReleaseStore,
        hub: BroadcastHub,
        locks: ReleaseLocks,
        *,
        allowed_items: tuple[str, ...] = DEPLOYMENT_ITEM_KINDS,
    ) -> None:
        self._store = store
        self._hub = hub
        self._locks = locks
        self._allowed_items = allowed_items
        # Serializes the per-client conflict check with the save.
        self._create_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_releases(self) -> list[Release]:
        return await asyncio.to_thread(self._store.get_all_releases)

    async def get_release(self, release_id: uuid.UUID) -> Release:
        release = await asyncio.to_thread(self._store.get_release, release_id)
        if release is None:
            raise ReleaseNotFoundError(f"Release with ID {release_id} not found")
        return release

    async def list_clients(self) -> list[Client]:
        return await asyncio.to_thread(self._store.get_all_clients)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_release(
        self,
        title: str,
        client_id: str,
        current_environment: str | Environment,
        target_environment: str | Environment,
        deployment_items: list[str],
        *,
        scheduled_at: datetime | None = None,
        created_by: str = "unknown",
        skip_staging: bool = False,
    ) -> Release:
        """Validate and store a new release in InDevelopment.

        Raises
        ------
        InvalidEnvironmentError, InvalidDeploymentPathError, ReleaseValidationError
            For malformed requests.
        ReleaseConflictError
            If the client already has an active release.
        """
        current = _as_environment(current_environment)
        target = _as_environment(target_environment)
        validate_deployment_path(current, target, skip_staging)
        self._validate_items(deployment_items)
        if not title.strip():
            raise ReleaseValidationError("Release title must not be empty")

        async with self._create_lock:
            releases = await asyncio.to_thread(self._store.get_all_releases)
            if any(r.client_id == client_id and is_active(r.status) for r in releases):
                raise ReleaseConflictError(
                    f"Client {client_id} already has an active release in progress"
                )

            release = Release.new(
                title,
                client_id,
                current,
                target,
                deployment_items,
                scheduled_at=scheduled_at,
                created_by=created_by,
                skip_staging=skip_staging,
            )
            await asyncio.to_thread(self._store.save_release, release)
        logger.info("Created new release %s for client %s", release.id, client_id)
        self._announce(release, f"Release created: {release.title}")
        return release

    async def clear_release(self, release_id: uuid.UUID) -> Release:
        """Advance a release out of a ready-to-proceed status."""
        async with self._locks.get(release_id):
            release = await self.get_release(release_id)
            next_status = next_status_when_cleared(release.status, release.skip_staging)
            if next_status is None:
                raise NotClearableError(
                    f"Release cannot be cleared in its current state ({release.status.value})"
                )
            release = apply_status(release, next_status)
            await asyncio.to_thread(self._store.save_release, release)
        logger.info("Cleared release %s -> %s", release_id, next_status.value)
        self._announce(release, f"Release cleared: {release.title}")
        return release

    async def set_status(self, release_id: uuid.UUID, status_name: str) -> Release:
        """Apply ``"clear"`` or force a status by its wire name.

        Unknown names are rejected rather than mapped to a default.
        """
        if status_name == CLEAR_ACTION:
            return await self.clear_release(release_id)
        try:
            status = ReleaseStatus(status_name)
        except ValueError:
            raise ReleaseValidationError(f"Invalid status: {status_name}") from None

        async with self._locks.get(release_id):
            release = await self.get_release(release_id)
            release = apply_status(release, status)
            await asyncio.to_thread(self._store.save_release, release)
        logger.info("Updated release status: %s to %s", release_id, status.value)
        self._announce(release, f"Status set to {status.value}")
        return release

    async def update_release(
        self,
        release_id: uuid.UUID,
        *,
        title: str | None = None,
        client_id: str | None = None,
        current_environment: str | Environment | None = None,
        target_environment: str | Environment | None = None,
        deployment_items: list[str] | None = None,
        scheduled_at: datetime | None = None,
        skip_staging: bool | None = None,
    ) -> Release:
        """Edit a release's details without touching its status.

        Existing items keep their state; newly listed items start in
        InDevelopment.  Releases that are deploying cannot be edited.
        """
        async with self._locks.get(release_id):
            release = await self.get_release(release_id)
            if release.status in DEPLOYING_STATUSES:
                raise ReleaseConflictError(
                    f"Release {release_id} is deploying and cannot be edited"
                )

            current = (
                _as_environment(current_environment)
                if current_environment is not None
                else release.current_environment
            )
            target = (
                _as_environment(target_environment)
                if target_environment is not None
                else release.target_environment
            )
            skip = release.skip_staging if skip_staging is None else skip_staging
            validate_deployment_path(current, target, skip)

            items = release.deployment_items
            if deployment_items is not None:
                self._validate_items(deployment_items)
                items = [
                    release.get_item(name) or DeploymentItem(name=name)
                    for name in deployment_items
                ]

            update: dict[str, object] = {
                "current_environment": current,
                "target_environment": target,
                "skip_staging": skip,
                "deployment_items": items,
            }
            if title is not None:
                update["title"] = title
            if client_id is not None:
                update["client_id"] = client_id
            if scheduled_at is not None:
                update["scheduled_at"] = scheduled_at
            release = Release.model_validate({**release.model_dump(), **update})
            await asyncio.to_thread(self._store.save_release, release)
        logger.info("Updated release %s", release_id)
        self._announce(release, f"Release updated: {release.title}")
        return release

    async def delete_release(self, release_id: uuid.UUID) -> None:
        async with self._locks.get(release_id):
            deleted = await asyncio.to_thread(self._store.delete_release, release_id)
        if not deleted:
            raise ReleaseNotFoundError(f"Release with ID {release_id} not found")
        self._locks.discard(release_id)
        logger.info("Deleted release %s", release_id)
        self._hub.app_log("info", f"Release {release_id} deleted")

    async def seed_default_clients(self) -> list[Client]:
        """Create the default client list when the store has no clients yet."""
        existing = await asyncio.to_thread(self._store.get_all_clients)
        if existing:
            return existing
        clients = [Client(name=name) for name in DEFAULT_CLIENT_NAMES]
        for client in clients:
            await asyncio.to_thread(self._store.save_client, client)
            logger.info("Created default client: %s", client.name)
        return clients

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_items(self, names: list[str]) -> None:
        if not names:
            raise ReleaseValidationError("A release needs at least one deployment item")
        unknown = [name for name in names if name not in self._allowed_items]
        if unknown:
            raise ReleaseValidationError(
                f"Unknown deployment items: {', '.join(unknown)}"
            )
        if len(set(names)) != len(names):
            raise ReleaseValidationError("Deployment item names must be unique")

    def _announce(self, release: Release, message: str) -> None:
        self._hub.release_update(
            str(release.id), release.status.value, release.progress, message
        )


def _as_environment(value: str | Environment) -> Environment:
    if isinstance(value, Environment):
        return value
    return parse_environment(value)
