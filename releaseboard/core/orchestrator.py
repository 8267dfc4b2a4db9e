"""Release orchestrator — drives one release's deployment items to completion.

Lifecycle of one deployment pass:
1. ``begin``: promote Waiting* to Deploying* (no-op if already deploying),
   move every item along, persist, announce.
2. Fan out one runner task per unfinished item.
3. Fold each item result into the stored release as it arrives.
4. ``finalize``: once every item is terminal, set the release to its
   Ready* status or to Error.

All read-modify-write sequences on a release run under that release's
lock.  Different releases never contend.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict

from releaseboard.broadcast.hub import BroadcastHub
from releaseboard.core.runner import (
    DeploymentRunner,
    RunnerEvent,
    RunnerSpawnError,
    RunResult,
    UnknownDeploymentItemError,
)
from releaseboard.core.state_machine import (
    DEPLOYING_STATUSES,
    aggregate_progress,
    apply_status,
    deploying_status_for,
    is_item_terminal,
    ready_status_for,
    should_process,
    target_environment_name,
)
from releaseboard.core.store import ReleaseStore
from releaseboard.models.release import Release, ReleaseStatus

logger = logging.getLogger(__name__)

# Status string carried by updates while items are still running.
IN_PROGRESS = "InProgress"


class ReleaseLocks:
    """Per-release ``asyncio.Lock`` registry.

    Shared by the orchestrator and the release service so that every
    writer of a given release is serialized.
    """

    def __init__(self) -> None:
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}

    def get(self, release_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(release_id)
        if lock is None:
            lock = self._locks[release_id] = asyncio.Lock()
        return lock

    def discard(self, release_id: uuid.UUID) -> None:
        self._locks.pop(release_id, None)

    def __len__(self) -> int:
        return len(self._locks)


class _PassState:
    """Scratch state for one deployment pass of one release."""

    def __init__(self, release: Release) -> None:
        self.release_id = release.id
        self.status = release.status
        self.progress = release.progress
        self.item_percent: dict[str, int] = {}
        self._pending_logs: dict[str, list[str]] = defaultdict(list)

    def buffer_log(self, item: str, line: str) -> None:
        self._pending_logs[item].append(line)

    def take_logs(self, item: str) -> list[str]:
        return self._pending_logs.pop(item, [])


class ReleaseOrchestrator:
    """Runs deployment passes for releases.

    Parameters
    ----------
    store:
        Entity store holding the releases.
    hub:
        Broadcast hub receiving every status, progress and log event.
    runner:
        Executes single deployment items.
    locks:
        Per-release lock registry.  Pass the same instance to the release
        service so clear/update operations are serialized with deployment.
    """

    def __init__(
        self,
        store: ReleaseStore,
        hub: BroadcastHub,
        runner: DeploymentRunner,
        *,
        locks: ReleaseLocks | None = None,
    ) -> None:
        self._store = store
        self._hub = hub
        self._runner = runner
        self.locks = locks or ReleaseLocks()
        self._active: set[uuid.UUID] = set()

    def is_active(self, release_id: uuid.UUID) -> bool:
        """Whether a deployment pass for *release_id* is running in this process."""
        return release_id in self._active

    # ------------------------------------------------------------------
    # Entry step
    # ------------------------------------------------------------------

    async def begin(self, release_id: uuid.UUID) -> Release | None:
        """Promote a release into its Deploying* status and announce it.

        Returns the persisted release, or None when there is nothing to do.
        Calling this again on a release that is already deploying changes
        nothing but the announcement.
        """
        async with self.locks.get(release_id):
            release = await asyncio.to_thread(self._store.get_release, release_id)
            if release is None:
                logger.error("Release %s not found", release_id)
                return None
            if not should_process(release.status):
                logger.debug(
                    "Release %s is %s, nothing to deploy", release_id, release.status.value
                )
                return None

            deploying = deploying_status_for(release.status)
            resumed = release.status == deploying
            if not resumed:
                items = [
                    item.model_copy(update={"status": deploying, "error": None})
                    for item in release.deployment_items
                ]
                release = apply_status(release, deploying).model_copy(
                    update={"deployment_items": items, "progress": 0.0}
                )
                await asyncio.to_thread(self._store.save_release, release)

        verb = "Resuming" if resumed else "Starting"
        logger.info("%s deployment of release %s: %s", verb, release.id, release.title)
        self._hub.release_update(
            str(release.id),
            deploying.value,
            release.progress,
            f"{verb} deployment process for {release.title}",
        )
        return release

    # ------------------------------------------------------------------
    # Full pass
    # ------------------------------------------------------------------

    async def process(self, release_id: uuid.UUID) -> Release | None:
        """Run one complete deployment pass for a release.

        Returns the finalized release, or None when nothing was finalized
        (not deployable, already running here, or items still unfinished).
        """
        if release_id in self._active:
            logger.debug("Release %s already has a deployment pass running", release_id)
            return None
        self._active.add(release_id)
        try:
            release = await self.begin(release_id)
            if release is None:
                return None

            environment = target_environment_name(release.status)
            pending = [
                item.name
                for item in release.deployment_items
                if not is_item_terminal(item.status)
            ]
            state = _PassState(release)

            results = await asyncio.gather(
                *(self._run_item(state, name, environment) for name in pending),
                return_exceptions=True,
            )
            for name, outcome in zip(pending, results):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Deployment item %s of release %s crashed: %r",
                        name,
                        release_id,
                        outcome,
                    )

            return await self.finalize(release_id)
        finally:
            self._active.discard(release_id)

    async def _run_item(self, state: _PassState, item: str, environment: str) -> None:
        release_key = str(state.release_id)

        async def on_event(event: RunnerEvent) -> None:
            line = event.format()
            if event.percent is not None:
                state.item_percent[item] = event.percent
            state.buffer_log(item, line)
            self._hub.release_update(
                release_key,
                IN_PROGRESS,
                state.progress,
                line,
                item=item,
                item_progress=state.item_percent.get(item),
            )

        self._hub.release_update(
            release_key, IN_PROGRESS, state.progress, f"Starting {item} deployment", item=item
        )
        try:
            result = await self._runner.run(item, environment, on_event)
        except UnknownDeploymentItemError as exc:
            result = RunResult(item=item, environment=environment, success=False, error=str(exc))
        except RunnerSpawnError as exc:
            # Item stays as persisted; the next scheduler tick retries it.
            logger.error("Release %s: %s", state.release_id, exc)
            self._hub.app_log("error", f"Release {state.release_id}: {exc}")
            await self.flush_logs(state, item)
            return
        except Exception as exc:
            logger.exception(
                "Deployment item %s of release %s crashed", item, state.release_id
            )
            result = RunResult(
                item=item,
                environment=environment,
                success=False,
                error=f"{item} deployment crashed: {exc}",
            )

        await self.complete_item(state, result)

    # ------------------------------------------------------------------
    # Per-item fold
    # ------------------------------------------------------------------

    async def complete_item(self, state: _PassState, result: RunResult) -> Release | None:
        """Fold one item result into the stored release.

        Only the item and the aggregate progress change; the release's own
        status is left for ``finalize``.
        """
        async with self.locks.get(state.release_id):
            release = await asyncio.to_thread(self._store.get_release, state.release_id)
            if release is None:
                logger.warning(
                    "Release %s disappeared while %s was deploying",
                    state.release_id,
                    result.item,
                )
                return None
            item = release.get_item(result.item)
            if item is None:
                logger.warning("Release %s has no item %s", state.release_id, result.item)
                return None

            item = item.with_logs(state.take_logs(item.name))
            if result.success:
                message = f"{item.name} deployment completed successfully"
                item = item.model_copy(update={"status": ready_status_for(state.status)})
            else:
                message = result.error or f"{item.name} deployment failed"
                item = item.with_error(message)
            item = item.with_logs([message])

            release = release.replace_item(item)
            release = release.model_copy(
                update={"progress": aggregate_progress(release.deployment_items)}
            )
            await asyncio.to_thread(self._store.save_release, release)
            state.progress = release.progress

        self._hub.release_update(
            str(release.id),
            IN_PROGRESS,
            release.progress,
            message,
            item=item.name,
            item_progress=100 if result.success else None,
        )
        return release

    async def flush_logs(self, state: _PassState, item_name: str) -> Release | None:
        """Persist buffered output lines of an item without changing its status."""
        lines = state.take_logs(item_name)
        if not lines:
            return None
        async with self.locks.get(state.release_id):
            release = await asyncio.to_thread(self._store.get_release, state.release_id)
            item = release.get_item(item_name) if release is not None else None
            if item is None:
                return None
            release = release.replace_item(item.with_logs(lines))
            await asyncio.to_thread(self._store.save_release, release)
        return release

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    async def finalize(self, release_id: uuid.UUID) -> Release | None:
        """Derive the release status from its items once all are terminal.

        Any item in Error makes the whole release Error with progress 0.
        Otherwise the release and every item move to the phase's Ready*
        status with progress 100.  Items that succeeded inside a failed
        release keep their own Ready* status.
        """
        async with self.locks.get(release_id):
            release = await asyncio.to_thread(self._store.get_release, release_id)
            if release is None:
                return None
            if release.status not in DEPLOYING_STATUSES:
                return None
            unfinished = [
                item.name
                for item in release.deployment_items
                if not is_item_terminal(item.status)
            ]
            if unfinished:
                logger.info(
                    "Release %s still waiting on %s; will re-check next tick",
                    release_id,
                    ", ".join(unfinished),
                )
                return None

            failed = [
                item.name
                for item in release.deployment_items
                if item.status == ReleaseStatus.ERROR
            ]
            if failed:
                release = apply_status(release, ReleaseStatus.ERROR).model_copy(
                    update={"progress": 0.0}
                )
                message = f"Deployment failed for {release.title}: {', '.join(failed)}"
            else:
                ready = ready_status_for(release.status)
                items = [
                    item.model_copy(update={"status": ready})
                    for item in release.deployment_items
                ]
                release = apply_status(release, ready).model_copy(
                    update={"deployment_items": items, "progress": 100.0}
                )
                message = f"Deployment process complete for {release.title}"
            await asyncio.to_thread(self._store.save_release, release)

        logger.info("Release %s finalized as %s", release.id, release.status.value)
        self._hub.release_update(
            str(release.id), release.status.value, release.progress, message
        )
        return release
