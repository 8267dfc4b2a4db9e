"""Scheduler loop — discovers releases needing work and dispatches them.

A single in-process timer.  Each tick:
1. Reads every release whose status is Waiting* or Deploying*.
2. Starts a background deployment pass for each one that is due.
3. Prunes viewer sessions that stopped answering heartbeats.

A failing tick is logged and retried on the next one; a failing release
never affects the others.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from releaseboard.broadcast.hub import BroadcastHub
from releaseboard.core.orchestrator import ReleaseOrchestrator
from releaseboard.core.state_machine import WAITING_STATUSES, should_process
from releaseboard.core.store import ReleaseStore, StoreError
from releaseboard.models.release import Release

logger = logging.getLogger(__name__)


class Scheduler:
    """Periodic driver for the release orchestrator.

    Parameters
    ----------
    store:
        Entity store to discover releases from.
    orchestrator:
        Runs the deployment passes.
    hub:
        Broadcast hub whose stale sessions are pruned every tick.
    interval_seconds:
        Time between ticks.
    """

    def __init__(
        self,
        store: ReleaseStore,
        orchestrator: ReleaseOrchestrator,
        hub: BroadcastHub,
        *,
        interval_seconds: float = 60.0,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._hub = hub
        self._interval = interval_seconds
        self._loop_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Release | None]] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        """Number of deployment passes started by this scheduler still running."""
        return len(self._tasks)

    # ------------------------------------------------------------------
    # One tick
    # ------------------------------------------------------------------

    async def tick(self) -> list[asyncio.Task[Release | None]]:
        """Run one discovery/dispatch/maintenance pass.

        Returns the deployment tasks started by this tick.
        """
        started: list[asyncio.Task[Release | None]] = []
        logger.debug("Checking for pending releases...")
        try:
            releases = await asyncio.to_thread(
                self._store.get_releases_matching, should_process
            )
        except StoreError as exc:
            logger.error("Error checking pending releases: %s", exc)
            releases = []

        now = datetime.now(timezone.utc)
        for release in releases:
            if self._orchestrator.is_active(release.id):
                continue
            if release.status in WAITING_STATUSES and release.scheduled_at > now:
                logger.debug(
                    "Release %s scheduled for %s, not yet due",
                    release.id,
                    release.scheduled_at.isoformat(),
                )
                continue
            logger.info("Processing release %s (%s)", release.id, release.status.value)
            task = asyncio.create_task(
                self._guarded_process(release), name=f"release-{release.id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(task)

        if started:
            logger.info("Dispatched %d pending releases", len(started))

        pruned = self._hub.prune_stale()
        if pruned:
            logger.info("Pruned %d stale WebSocket connections", pruned)
        return started

    async def _guarded_process(self, release: Release) -> Release | None:
        try:
            return await self._orchestrator.process(release.id)
        except StoreError as exc:
            logger.error("Storage error processing release %s: %s", release.id, exc)
        except Exception:
            logger.exception("Error processing release %s", release.id)
        return None

    # ------------------------------------------------------------------
    # Loop lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Tick forever at the configured interval."""
        logger.info("Scheduler started (interval %.1fs)", self._interval)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if not self.running:
            self._loop_task = asyncio.create_task(self.run(), name="release-scheduler")

    async def stop(self) -> None:
        """Stop ticking and wait for in-flight deployment passes to finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("Scheduler stopped")
