"""Component wiring shared by the server and the CLI."""

from __future__ import annotations

from dataclasses import dataclass

from releaseboard.broadcast.hub import BroadcastHub
from releaseboard.config import BoardConfig
from releaseboard.core.orchestrator import ReleaseLocks, ReleaseOrchestrator
from releaseboard.core.runner import DeploymentRunner
from releaseboard.core.scheduler import Scheduler
from releaseboard.core.service import ReleaseService
from releaseboard.core.store import ReleaseStore


@dataclass
class BoardServices:
    """Every long-lived component of one releaseboard process."""

    config: BoardConfig
    store: ReleaseStore
    hub: BroadcastHub
    runner: DeploymentRunner
    orchestrator: ReleaseOrchestrator
    scheduler: Scheduler
    service: ReleaseService


def build_services(
    cfg: BoardConfig,
    *,
    store: ReleaseStore | None = None,
    runner: DeploymentRunner | None = None,
    hub: BroadcastHub | None = None,
) -> BoardServices:
    """Build the component graph from configuration.

    Any component passed in explicitly is used as-is, which lets tests
    swap in a temp store or a fake runner.
    """
    store = store or ReleaseStore(cfg.db_path)
    hub = hub or BroadcastHub(client_timeout_seconds=cfg.client_timeout_seconds)
    runner = runner or DeploymentRunner(
        cfg.scripts_dir,
        shell=cfg.shell,
        timeout_seconds=cfg.item_timeout_seconds,
        line_delay_seconds=cfg.line_delay_seconds,
    )
    locks = ReleaseLocks()
    orchestrator = ReleaseOrchestrator(store, hub, runner, locks=locks)
    scheduler = Scheduler(
        store, orchestrator, hub, interval_seconds=cfg.scheduler_interval_seconds
    )
    service = ReleaseService(
        store, hub, locks, allowed_items=runner.allowed_items
    )
    return BoardServices(
        config=cfg,
        store=store,
        hub=hub,
        runner=runner,
        orchestrator=orchestrator,
        scheduler=scheduler,
        service=service,
    )
