"""Shared test fixtures for Releaseboard."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pydantic import BaseModel

from releaseboard.broadcast.hub import BroadcastHub
from releaseboard.config import BoardConfig
from releaseboard.core.orchestrator import ReleaseLocks, ReleaseOrchestrator
from releaseboard.core.runner import RunnerEvent, RunResult
from releaseboard.core.scheduler import Scheduler
from releaseboard.core.service import ReleaseService
from releaseboard.core.store import ReleaseStore
from releaseboard.models.events import ReleaseUpdate
from releaseboard.models.release import (
    DEPLOYMENT_ITEM_KINDS,
    Environment,
    Release,
    ReleaseStatus,
)


class RecordingHub(BroadcastHub):
    """BroadcastHub that also keeps every broadcast event for assertions."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.events: list[BaseModel] = []

    def broadcast(self, event: BaseModel, *, exclude: str | None = None) -> int:
        self.events.append(event)
        return super().broadcast(event, exclude=exclude)

    @property
    def release_updates(self) -> list[ReleaseUpdate]:
        return [e for e in self.events if isinstance(e, ReleaseUpdate)]


class FakeRunner:
    """Stand-in for DeploymentRunner with scripted per-item outcomes.

    ``outcomes`` maps item name to True (success), False (exit code 1)
    or an exception instance to raise after the first output line.
    """

    def __init__(
        self,
        outcomes: dict[str, bool | Exception] | None = None,
        *,
        allowed_items: tuple[str, ...] = DEPLOYMENT_ITEM_KINDS,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.outcomes = outcomes or {}
        self.allowed_items = allowed_items
        self.gate = gate
        self.calls: list[tuple[str, str]] = []

    async def run(self, item, environment, on_event) -> RunResult:
        self.calls.append((item, environment))
        outcome = self.outcomes.get(item, True)
        await on_event(
            RunnerEvent(item=item, stream="stdout", line=f"[PROGRESS:{item}:50]", percent=50)
        )
        if isinstance(outcome, Exception):
            raise outcome
        if self.gate is not None:
            await self.gate.wait()
        if outcome:
            return RunResult(item=item, environment=environment, success=True, exit_code=0)
        return RunResult(
            item=item,
            environment=environment,
            success=False,
            exit_code=1,
            error=f"{item} deployment failed with exit code: 1",
        )


@pytest.fixture
def store(tmp_path: Path) -> ReleaseStore:
    """Provide a fresh ReleaseStore backed by a temp SQLite database."""
    return ReleaseStore(tmp_path / "releaseboard.db")


@pytest.fixture
def hub() -> RecordingHub:
    return RecordingHub(client_timeout_seconds=10.0)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def locks() -> ReleaseLocks:
    return ReleaseLocks()


@pytest.fixture
def orchestrator(store, hub, fake_runner, locks) -> ReleaseOrchestrator:
    return ReleaseOrchestrator(store, hub, fake_runner, locks=locks)


@pytest.fixture
def make_orchestrator(store, hub):
    """Factory for an orchestrator over a FakeRunner with scripted outcomes."""

    def _make(
        outcomes: dict[str, bool | Exception] | None = None,
        *,
        gate: asyncio.Event | None = None,
    ) -> tuple[ReleaseOrchestrator, FakeRunner]:
        runner = FakeRunner(outcomes, gate=gate)
        return ReleaseOrchestrator(store, hub, runner), runner

    return _make


@pytest.fixture
def scheduler(store, orchestrator, hub) -> Scheduler:
    return Scheduler(store, orchestrator, hub, interval_seconds=0.05)


@pytest.fixture
def service(store, hub, locks) -> ReleaseService:
    return ReleaseService(store, hub, locks)


@pytest.fixture
def board_config(tmp_path: Path) -> BoardConfig:
    """A config pointing at temp storage with fast timings."""
    return BoardConfig(
        db_path=tmp_path / "board.db",
        scripts_dir=tmp_path / "scripts",
        scheduler_interval_seconds=0.05,
        line_delay_seconds=0.0,
        heartbeat_interval_seconds=0.05,
        client_timeout_seconds=10.0,
        seed_default_clients=True,
    )


@pytest.fixture
def make_release(store: ReleaseStore):
    """Factory that builds, stores and returns a release."""

    def _make(
        status: ReleaseStatus = ReleaseStatus.IN_DEVELOPMENT,
        items: list[str] | None = None,
        *,
        client_id: str = "client-1",
        skip_staging: bool = False,
        **overrides,
    ) -> Release:
        release = Release.new(
            overrides.pop("title", "Spring release"),
            client_id,
            overrides.pop("current_environment", Environment.DEVELOPMENT),
            overrides.pop("target_environment", Environment.PRODUCTION),
            items if items is not None else ["data", "solr"],
            skip_staging=skip_staging,
        )
        release = release.model_copy(update={"status": status, **overrides})
        store.save_release(release)
        return release

    return _make
