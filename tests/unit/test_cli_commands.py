"""Unit tests for the CLI — command registration and store-backed behavior."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from releaseboard.cli.app import app
from releaseboard.core.store import ReleaseStore
from releaseboard.models.release import ReleaseStatus

runner = CliRunner()


@pytest.fixture
def db(tmp_path: Path) -> str:
    return str(tmp_path / "cli.db")


def _create(db: str, *args: str) -> str:
    result = runner.invoke(app, ["create", "Spring release", "--client", "acme", "--db", db, *args])
    assert result.exit_code == 0, result.output
    return result.output.strip().splitlines()[-1].strip()


class TestCliApp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert "Usage" in result.output or "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "board", "create", "clear", "status", "delete", "tick", "clients"):
            assert command in result.output

    @pytest.mark.parametrize(
        "command", ["serve", "board", "create", "clear", "status", "delete", "tick", "clients"]
    )
    def test_command_help(self, command):
        assert runner.invoke(app, [command, "--help"]).exit_code == 0


class TestReleaseCommands:
    def test_create_and_clear(self, db):
        release_id = _create(db, "--items", "data,app")
        stored = ReleaseStore(Path(db)).get_release(release_id)
        assert stored.item_names == ["data", "app"]

        result = runner.invoke(app, ["clear", release_id, "--db", db])
        assert result.exit_code == 0, result.output
        assert "WaitingForStaging" in result.output

    def test_create_rejects_bad_path(self, db):
        result = runner.invoke(
            app,
            ["create", "Back", "--client", "acme", "--from", "production", "--to", "staging", "--db", db],
        )
        assert result.exit_code == 1
        assert "Rejected" in result.output

    def test_create_conflict(self, db):
        _create(db)
        result = runner.invoke(app, ["create", "Second", "--client", "acme", "--db", db])
        assert result.exit_code == 1
        assert "active release" in result.output

    def test_clear_not_clearable(self, db):
        release_id = _create(db)
        runner.invoke(app, ["clear", release_id, "--db", db])
        result = runner.invoke(app, ["clear", release_id, "--db", db])
        assert result.exit_code == 1

    def test_status_command(self, db):
        release_id = _create(db)
        result = runner.invoke(app, ["status", release_id, "Blocked", "--db", db])
        assert result.exit_code == 0, result.output
        assert ReleaseStore(Path(db)).get_release(release_id).status == ReleaseStatus.BLOCKED

        bad = runner.invoke(app, ["status", release_id, "Shipped", "--db", db])
        assert bad.exit_code == 1

    def test_delete(self, db):
        release_id = _create(db)
        result = runner.invoke(app, ["delete", release_id, "--yes", "--db", db])
        assert result.exit_code == 0
        assert ReleaseStore(Path(db)).get_release(release_id) is None

        again = runner.invoke(app, ["delete", release_id, "--yes", "--db", db])
        assert again.exit_code == 1

    def test_bad_release_id(self, db):
        result = runner.invoke(app, ["clear", "not-a-uuid", "--db", db])
        assert result.exit_code == 1


class TestBoardAndClients:
    def test_board_missing_store(self, tmp_path):
        result = runner.invoke(app, ["board", "--db", str(tmp_path / "none.db")])
        assert result.exit_code == 1
        assert "Store not found" in result.output

    def test_board_shows_release(self, db):
        _create(db)
        result = runner.invoke(app, ["board", "--db", db])
        assert result.exit_code == 0
        assert "Spring release" in result.output

    def test_clients_seeds_defaults(self, db):
        result = runner.invoke(app, ["clients", "--db", db])
        assert result.exit_code == 0
        assert "Acme Corporation" in result.output
        assert len(ReleaseStore(Path(db)).get_all_clients()) == 10


class TestTick:
    def test_tick_deploys_due_release(self, db, tmp_path):
        scripts = tmp_path / "scripts"
        scripts.mkdir()
        (scripts / "deploy_data.sh").write_text('echo "[PROGRESS:data:100]"\n')

        release_id = _create(db, "--items", "data")
        runner.invoke(app, ["clear", release_id, "--db", db])

        result = runner.invoke(app, ["tick", "--db", db, "--scripts", str(scripts)])
        assert result.exit_code == 0, result.output
        stored = ReleaseStore(Path(db)).get_release(release_id)
        assert stored.status == ReleaseStatus.READY_TO_TEST_IN_STAGING
        assert stored.progress == 100.0

    def test_tick_with_nothing_due(self, db):
        result = runner.invoke(app, ["tick", "--db", db])
        assert result.exit_code == 0
        assert "No releases were due" in result.output
