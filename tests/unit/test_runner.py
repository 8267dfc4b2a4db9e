"""Tests for the DeploymentRunner — real bash scripts in a temp directory."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from releaseboard.core.runner import (
    DeploymentRunner,
    RunnerEvent,
    RunnerSpawnError,
    UnknownDeploymentItemError,
    parse_progress_marker,
)


def _script(scripts_dir: Path, item: str, body: str) -> None:
    scripts_dir.mkdir(parents=True, exist_ok=True)
    (scripts_dir / f"deploy_{item}.sh").write_text(
        "#!/usr/bin/env bash\n" + textwrap.dedent(body)
    )


@pytest.fixture
def scripts_dir(tmp_path: Path) -> Path:
    return tmp_path / "scripts"


@pytest.fixture
def runner(scripts_dir: Path) -> DeploymentRunner:
    return DeploymentRunner(scripts_dir, line_delay_seconds=0.0, timeout_seconds=10.0)


class _Collector:
    def __init__(self) -> None:
        self.events: list[RunnerEvent] = []

    async def __call__(self, event: RunnerEvent) -> None:
        self.events.append(event)


class TestProgressMarker:
    def test_parse(self):
        assert parse_progress_marker("[PROGRESS:data:40]") == ("data", 40)
        assert parse_progress_marker("step 3 [PROGRESS:solr:75] ok") == ("solr", 75)

    def test_clamped(self):
        assert parse_progress_marker("[PROGRESS:app:150]") == ("app", 100)
        assert parse_progress_marker("[PROGRESS:app:-5]") == ("app", 0)

    def test_plain_line(self):
        assert parse_progress_marker("Deploying data step 1") is None


class TestRunnerEvent:
    def test_format(self):
        assert RunnerEvent(item="data", stream="stdout", line="hi").format() == "[data] hi"
        assert (
            RunnerEvent(item="data", stream="stderr", line="oops").format()
            == "[data] ERROR: oops"
        )


class TestDeploymentRunner:
    def test_command(self, runner: DeploymentRunner, scripts_dir: Path):
        assert runner.command_for("solr", "staging") == [
            "bash",
            str(scripts_dir / "deploy_solr.sh"),
            "staging",
        ]

    async def test_success_streams_lines_in_order(self, runner, scripts_dir):
        _script(
            scripts_dir,
            "data",
            """
            echo "start $1"
            echo "[PROGRESS:data:50]"
            echo "[PROGRESS:data:100]"
            """,
        )
        collect = _Collector()
        result = await runner.run("data", "staging", collect)

        assert result.success is True
        assert result.exit_code == 0
        assert [e.line for e in collect.events] == [
            "start staging",
            "[PROGRESS:data:50]",
            "[PROGRESS:data:100]",
        ]
        assert [e.percent for e in collect.events] == [None, 50, 100]

    async def test_nonzero_exit_fails_item(self, runner, scripts_dir):
        _script(scripts_dir, "solr", "echo working\nexit 3\n")
        result = await runner.run("solr", "production", _Collector())
        assert result.success is False
        assert result.exit_code == 3
        assert result.error == "solr deployment failed with exit code: 3"

    async def test_stderr_does_not_fail_item(self, runner, scripts_dir):
        _script(scripts_dir, "app", "echo warning >&2\necho done\n")
        collect = _Collector()
        result = await runner.run("app", "staging", collect)

        assert result.success is True
        stderr = [e for e in collect.events if e.stream == "stderr"]
        assert len(stderr) == 1
        assert stderr[0].format() == "[app] ERROR: warning"

    async def test_marker_for_other_item_has_no_percent(self, runner, scripts_dir):
        _script(scripts_dir, "data", 'echo "[PROGRESS:solr:30]"\n')
        collect = _Collector()
        await runner.run("data", "staging", collect)
        assert collect.events[0].percent is None

    async def test_unknown_item(self, runner):
        with pytest.raises(UnknownDeploymentItemError):
            await runner.run("database", "staging", _Collector())

    async def test_spawn_failure(self, scripts_dir):
        runner = DeploymentRunner(scripts_dir, shell="/nonexistent/shell", line_delay_seconds=0.0)
        with pytest.raises(RunnerSpawnError):
            await runner.run("data", "staging", _Collector())

    async def test_timeout_kills_process(self, scripts_dir):
        _script(scripts_dir, "data", "echo begin\nsleep 30\necho never\n")
        runner = DeploymentRunner(scripts_dir, timeout_seconds=0.5, line_delay_seconds=0.0)
        collect = _Collector()
        result = await runner.run("data", "staging", collect)

        assert result.success is False
        assert "timed out" in result.error
        assert [e.line for e in collect.events] == ["begin"]

    async def test_callback_failure_does_not_stop_stream(self, runner, scripts_dir):
        _script(scripts_dir, "data", "echo one\necho two\n")
        seen: list[str] = []

        async def flaky(event: RunnerEvent) -> None:
            seen.append(event.line)
            raise RuntimeError("viewer gone")

        result = await runner.run("data", "staging", flaky)
        assert result.success is True
        assert seen == ["one", "two"]

    async def test_oversized_line_is_forwarded_in_chunks(self, scripts_dir):
        _script(
            scripts_dir,
            "data",
            """\
            head -c 5000 /dev/zero | tr '\\0' x
            echo
            echo done
            """,
        )
        runner = DeploymentRunner(
            scripts_dir, line_delay_seconds=0.0, timeout_seconds=10.0, line_limit=1024
        )
        collect = _Collector()
        result = await runner.run("data", "staging", collect)

        assert result.success is True
        lines = [e.line for e in collect.events]
        assert lines[-1] == "done"
        assert len(lines) > 2
        assert "".join(lines[:-1]) == "x" * 5000

    async def test_very_long_line_with_default_limit(self, runner, scripts_dir):
        _script(
            scripts_dir,
            "app",
            """\
            head -c 2000000 /dev/zero | tr '\\0' y
            echo
            exit 0
            """,
        )
        collect = _Collector()
        result = await runner.run("app", "staging", collect)

        assert result.success is True
        assert sum(len(e.line) for e in collect.events) == 2000000
