"""Deployment item runner — executes one item as an external process.

Each deployment item kind maps to a script ``deploy_<item>.sh`` in the
configured scripts directory, invoked with the target environment name
(``staging`` or ``production``) as its only argument.

Standard output and standard error are read concurrently as two
independent line streams.  Every line is forwarded to the caller's event
callback as soon as it is read.  A stdout line containing a progress
marker such as ``[PROGRESS:data:40]`` also carries the percentage.

Only the exit status decides the outcome: stderr output is surfaced as a
warning but never fails an item.  There are no retries.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict

from releaseboard.models.release import DEPLOYMENT_ITEM_KINDS

logger = logging.getLogger(__name__)

PROGRESS_MARKER = re.compile(r"\[PROGRESS:(?P<item>[A-Za-z0-9_-]+):(?P<percent>-?\d+)\]")

# asyncio's default 64 KiB line limit is too small for some build tools.
_LINE_LIMIT = 1024 * 1024


class UnknownDeploymentItemError(ValueError):
    """Raised for an item name outside the configured vocabulary."""


class RunnerSpawnError(RuntimeError):
    """Raised when the deployment process cannot be started."""


class RunnerEvent(BaseModel):
    """One line of output from a running deployment item."""

    model_config = ConfigDict(frozen=True)

    item: str
    stream: Literal["stdout", "stderr"]
    line: str
    percent: int | None = None

    @property
    def is_error(self) -> bool:
        return self.stream == "stderr"

    def format(self) -> str:
        """Render the line the way viewers see it, tagged with its item."""
        if self.is_error:
            return f"[{self.item}] ERROR: {self.line}"
        return f"[{self.item}] {self.line}"


class RunResult(BaseModel):
    """Outcome of one deployment item execution."""

    model_config = ConfigDict(frozen=True)

    item: str
    environment: str
    success: bool
    exit_code: int | None = None
    error: str | None = None


EventCallback = Callable[[RunnerEvent], Awaitable[None]]


def parse_progress_marker(line: str) -> tuple[str, int] | None:
    """Extract ``(item, percent)`` from a progress marker, or None.

    The percentage is clamped to 0..100.
    """
    match = PROGRESS_MARKER.search(line)
    if match is None:
        return None
    percent = max(0, min(100, int(match.group("percent"))))
    return match.group("item"), percent


class DeploymentRunner:
    """Runs deployment item scripts and streams their output.

    Parameters
    ----------
    scripts_dir:
        Directory holding the ``deploy_<item>.sh`` scripts.
    shell:
        Interpreter used to run each script.
    timeout_seconds:
        Wall-clock limit per item.  On expiry the whole process group is
        killed and the item fails.  ``None`` disables the limit.
    line_delay_seconds:
        Pause after each forwarded line, a safety valve for the hub.
    line_limit:
        Longest line read in one piece.  Longer lines are forwarded as
        several consecutive chunks.
    allowed_items:
        The item vocabulary.  Anything else is a configuration error.
    """

    def __init__(
        self,
        scripts_dir: Path,
        *,
        shell: str = "bash",
        timeout_seconds: float | None = 1800.0,
        line_delay_seconds: float = 0.1,
        allowed_items: tuple[str, ...] = DEPLOYMENT_ITEM_KINDS,
        line_limit: int = _LINE_LIMIT,
    ) -> None:
        self._scripts_dir = Path(scripts_dir)
        self._shell = shell
        self._timeout = timeout_seconds
        self._line_delay = line_delay_seconds
        self._allowed = allowed_items
        self._line_limit = line_limit

    @property
    def allowed_items(self) -> tuple[str, ...]:
        return self._allowed

    def validate_item(self, item: str) -> None:
        if item not in self._allowed:
            raise UnknownDeploymentItemError(
                f"Unknown deployment item {item!r}. "
                f"Known items: {', '.join(self._allowed)}"
            )

    def command_for(self, item: str, environment: str) -> list[str]:
        """Build the argv for running *item* against *environment*."""
        self.validate_item(item)
        script = self._scripts_dir / f"deploy_{item}.sh"
        return [self._shell, str(script), environment]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(
        self, item: str, environment: str, on_event: EventCallback
    ) -> RunResult:
        """Run one deployment item to completion.

        Raises
        ------
        UnknownDeploymentItemError
            If *item* is not in the vocabulary.
        RunnerSpawnError
            If the process could not be started.
        """
        argv = self.command_for(item, environment)
        logger.info("Starting %s deployment to %s: %s", item, environment, " ".join(argv))

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
                limit=self._line_limit,
            )
        except OSError as exc:
            raise RunnerSpawnError(f"Failed to start {item} process: {exc}") from exc

        pumps = asyncio.gather(
            self._pump(item, "stdout", proc.stdout, on_event),
            self._pump(item, "stderr", proc.stderr, on_event),
        )

        timed_out = False
        try:
            exit_code = await asyncio.wait_for(proc.wait(), timeout=self._timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(
                "%s deployment exceeded %.0fs, killing process group %d",
                item,
                self._timeout,
                proc.pid,
            )
            _kill_group(proc.pid)
            exit_code = await proc.wait()
        await pumps

        if timed_out:
            message = f"{item} deployment timed out after {self._timeout:.0f}s"
            return RunResult(
                item=item, environment=environment, success=False,
                exit_code=exit_code, error=message,
            )
        if exit_code != 0:
            message = f"{item} deployment failed with exit code: {exit_code}"
            logger.warning(message)
            return RunResult(
                item=item, environment=environment, success=False,
                exit_code=exit_code, error=message,
            )

        logger.info("%s deployment to %s completed", item, environment)
        return RunResult(item=item, environment=environment, success=True, exit_code=0)

    async def _pump(
        self,
        item: str,
        stream: Literal["stdout", "stderr"],
        reader: asyncio.StreamReader | None,
        on_event: EventCallback,
    ) -> None:
        """Forward every line of one output stream, in order."""
        if reader is None:
            return
        while True:
            raw = await self._read_line(reader)
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")

            percent = None
            if stream == "stdout":
                marker = parse_progress_marker(line)
                if marker is not None and marker[0] == item:
                    percent = marker[1]

            if stream == "stderr":
                logger.warning("[%s] %s", item, line)
            else:
                logger.debug("[%s] %s", item, line)

            event = RunnerEvent(item=item, stream=stream, line=line, percent=percent)
            try:
                await on_event(event)
            except Exception:  # noqa: BLE001
                logger.exception("Event callback failed for %s %s line", item, stream)

            if self._line_delay:
                await asyncio.sleep(self._line_delay)

    async def _read_line(self, reader: asyncio.StreamReader) -> bytes:
        """Read one line, or the next chunk of a line longer than the limit."""
        try:
            return await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            return exc.partial
        except asyncio.LimitOverrunError:
            return await reader.read(self._line_limit)


def _kill_group(pid: int) -> None:
    try:
        os.killpg(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
