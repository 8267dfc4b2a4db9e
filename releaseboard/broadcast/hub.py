"""Broadcast hub — fans viewer events out to every live session.

Every connected viewer is a ``ViewerSession`` that owns an outbox queue
and a writer task draining it into the transport.  ``broadcast`` only
enqueues, so a slow or dead viewer never blocks the caller or the other
viewers.  Delivery is best-effort: nothing is persisted and a viewer that
connects later never sees earlier events.

Liveness: every inbound frame touches the session.  Sessions silent for
longer than ``client_timeout_seconds`` are torn down by the heartbeat loop
or by ``prune_stale``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from releaseboard.models.events import (
    AppLog,
    ChatMessage,
    EventDecodeError,
    Ping,
    Pong,
    ReleaseUpdate,
    decode_event,
    encode_event,
)

logger = logging.getLogger(__name__)

SendFn = Callable[[str], Awaitable[None]]
Clock = Callable[[], float]


class ViewerSession:
    """One live viewer connection.

    Parameters
    ----------
    session_id:
        Unique id assigned by the hub.
    user_id:
        The authenticated user behind the connection.
    send:
        Coroutine function that writes one text frame to the transport.
    clock:
        Monotonic clock used for liveness tracking.
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        send: SendFn,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.user_id = user_id
        self._send = send
        self._clock = clock
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = asyncio.Event()
        self._writer: asyncio.Task[None] | None = None
        self.last_seen = clock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        """Start the writer task on the running event loop."""
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(
                self._drain(), name=f"viewer-writer-{self.session_id}"
            )

    def touch(self) -> None:
        self.last_seen = self._clock()

    def is_stale(self, timeout_seconds: float) -> bool:
        return self._clock() - self.last_seen > timeout_seconds

    def enqueue(self, payload: str) -> bool:
        """Queue a frame for delivery.  Returns False if the session is closed."""
        if self.closed:
            return False
        self._outbox.put_nowait(payload)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        self._outbox.put_nowait(None)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _drain(self) -> None:
        while True:
            payload = await self._outbox.get()
            if payload is None:
                return
            try:
                await self._send(payload)
            except Exception as exc:  # noqa: BLE001
                # Delivery failures stay local to this session.
                logger.debug("Send to session %s failed: %s", self.session_id, exc)
                self.close()
                return


class BroadcastHub:
    """Registry of live viewer sessions plus event fan-out.

    Parameters
    ----------
    client_timeout_seconds:
        Silence after which a session is considered dead.
    clock:
        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        *,
        client_timeout_seconds: float = 10.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self._timeout = client_timeout_seconds
        self._clock = clock
        self._sessions: dict[str, ViewerSession] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, send: SendFn, user_id: str = "anonymous") -> str:
        """Register a new viewer and return its session id.

        Must be called from inside the running event loop.
        """
        session_id = uuid.uuid4().hex
        session = ViewerSession(session_id, user_id, send, clock=self._clock)
        session.start()
        with self._lock:
            self._sessions[session_id] = session
            total = len(self._sessions)
        logger.info("Added session %s (user %s). Total active: %d", session_id, user_id, total)

        session.enqueue(
            encode_event(
                ChatMessage(
                    username="System",
                    message=f"Welcome to the chat! Your session ID is {session_id}",
                )
            )
        )
        self.app_log("info", f"New client connected with ID: {session_id}")
        return session_id

    def unregister(self, session_id: str) -> bool:
        """Remove a session and stop its writer.  Returns False if unknown."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            total = len(self._sessions)
        if session is None:
            return False
        session.close()
        logger.info("Removed session %s. Total active: %d", session_id, total)
        self.app_log("info", f"Client disconnected: {session_id}")
        return True

    def get(self, session_id: str) -> ViewerSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    @property
    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def touch(self, session_id: str) -> None:
        session = self.get(session_id)
        if session is not None:
            session.touch()

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def broadcast(self, event: BaseModel, *, exclude: str | None = None) -> int:
        """Queue *event* for every registered session except *exclude*.

        Never blocks and never raises for delivery problems.  Returns the
        number of sessions the event was queued for.
        """
        payload = encode_event(event)
        with self._lock:
            targets = [s for sid, s in self._sessions.items() if sid != exclude]
        delivered = sum(1 for session in targets if session.enqueue(payload))
        logger.debug("Broadcast %s to %d sessions", getattr(event, "type", "?"), delivered)
        return delivered

    def send_to(self, session_id: str, event: BaseModel) -> bool:
        """Queue *event* for a single session."""
        session = self.get(session_id)
        if session is None:
            return False
        return session.enqueue(encode_event(event))

    def release_update(
        self,
        release_id: str,
        status: str,
        progress: float,
        log_line: str | None = None,
        *,
        item: str | None = None,
        item_progress: int | None = None,
    ) -> int:
        """Broadcast a status/progress change or log line for a release."""
        if status == "Error":
            logger.error("Release %s failed: %s", release_id, log_line)
        else:
            logger.debug(
                "Release %s - Status: %s - Progress: %.1f%%", release_id, status, progress
            )
        return self.broadcast(
            ReleaseUpdate(
                release_id=release_id,
                status=status,
                progress=progress,
                log_line=log_line,
                item=item,
                item_progress=item_progress,
            )
        )

    def app_log(self, level: str, message: str) -> int:
        """Broadcast an application log line to every viewer."""
        wire_level = level if level in ("debug", "info", "warn", "error") else "info"
        logger.log(_LOG_LEVELS[wire_level], "APP LOG: %s", message)
        return self.broadcast(AppLog(level=wire_level, message=message))

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    def handle_incoming(self, session_id: str, raw: str | bytes) -> None:
        """Process one frame received from a viewer."""
        session = self.get(session_id)
        if session is None:
            return
        session.touch()

        try:
            event = decode_event(raw)
        except EventDecodeError as exc:
            logger.error("Invalid message format from %s: %s", session_id, exc)
            self.send_to(
                session_id,
                AppLog(level="error", message=f"Invalid message format: {exc}"),
            )
            return

        if isinstance(event, Pong):
            return
        if isinstance(event, ChatMessage):
            chat = ChatMessage(username=session.user_id, message=event.message)
            self.send_to(session_id, chat)
            self.broadcast(chat, exclude=session_id)
            return
        logger.warning("Client %s tried to send a %s event", session_id, event.type)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def heartbeat(self, session_id: str, interval_seconds: float) -> None:
        """Ping a session until it closes or goes silent for too long."""
        while True:
            session = self.get(session_id)
            if session is None or session.closed:
                return
            if session.is_stale(self._timeout):
                logger.info("WebSocket client timed out: %s", session_id)
                self.unregister(session_id)
                return
            session.enqueue(encode_event(Ping()))
            await asyncio.sleep(interval_seconds)

    def prune_stale(self) -> int:
        """Unregister every session that is closed or silent past the timeout."""
        with self._lock:
            stale = [
                sid
                for sid, s in self._sessions.items()
                if s.closed or s.is_stale(self._timeout)
            ]
        pruned = sum(1 for sid in stale if self.unregister(sid))
        if pruned:
            logger.info("Pruned %d stale viewer sessions", pruned)
        return pruned

    def close_all(self) -> None:
        for session_id in self.session_ids:
            self.unregister(session_id)


_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}
