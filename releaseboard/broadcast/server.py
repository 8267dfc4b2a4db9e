"""FastAPI application — viewer WebSocket plus thin REST routes.

The routes only translate HTTP into ``ReleaseService`` calls.  Validation
errors map to 400, conflicts to 409 and unknown releases to 404.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from releaseboard.broadcast.hub import BroadcastHub
from releaseboard.config import BoardConfig
from releaseboard.core.runner import UnknownDeploymentItemError
from releaseboard.core.service import (
    ReleaseConflictError,
    ReleaseNotFoundError,
    ReleaseValidationError,
)
from releaseboard.core.state_machine import (
    InvalidDeploymentPathError,
    InvalidEnvironmentError,
    NotClearableError,
)
from releaseboard.core.store import StoreError
from releaseboard.core.wiring import BoardServices, build_services

logger = logging.getLogger(__name__)


class CreateReleaseRequest(BaseModel):
    title: str
    client_id: str
    current_environment: str = "development"
    target_environment: str = "staging"
    deployment_items: list[str]
    scheduled_at: datetime | None = None
    created_by: str = "unknown"
    skip_staging: bool = False


class UpdateReleaseRequest(BaseModel):
    title: str | None = None
    client_id: str | None = None
    current_environment: str | None = None
    target_environment: str | None = None
    deployment_items: list[str] | None = None
    scheduled_at: datetime | None = None
    skip_staging: bool | None = None


class StatusRequest(BaseModel):
    """``{"status": "clear"}`` or a status wire name."""

    status: str


_ERROR_CODES: dict[type[Exception], int] = {
    InvalidEnvironmentError: 400,
    InvalidDeploymentPathError: 400,
    NotClearableError: 400,
    ReleaseValidationError: 400,
    UnknownDeploymentItemError: 400,
    ReleaseConflictError: 409,
    ReleaseNotFoundError: 404,
    StoreError: 503,
}


def create_app(
    cfg: BoardConfig | None = None,
    *,
    services: BoardServices | None = None,
    run_scheduler: bool = True,
) -> FastAPI:
    """Build the releaseboard FastAPI application.

    Parameters
    ----------
    cfg:
        Configuration.  Defaults to the module-level ``config``.
    services:
        Pre-built components.  Built from *cfg* when omitted.
    run_scheduler:
        Whether the lifespan starts the scheduler loop.
    """
    if cfg is None:
        from releaseboard.config import config as cfg
    board = services or build_services(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if board.config.seed_default_clients:
            await board.service.seed_default_clients()
        if run_scheduler:
            board.scheduler.start()
        logger.info("Releaseboard server started")
        yield
        await board.scheduler.stop()
        board.hub.close_all()
        logger.info("Releaseboard server stopped")

    app = FastAPI(
        title="Releaseboard",
        description="Release pipeline board with live deployment updates",
        version="0.1.0",
        docs_url="/docs" if board.config.debug else None,
        lifespan=lifespan,
    )
    app.state.board = board

    for exc_class, status_code in _ERROR_CODES.items():
        app.add_exception_handler(exc_class, _error_handler(status_code))

    service = board.service

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "scheduler_running": board.scheduler.running,
            "viewers": board.hub.session_count,
        }

    @app.get("/api/releases")
    async def list_releases() -> list[dict[str, Any]]:
        return [r.model_dump(mode="json") for r in await service.list_releases()]

    @app.post("/api/releases", status_code=201)
    async def create_release(body: CreateReleaseRequest) -> dict[str, Any]:
        release = await service.create_release(
            body.title,
            body.client_id,
            body.current_environment,
            body.target_environment,
            body.deployment_items,
            scheduled_at=body.scheduled_at,
            created_by=body.created_by,
            skip_staging=body.skip_staging,
        )
        return release.model_dump(mode="json")

    @app.get("/api/releases/{release_id}")
    async def get_release(release_id: uuid.UUID) -> dict[str, Any]:
        return (await service.get_release(release_id)).model_dump(mode="json")

    @app.put("/api/releases/{release_id}")
    async def update_release(
        release_id: uuid.UUID, body: UpdateReleaseRequest
    ) -> dict[str, Any]:
        release = await service.update_release(
            release_id, **body.model_dump(exclude_none=True)
        )
        return release.model_dump(mode="json")

    @app.delete("/api/releases/{release_id}", status_code=204)
    async def delete_release(release_id: uuid.UUID) -> None:
        await service.delete_release(release_id)

    @app.put("/api/releases/{release_id}/status")
    async def set_status(release_id: uuid.UUID, body: StatusRequest) -> dict[str, Any]:
        release = await service.set_status(release_id, body.status)
        return release.model_dump(mode="json")

    @app.get("/api/clients")
    async def list_clients() -> list[dict[str, Any]]:
        return [c.model_dump(mode="json") for c in await service.list_clients()]

    @app.websocket("/ws")
    async def viewer_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        user_id = websocket.query_params.get("user", "anonymous")
        await serve_viewer(
            websocket,
            board.hub,
            user_id=user_id,
            heartbeat_interval=board.config.heartbeat_interval_seconds,
        )

    return app


async def serve_viewer(
    websocket: WebSocket,
    hub: BroadcastHub,
    *,
    user_id: str,
    heartbeat_interval: float,
) -> None:
    """Pump one accepted WebSocket through the hub until either side ends it."""
    session_id = hub.register(websocket.send_text, user_id)
    session = hub.get(session_id)
    if session is None:
        return

    reader = asyncio.create_task(_read_frames(websocket, hub, session_id))
    closed = asyncio.create_task(session.wait_closed())
    heartbeat = asyncio.create_task(hub.heartbeat(session_id, heartbeat_interval))
    try:
        done, _ = await asyncio.wait(
            {reader, closed}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (reader, closed, heartbeat):
            task.cancel()
        hub.unregister(session_id)

    if closed in done and websocket.client_state == WebSocketState.CONNECTED:
        # Hub side gave up on the session (timeout or failed send).
        await websocket.close()


async def _read_frames(websocket: WebSocket, hub: BroadcastHub, session_id: str) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            logger.debug("Viewer %s disconnected", session_id)
            return
        # Text and binary frames are both decoded as JSON events.
        frame = message.get("text")
        if frame is None:
            frame = message.get("bytes")
        if frame is not None:
            hub.handle_incoming(session_id, frame)


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler
