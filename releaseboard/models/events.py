"""Viewer wire events — one JSON object per WebSocket frame.

Every frame is a tagged union value discriminated by ``type``.  Frames are
decoded once at the boundary with ``decode_event``; an unknown ``type`` or
a malformed body raises ``EventDecodeError``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventDecodeError(ValueError):
    """Raised when an inbound frame is not a valid viewer event."""


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["Chat"] = "Chat"
    username: str = ""
    message: str
    timestamp: str = Field(default_factory=_now_iso)


class ReleaseUpdate(BaseModel):
    """Status/progress change or log line for one release."""

    model_config = ConfigDict(frozen=True)

    type: Literal["ReleaseUpdate"] = "ReleaseUpdate"
    release_id: str
    status: str
    progress: float
    log_line: str | None = None
    item: str | None = None
    item_progress: int | None = None


class AppLog(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["AppLog"] = "AppLog"
    level: Literal["debug", "info", "warn", "error"] = "info"
    message: str
    timestamp: str = Field(default_factory=_now_iso)


class Ping(BaseModel):
    """Heartbeat probe sent by the server."""

    model_config = ConfigDict(frozen=True)

    type: Literal["Ping"] = "Ping"
    timestamp: str = Field(default_factory=_now_iso)


class Pong(BaseModel):
    """Heartbeat answer sent by the viewer."""

    model_config = ConfigDict(frozen=True)

    type: Literal["Pong"] = "Pong"


ViewerEvent = Annotated[
    Union[ChatMessage, ReleaseUpdate, AppLog, Ping, Pong],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[ViewerEvent] = TypeAdapter(ViewerEvent)


def encode_event(event: BaseModel) -> str:
    """Serialize an event to a compact JSON string."""
    return event.model_dump_json()


def decode_event(raw: str | bytes) -> ChatMessage | ReleaseUpdate | AppLog | Ping | Pong:
    """Decode a raw frame into its event model."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise EventDecodeError(f"Invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise EventDecodeError(
            f"Event must be a JSON object, got {type(data).__name__}"
        )
    if "type" not in data:
        raise EventDecodeError("Missing type field")

    try:
        return _EVENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise EventDecodeError(f"Invalid {data.get('type')!r} event: {exc}") from exc
