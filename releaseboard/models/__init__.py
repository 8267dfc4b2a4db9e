"""Releaseboard data models — all Pydantic v2, all frozen (immutable)."""

from releaseboard.models.events import (
    AppLog,
    ChatMessage,
    EventDecodeError,
    Ping,
    Pong,
    ReleaseUpdate,
    ViewerEvent,
    decode_event,
    encode_event,
)
from releaseboard.models.release import (
    DEPLOYMENT_ITEM_KINDS,
    Client,
    DeploymentItem,
    Environment,
    Release,
    ReleaseStatus,
    User,
    UserRole,
)

__all__ = [
    # release
    "Environment",
    "ReleaseStatus",
    "DeploymentItem",
    "Release",
    "Client",
    "User",
    "UserRole",
    "DEPLOYMENT_ITEM_KINDS",
    # events
    "ChatMessage",
    "ReleaseUpdate",
    "AppLog",
    "Ping",
    "Pong",
    "ViewerEvent",
    "EventDecodeError",
    "decode_event",
    "encode_event",
]
