"""Tests for the release models and the viewer event codec."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from releaseboard.models import (
    AppLog,
    ChatMessage,
    DeploymentItem,
    Environment,
    EventDecodeError,
    Ping,
    Pong,
    Release,
    ReleaseStatus,
    ReleaseUpdate,
    decode_event,
    encode_event,
)


class TestRelease:
    def test_new_release_defaults(self):
        release = Release.new(
            "Q3", "client-1", Environment.DEVELOPMENT, Environment.STAGING, ["data", "app"]
        )
        assert release.status == ReleaseStatus.IN_DEVELOPMENT
        assert release.progress == 0.0
        assert release.item_names == ["data", "app"]
        assert all(i.status == ReleaseStatus.IN_DEVELOPMENT for i in release.deployment_items)
        assert release.created_at.tzinfo is not None

    def test_duplicate_item_names_rejected(self):
        with pytest.raises(ValidationError):
            Release.new("Q3", "c", Environment.DEVELOPMENT, Environment.STAGING, ["data", "data"])

    def test_progress_bounds(self):
        release = Release.new("Q3", "c", Environment.DEVELOPMENT, Environment.STAGING, ["data"])
        with pytest.raises(ValidationError):
            Release.model_validate({**release.model_dump(), "progress": 120})

    def test_frozen(self):
        release = Release.new("Q3", "c", Environment.DEVELOPMENT, Environment.STAGING, ["data"])
        with pytest.raises(ValidationError):
            release.title = "changed"

    def test_naive_schedule_assumed_utc(self):
        release = Release.new(
            "Q3", "c", Environment.DEVELOPMENT, Environment.STAGING, ["data"],
            scheduled_at=datetime(2030, 1, 1, 9, 0),
        )
        assert release.scheduled_at.tzinfo == timezone.utc

    def test_unknown_status_name_rejected(self):
        release = Release.new("Q3", "c", Environment.DEVELOPMENT, Environment.STAGING, ["data"])
        data = json.loads(release.model_dump_json())
        data["status"] = "Shipped"
        with pytest.raises(ValidationError):
            Release.model_validate(data)

    def test_status_wire_name(self):
        release = Release.new("Q3", "c", Environment.DEVELOPMENT, Environment.STAGING, ["data"])
        release = release.model_copy(update={"status": ReleaseStatus.WAITING_FOR_STAGING})
        assert json.loads(release.model_dump_json())["status"] == "WaitingForStaging"

    def test_replace_item(self):
        release = Release.new("Q3", "c", Environment.DEVELOPMENT, Environment.STAGING, ["data", "solr"])
        updated = release.replace_item(DeploymentItem(name="solr", status=ReleaseStatus.ERROR))
        assert updated.get_item("solr").status == ReleaseStatus.ERROR
        assert release.get_item("solr").status == ReleaseStatus.IN_DEVELOPMENT
        with pytest.raises(KeyError):
            release.replace_item(DeploymentItem(name="app"))


class TestDeploymentItem:
    def test_logs_append(self):
        item = DeploymentItem(name="data").with_logs(["a"]).with_logs(["b", "c"])
        assert item.logs == ["a", "b", "c"]

    def test_first_error_wins(self):
        item = DeploymentItem(name="data").with_error("first").with_error("second")
        assert item.status == ReleaseStatus.ERROR
        assert item.error == "first"


class TestEventCodec:
    def test_chat_decodes(self):
        event = decode_event('{"type": "Chat", "username": "ann", "message": "hi"}')
        assert isinstance(event, ChatMessage)
        assert event.message == "hi"
        assert event.timestamp

    def test_release_update_encodes_with_tag(self):
        raw = encode_event(ReleaseUpdate(release_id="r1", status="InProgress", progress=50.0))
        data = json.loads(raw)
        assert data["type"] == "ReleaseUpdate"
        assert data["progress"] == 50.0
        assert isinstance(decode_event(raw), ReleaseUpdate)

    def test_heartbeat_frames(self):
        assert isinstance(decode_event(encode_event(Ping())), Ping)
        assert isinstance(decode_event('{"type": "Pong"}'), Pong)

    def test_app_log_level_restricted(self):
        with pytest.raises(EventDecodeError):
            decode_event('{"type": "AppLog", "level": "fatal", "message": "x"}')
        assert AppLog(message="x").level == "info"

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            '{"message": "no type"}',
            '{"type": "Teleport"}',
            '{"type": "Chat"}',
        ],
    )
    def test_invalid_frames(self, raw):
        with pytest.raises(EventDecodeError):
            decode_event(raw)

    def test_bytes_accepted(self):
        assert isinstance(decode_event(b'{"type": "Pong"}'), Pong)
