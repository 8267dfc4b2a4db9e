"""Integration tests for the FastAPI app — REST routes and the viewer WebSocket."""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from releaseboard.broadcast.server import create_app


@pytest.fixture
def client(board_config):
    app = create_app(board_config, run_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


def _create(client: TestClient, **overrides) -> dict:
    body = {
        "title": "Spring release",
        "client_id": "acme",
        "current_environment": "development",
        "target_environment": "staging",
        "deployment_items": ["data", "solr"],
        **overrides,
    }
    response = client.post("/api/releases", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _receive(ws, kind: str, limit: int = 50) -> dict:
    """Read frames until one of *kind* arrives, skipping heartbeats and others."""
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == kind:
            return frame
    raise AssertionError(f"no {kind} frame within {limit} frames")


class TestRestRoutes:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["scheduler_running"] is False

    def test_clients_seeded_on_startup(self, client):
        clients = client.get("/api/clients").json()
        assert len(clients) == 10

    def test_create_get_list(self, client):
        created = _create(client)
        assert created["status"] == "InDevelopment"

        fetched = client.get(f"/api/releases/{created['id']}").json()
        assert fetched["title"] == "Spring release"
        assert [r["id"] for r in client.get("/api/releases").json()] == [created["id"]]

    def test_invalid_path_is_400(self, client):
        response = client.post(
            "/api/releases",
            json={
                "title": "Back",
                "client_id": "acme",
                "current_environment": "production",
                "target_environment": "development",
                "deployment_items": ["app"],
            },
        )
        assert response.status_code == 400
        assert "Invalid deployment path" in response.json()["detail"]

    def test_conflict_is_409(self, client):
        _create(client)
        response = client.post(
            "/api/releases",
            json={"title": "Again", "client_id": "acme", "deployment_items": ["app"]},
        )
        assert response.status_code == 409

    def test_unknown_release_is_404(self, client):
        assert client.get(f"/api/releases/{uuid.uuid4()}").status_code == 404

    def test_status_clear_and_named(self, client):
        created = _create(client)
        url = f"/api/releases/{created['id']}/status"

        cleared = client.put(url, json={"status": "clear"})
        assert cleared.status_code == 200
        assert cleared.json()["status"] == "WaitingForStaging"

        assert client.put(url, json={"status": "clear"}).status_code == 400
        assert client.put(url, json={"status": "Shipped"}).status_code == 400

        blocked = client.put(url, json={"status": "Blocked"})
        assert blocked.json()["status"] == "Blocked"

    def test_update(self, client):
        created = _create(client)
        response = client.put(
            f"/api/releases/{created['id']}",
            json={"title": "Renamed", "deployment_items": ["data", "app"]},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Renamed"
        assert [i["name"] for i in body["deployment_items"]] == ["data", "app"]

    def test_delete(self, client):
        created = _create(client)
        assert client.delete(f"/api/releases/{created['id']}").status_code == 204
        assert client.delete(f"/api/releases/{created['id']}").status_code == 404


class TestViewerSocket:
    def test_welcome_message(self, client):
        with client.websocket_connect("/ws?user=ann") as ws:
            welcome = _receive(ws, "Chat")
            assert welcome["username"] == "System"
            assert "session ID" in welcome["message"]

    def test_release_changes_are_broadcast(self, client):
        with client.websocket_connect("/ws") as ws:
            _receive(ws, "Chat")
            created = _create(client)
            update = _receive(ws, "ReleaseUpdate")
            assert update["release_id"] == created["id"]
            assert update["status"] == "InDevelopment"

    def test_chat_relayed_between_viewers(self, client):
        with client.websocket_connect("/ws?user=ann") as ann, client.websocket_connect(
            "/ws?user=bob"
        ) as bob:
            _receive(ann, "Chat")
            _receive(bob, "Chat")

            ann.send_json({"type": "Chat", "message": "deploying now"})
            echoed = _receive(ann, "Chat")
            relayed = _receive(bob, "Chat")

            assert echoed["message"] == relayed["message"] == "deploying now"
            assert relayed["username"] == "ann"

    def test_invalid_frame_gets_error_log(self, client):
        with client.websocket_connect("/ws") as ws:
            _receive(ws, "Chat")
            ws.send_text("{not json")
            for _ in range(50):
                frame = _receive(ws, "AppLog")
                if frame["level"] == "error":
                    assert "Invalid message format" in frame["message"]
                    break
            else:
                raise AssertionError("no error AppLog received")

    def test_binary_frames_are_decoded(self, client):
        with client.websocket_connect("/ws?user=ann") as ws:
            _receive(ws, "Chat")
            ws.send_bytes(b'{"type": "Chat", "message": "from bytes"}')
            echoed = _receive(ws, "Chat")
            assert echoed["message"] == "from bytes"

            ws.send_bytes(b"\xff\xfe")
            for _ in range(50):
                frame = _receive(ws, "AppLog")
                if frame["level"] == "error":
                    break
            else:
                raise AssertionError("no error AppLog received")
            assert client.get("/health").json()["viewers"] == 1

    def test_heartbeat_pings(self, client):
        with client.websocket_connect("/ws") as ws:
            ping = _receive(ws, "Ping")
            ws.send_json({"type": "Pong"})
            assert ping["timestamp"]

    def test_session_removed_on_disconnect(self, client):
        with client.websocket_connect("/ws") as ws:
            _receive(ws, "Chat")
            assert client.get("/health").json()["viewers"] == 1
        # unregister happens once the server notices the close
        for _ in range(100):
            if client.get("/health").json()["viewers"] == 0:
                break
        assert client.get("/health").json()["viewers"] == 0
