"""
End-to-end tests through the FastAPI app.

Drives the /ws endpoint and the HTTP routers with Starlette's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from main import app, session_manager


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    session_manager.sessions.clear()


def receive_until(ws, msg_type: str, limit: int = 20) -> dict:
    """Read messages until one of the given type arrives."""
    for _ in range(limit):
        message = ws.receive_json()
        if message.get("type") == msg_type:
            return message
    raise AssertionError(f"No {msg_type} message within {limit} messages")


def create(ws, member_id: str = "host") -> str:
    ws.send_json({"type": "create_session", "player": {"id": member_id, "name": member_id.title()}})
    return receive_until(ws, "session_created")["session_code"]


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready_counts_sessions(self, client):
        with client.websocket_connect("/ws") as ws:
            create(ws)
            body = client.get("/ready").json()
            assert body["sessions"] == 1
            assert body["games_in_progress"] == 0
            assert body["members"] == 1
            assert body["connections"] == 1


class TestWebSocketFlow:

    def test_create_join_start(self, client):
        with client.websocket_connect("/ws") as host, client.websocket_connect("/ws") as guest:
            code = create(host)
            receive_until(host, "state")

            guest.send_json({"type": "join_session", "session_code": code, "player": {"id": "guest", "name": "Guest"}})
            receive_until(guest, "session_joined")
            receive_until(host, "member_joined")

            host.send_json({"type": "start_game", "settings": {"seed": 3}})
            state = receive_until(guest, "state")
            while state["game"]["phase"] != "phase1":
                state = receive_until(guest, "state")
            assert len(state["game"]["hand"]) == 21
            assert state["you"] == "guest"

    def test_bad_settings_keep_connection(self, client):
        with client.websocket_connect("/ws") as host:
            code = create(host)
            host.send_json({"type": "start_game", "settings": {"pyramid_height": "abc"}})
            error = receive_until(host, "error")
            assert error["code"] == "VALIDATION_ERROR"
            assert "pyramid_height" in error["message"]

            assert session_manager.get_session(code).game.phase.value == "lobby"
            assert session_manager.get_session(code).roster.get_player("host").connected
            host.send_json({"type": "teleport"})
            assert receive_until(host, "error")["code"] == "VALIDATION_ERROR"

    def test_unknown_message_type(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "teleport"})
            error = receive_until(ws, "error")
            assert error["code"] == "VALIDATION_ERROR"

    def test_action_before_joining(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "action", "payload": {"action": "reveal_row", "row_index": 0}})
            assert receive_until(ws, "error")["code"] == "VALIDATION_ERROR"

    def test_join_unknown_session(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join_session", "session_code": "ZZZZZ", "player": {"id": "x", "name": "X"}})
            assert receive_until(ws, "error")["code"] == "SESSION_NOT_FOUND"

    def test_disconnect_marks_member_offline(self, client):
        with client.websocket_connect("/ws") as host:
            code = create(host)
            with client.websocket_connect("/ws") as guest:
                guest.send_json({"type": "join_session", "session_code": code, "player": {"id": "guest", "name": "G"}})
                receive_until(guest, "session_joined")

            def guest_offline(state):
                return any(p["id"] == "guest" and not p["connected"] for p in state["roster"]["players"])

            state = receive_until(host, "state")
            while not guest_offline(state):
                state = receive_until(host, "state")
            assert session_manager.get_session(code).roster.get_player("guest").connected is False


class TestSessionsApi:

    def test_list_open_sessions(self, client):
        with client.websocket_connect("/ws") as ws:
            code = create(ws)
            body = client.get("/api/sessions").json()
            assert code in [s["code"] for s in body["sessions"]]
            assert body["count"] == len(body["sessions"])

    def test_spectator_view(self, client):
        with client.websocket_connect("/ws") as ws:
            code = create(ws)
            body = client.get(f"/api/sessions/{code.lower()}").json()
            assert body["session_code"] == code
            assert body["game"]["hand"] is None
            assert body["summary"]["code"] == code

    def test_unknown_session_404(self, client):
        assert client.get("/api/sessions/ZZZZZ").status_code == 404

    def test_events(self, client):
        with client.websocket_connect("/ws") as ws:
            code = create(ws)
            body = client.get(f"/api/sessions/{code}/events").json()
            assert [e["event_type"] for e in body["events"]] == ["session_created", "member_joined"]
