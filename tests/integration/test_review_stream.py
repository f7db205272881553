"""
Integration tests for the review WebSocket.

Tests authentication, the hello frame, live delivery of state changes
and replay on reconnect.
"""

from base64 import b64encode

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

WS_URL = "/v1/review/ws"


def register(client: TestClient, username: str = "alice") -> str:
    response = client.post(
        "/v1/register", json={"username": username, "email": f"{username}@example.com"}
    )
    assert response.status_code == 201
    return response.json()["account_id"]


class TestAuthentication:
    def test_missing_credentials_closed(self, client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(WS_URL) as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_wrong_password_closed(self, client: TestClient) -> None:
        token = b64encode(b"admin:nope").decode()
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(WS_URL, headers={"Authorization": f"Basic {token}"}) as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008


class TestStream:
    def test_hello_frame(self, client: TestClient, admin_headers: dict) -> None:
        with client.websocket_connect(WS_URL, headers=admin_headers) as ws:
            hello = ws.receive_json()
        assert hello["type"] == "hello"
        assert hello["session_id"]
        assert hello["last_sequence"] == 0
        assert hello["replay_complete"] is True

    def test_register_and_approve_are_streamed(
        self, client: TestClient, admin_headers: dict
    ) -> None:
        with client.websocket_connect(WS_URL, headers=admin_headers) as ws:
            ws.receive_json()
            account_id = register(client)
            registered = ws.receive_json()

            client.post(
                f"/v1/users/{account_id}/status",
                json={"status": "approved"},
                headers=admin_headers,
            )
            approved = ws.receive_json()

        assert registered["type"] == "register"
        assert registered["account_id"] == account_id
        assert registered["old_status"] is None
        assert registered["new_status"] == "pending"
        assert approved["type"] == "approve"
        assert approved["old_status"] == "pending"
        assert approved["new_status"] == "approved"
        assert approved["sequence"] == registered["sequence"] + 1

    def test_every_admin_sees_every_event(self, client: TestClient, admin_headers: dict) -> None:
        with client.websocket_connect(WS_URL, headers=admin_headers) as first, \
                client.websocket_connect(WS_URL, headers=admin_headers) as second:
            first.receive_json()
            second.receive_json()
            account_id = register(client)
            assert first.receive_json()["account_id"] == account_id
            assert second.receive_json()["account_id"] == account_id

    def test_disconnect_unsubscribes(self, client: TestClient, admin_headers: dict) -> None:
        with client.websocket_connect(WS_URL, headers=admin_headers) as ws:
            ws.receive_json()
            assert client.app.state.hub.session_count() == 1
        assert client.app.state.hub.session_count() == 0
        register(client)


class TestReplay:
    def test_reconnect_replays_missed_events(
        self, client: TestClient, admin_headers: dict
    ) -> None:
        first = register(client, "alice")
        second = register(client, "bob")

        with client.websocket_connect(f"{WS_URL}?last_sequence=1", headers=admin_headers) as ws:
            hello = ws.receive_json()
            replayed = ws.receive_json()

        assert hello["replay_complete"] is True
        assert hello["last_sequence"] == 2
        assert replayed["account_id"] == second
        assert replayed["account_id"] != first
