"""End-to-end tests of the front door and room over real WebSockets (Starlette TestClient)."""

import json
from unittest.mock import MagicMock

import pytest
from starlette.testclient import TestClient, WebSocketDenialResponse
from starlette.websockets import WebSocketDisconnect

from app import create_app
from directory import RoomDirectory, resolve_room_id


@pytest.fixture
def room_directory():
    return RoomDirectory()


@pytest.fixture
def client(room_directory):
    with TestClient(create_app(directory=room_directory)) as test_client:
        yield test_client


class TestHttpRoutes:
    def test_root(self, client) -> None:
        response = client.get("/")
        assert response.status_code == 200
        assert response.text == "Chat server is running."
        assert response.headers["content-type"].startswith("text/plain")

    def test_unknown_top_level_path(self, client) -> None:
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.text == "Not found"

    @pytest.mark.parametrize("path", ["/api/room", "/api/room/"])
    def test_room_without_name(self, client, path) -> None:
        response = client.get(path)
        assert response.status_code == 405
        assert response.text == "Method not allowed"

    def test_name_too_long(self, client) -> None:
        response = client.get("/api/room/" + "x" * 33 + "/websocket")
        assert response.status_code == 404
        assert response.text == "Name too long"

    def test_relay_path_without_upgrade(self, client) -> None:
        response = client.get("/api/room/abc/websocket")
        assert response.status_code == 400
        assert response.text == "expected websocket"

    @pytest.mark.parametrize("path", ["/api/room/abc", "/api/room/abc/", "/api/room/abc/other"])
    def test_other_room_paths(self, client, path) -> None:
        response = client.post(path)
        assert response.status_code == 404
        assert response.text == "Not found"

    def test_rejected_requests_leave_no_rooms(self, client, room_directory) -> None:
        client.get("/api/room/abc/websocket")
        assert room_directory.room_ids() == []

    def test_presence(self, client, room_directory) -> None:
        with client.websocket_connect("/api/room/abc/websocket"):
            response = client.get("/api/presence/abc")

        body = response.json()
        assert response.status_code == 200
        assert body["room_id"] == resolve_room_id("abc").value
        assert body["kind"] == "name"
        assert body["occupancy"] == 1
        assert body["is_full"] is False
        assert body["recorded_connections"] is None

    def test_presence_reports_redis_mirror(self) -> None:
        presence = MagicMock()
        presence.ping.return_value = True
        presence.get_connections.return_value = {"c1", "c2"}
        with TestClient(create_app(directory=RoomDirectory(presence=presence))) as test_client:
            response = test_client.get("/api/presence/" + "f" * 64)

        assert response.json()["kind"] == "global"
        assert response.json()["recorded_connections"] == 2
        presence.ping.assert_called_once()


class TestWebSocketRelay:
    def test_pair_relays_both_ways(self, client) -> None:
        with client.websocket_connect("/api/room/abc/websocket") as ws1:
            with client.websocket_connect("/api/room/abc/websocket") as ws2:
                ws1.send_text("hello")
                assert ws2.receive_text() == "hello"

                ws2.send_bytes(b"\x01\x02")
                assert ws1.receive_bytes() == b"\x01\x02"

    def test_peer_disconnect_closes_survivor(self, client, room_directory) -> None:
        with client.websocket_connect("/api/room/abc/websocket") as ws1:
            with client.websocket_connect("/api/room/abc/websocket") as ws2:
                ws2.send_text("ping")
                assert ws1.receive_text() == "ping"

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws1.receive_text()

        assert exc_info.value.code == 1000
        assert exc_info.value.reason == "Peer disconnected"

    def test_third_client_gets_room_full(self, client) -> None:
        with client.websocket_connect("/api/room/abc/websocket"):
            with client.websocket_connect("/api/room/abc/websocket"):
                with pytest.raises(WebSocketDenialResponse) as exc_info:
                    with client.websocket_connect("/api/room/abc/websocket"):
                        pass

        assert exc_info.value.status_code == 429
        assert exc_info.value.text == "Room is full."

    def test_unknown_room_path_over_websocket(self, client) -> None:
        with pytest.raises(WebSocketDenialResponse) as exc_info:
            with client.websocket_connect("/api/room/abc/other"):
                pass

        assert exc_info.value.status_code == 404

    def test_rooms_do_not_share_peers(self, client) -> None:
        with client.websocket_connect("/api/room/one/websocket") as a1:
            with client.websocket_connect("/api/room/two/websocket") as b1:
                with client.websocket_connect("/api/room/two/websocket") as b2:
                    a1.send_text("lonely")
                    b1.send_text("for b2")
                    assert b2.receive_text() == "for b2"

    def test_setup_fault_is_reported_on_the_channel(self, client, room_directory, monkeypatch) -> None:
        async def explode(room_id, request):
            raise RuntimeError("directory exploded")

        monkeypatch.setattr(room_directory, "admit", explode)

        with client.websocket_connect("/api/room/abc/websocket") as ws:
            payload = json.loads(ws.receive_text())
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert "directory exploded" in payload["error"]
        assert exc_info.value.code == 1011
        assert exc_info.value.reason == "Uncaught exception during session setup"

    def test_room_usable_after_setup_fault(self, client, room_directory, monkeypatch) -> None:
        original = room_directory.admit
        calls = []

        async def explode_once(room_id, request):
            if not calls:
                calls.append(room_id)
                raise RuntimeError("transient")
            return await original(room_id, request)

        monkeypatch.setattr(room_directory, "admit", explode_once)

        with client.websocket_connect("/api/room/abc/websocket") as ws:
            ws.receive_text()
        with client.websocket_connect("/api/room/abc/websocket") as ws1:
            with client.websocket_connect("/api/room/abc/websocket") as ws2:
                ws1.send_text("still works")
                assert ws2.receive_text() == "still works"

    def test_http_fault_returns_traceback(self, client, room_directory, monkeypatch) -> None:
        async def explode(room_id, request):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(room_directory, "admit", explode)

        response = client.get("/api/room/abc/websocket")

        assert response.status_code == 500
        assert "kaboom" in response.text
