"""End-to-end relay scenarios over the WebSocket endpoint."""
import pytest
from fastapi.testclient import TestClient

from pairlink.app import create_app
from pairlink.modules.relay import RoomRegistry, SignalRelay


@pytest.fixture
def relay():
    return SignalRelay(RoomRegistry())


@pytest.fixture
def client(relay):
    with TestClient(create_app(relay)) as test_client:
        yield test_client


def connect(client):
    """Open a socket and return it with the member id the relay assigned."""
    ws = client.websocket_connect("/ws")
    session = ws.__enter__()
    hello = session.receive_json()
    assert hello["type"] == "member-id"
    return ws, session, hello["data"]["member_id"]


def request(session, frame_type, room_id, request_id):
    session.send_json({"type": frame_type, "data": room_id, "request_id": request_id})
    ack = session.receive_json()
    assert ack["type"] == "ack"
    assert ack["request_id"] == request_id
    return ack["data"]


class TestRoomLifecycle:

    def test_create_join_disconnect(self, client, relay):
        ws_a, a, a_id = connect(client)
        ws_b, b, b_id = connect(client)

        assert request(a, "create-room", "r1", 1) == {"ok": True}
        assert request(b, "join-room", "r1", 1) == {"ok": True}
        assert a.receive_json() == {"type": "peer-joined", "data": {"member_id": b_id}}

        ws_b.__exit__(None, None, None)
        assert a.receive_json() == {"type": "peer-left", "data": {"member_id": b_id}}
        assert relay.registry.get_members("r1") == frozenset({a_id})

        ws_a.__exit__(None, None, None)
        assert not relay.registry.has_room("r1")
        assert relay.get_connection_count() == 0

    def test_join_before_create_then_retry(self, client):
        ws_a, a, _ = connect(client)
        ws_b, b, _ = connect(client)

        assert request(b, "join-room", "r2", 1) == {"ok": False, "reason": "ROOM_NOT_FOUND"}
        assert request(a, "create-room", "r2", 1) == {"ok": True}
        assert request(b, "join-room", "r2", 2) == {"ok": True}

        ws_b.__exit__(None, None, None)
        ws_a.__exit__(None, None, None)

    def test_third_member_gets_room_full(self, client, relay):
        sockets = [connect(client) for _ in range(3)]
        (_, a, _), (_, b, b_id), (_, c, c_id) = sockets

        request(a, "create-room", "r1", 1)
        request(b, "join-room", "r1", 1)
        assert request(c, "join-room", "r1", 1) == {"ok": False, "reason": "ROOM_FULL"}
        assert c_id not in relay.registry.get_members("r1")

        for ws, _, _ in reversed(sockets):
            ws.__exit__(None, None, None)

    def test_create_existing_room(self, client):
        ws_a, a, _ = connect(client)
        ws_b, b, _ = connect(client)

        request(a, "create-room", "r1", 1)
        assert request(b, "create-room", "r1", 7) == {"ok": False, "reason": "ROOM_ALREADY_EXISTS"}

        ws_b.__exit__(None, None, None)
        ws_a.__exit__(None, None, None)

    def test_leave_room_notifies_peer(self, client, relay):
        ws_a, a, _ = connect(client)
        ws_b, b, b_id = connect(client)
        request(a, "create-room", "r1", 1)
        request(b, "join-room", "r1", 1)
        a.receive_json()  # peer-joined

        b.send_json({"type": "leave-room", "data": "r1"})
        assert a.receive_json() == {"type": "peer-left", "data": {"member_id": b_id}}

        ws_b.__exit__(None, None, None)
        ws_a.__exit__(None, None, None)


class TestSignaling:

    def test_signal_relayed_with_origin(self, client):
        ws_a, a, a_id = connect(client)
        ws_b, b, _ = connect(client)
        request(a, "create-room", "r1", 1)
        request(b, "join-room", "r1", 1)
        a.receive_json()  # peer-joined

        offer = {"type": "offer", "sdp": "v=0"}
        a.send_json({"type": "signal", "data": {"room_id": "r1", "kind": "offer", "payload": offer}})
        assert b.receive_json() == {
            "type": "signal",
            "data": {"from": a_id, "kind": "offer", "payload": offer},
        }

        ws_b.__exit__(None, None, None)
        ws_a.__exit__(None, None, None)

    def test_malformed_frames_get_error_frames(self, client):
        ws, session, _ = connect(client)

        session.send_text("not json")
        assert session.receive_json()["type"] == "error"

        session.send_json({"type": "dance", "request_id": 3})
        error = session.receive_json()
        assert error["type"] == "error"
        assert error["request_id"] == 3

        session.send_json({"type": "signal", "data": {"room_id": "r1", "kind": "hello"}})
        assert session.receive_json()["type"] == "error"

        session.send_json({"type": "create-room", "data": "", "request_id": 4})
        assert session.receive_json()["type"] == "error"

        # still usable
        assert request(session, "create-room", "r9", 5) == {"ok": True}
        ws.__exit__(None, None, None)


class TestHttp:

    def test_root_and_health(self, client, relay):
        assert client.get("/").json()["status"] == "ok"

        ws, session, _ = connect(client)
        request(session, "create-room", "r1", 1)
        health = client.get("/api/health").json()
        assert health == {"status": "ok", "rooms": 1, "connections": 1}
        assert client.get("/api/rooms").json()["rooms"][0]["room_id"] == "r1"
        ws.__exit__(None, None, None)

    def test_ice_servers(self, client):
        servers = client.get("/api/ice-servers").json()
        assert any(server["urls"].startswith("stun:") for server in servers)
