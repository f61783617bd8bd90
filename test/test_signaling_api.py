"""시그널링 WebSocket / HTTP API 통합 테스트."""

import pytest
from fastapi.testclient import TestClient

from app import app
from huddle.signaling import RoomManager

OFFER = {"sdp": "v=0 offer", "type": "offer"}
ANSWER = {"sdp": "v=0 answer", "type": "answer"}


@pytest.fixture
def client():
    with TestClient(app) as client:
        yield client


def connect(client: TestClient):
    ws = client.websocket_connect("/ws")
    session = ws.__enter__()
    hello = session.receive_json()
    assert hello["type"] == "session_id"
    return ws, session, hello["data"]["session_id"]


def join(session, room_code: str, identity: str) -> dict:
    session.send_json({"type": "join_request", "data": {"room_code": room_code, "identity": identity}})
    return session.receive_json()


def test_call_setup_between_two_participants(client):
    alice_cm, alice, alice_id = connect(client)
    bob_cm, bob, bob_id = connect(client)
    try:
        accepted = join(alice, "ABC123", "alice@x.com")
        assert accepted["type"] == "join_accepted"
        assert accepted["data"]["participants"] == []

        accepted = join(bob, "ABC123", "bob@x.com")
        assert accepted["data"]["session_id"] == bob_id
        assert [p["id"] for p in accepted["data"]["participants"]] == [alice_id]

        joined = alice.receive_json()
        assert joined["type"] == "participant_joined"
        assert joined["data"]["id"] == bob_id

        # 기존 참가자가 새 참가자에게 offer
        alice.send_json({"type": "call_offer", "data": {"to_id": bob_id, "offer": OFFER}})
        incoming = bob.receive_json()
        assert incoming == {"type": "incoming_call", "data": {"from_id": alice_id, "offer": OFFER}}

        bob.send_json({"type": "call_answer", "data": {"to_id": alice_id, "answer": ANSWER}})
        accepted_call = alice.receive_json()
        assert accepted_call == {"type": "call_accepted", "data": {"from_id": bob_id, "answer": ANSWER}}

        bob.send_json({"type": "media_toggle", "data": {"kind": "video", "enabled": False}})
        toggle = alice.receive_json()
        assert toggle["data"] == {"id": bob_id, "kind": "video", "enabled": False}
    finally:
        bob_cm.__exit__(None, None, None)

    left = alice.receive_json()
    assert left["type"] == "participant_left"
    assert left["data"]["id"] == bob_id
    alice_cm.__exit__(None, None, None)


def test_room_full_is_reported(client):
    client.app.state.room_manager = RoomManager(capacity=1)
    first_cm, first, _ = connect(client)
    second_cm, second, _ = connect(client)
    try:
        assert join(first, "TINY", "first")["type"] == "join_accepted"

        rejected = join(second, "TINY", "second")
        assert rejected == {"type": "room_full", "data": {"room_code": "TINY", "capacity": 1}}
        assert client.app.state.room_manager.get_room_count("TINY") == 1
    finally:
        second_cm.__exit__(None, None, None)
        first_cm.__exit__(None, None, None)


def test_invalid_messages_get_error_and_keep_connection(client):
    ws_cm, ws, _ = connect(client)
    try:
        ws.send_text("not json")
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "join_request", "data": {"room_code": "", "identity": "x"}})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "call_offer", "data": {"to_id": "someone", "offer": OFFER}})
        assert ws.receive_json()["data"]["message"] == "join a room first"

        ws.send_json({"type": "teleport", "data": {}})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "get_rooms"})
        assert ws.receive_json() == {"type": "rooms_list", "data": {"rooms": []}}
    finally:
        ws_cm.__exit__(None, None, None)


def test_disconnect_removes_empty_room(client):
    ws_cm, ws, _ = connect(client)
    join(ws, "GONE", "alice")
    assert client.get("/api/rooms").json()["rooms"][0]["room_code"] == "GONE"

    ws_cm.__exit__(None, None, None)

    assert client.get("/api/rooms").json() == {"rooms": []}


def test_http_endpoints(client):
    assert client.get("/").json()["status"] == "ok"

    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert health["signaling"] == {"rooms": 0, "sessions": 0}

    ice_servers = client.get("/api/ice-servers").json()["ice_servers"]
    assert {"urls": "stun:stun.l.google.com:19302"} in ice_servers
