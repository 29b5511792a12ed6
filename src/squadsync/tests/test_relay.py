"""
Tests for the websocket relay server and its wire frames.
"""

import pytest
from fastapi.testclient import TestClient
from squadsync.constants import STATUS_CLOSED, STATUS_SUBSCRIBED
from squadsync.ws.events import (
    BroadcastFrame, ErrorFrame, PresenceSyncFrame, StatusFrame, SubscribeFrame,
    create_status_frame, decode_frame, encode_frame, parse_inbound_frame, parse_outbound_frame
)
from squadsync.ws.server import app

TOPIC = "apex-room:RELAY1"


@pytest.fixture
def client():
    """One client, and one event loop, shared by every socket in a test."""
    with TestClient(app) as test_client:
        yield test_client


def record(user_id, name):
    return {"userId": user_id, "user_name": name, "online_at": "2024-01-01T10:00:00+00:00", "excluded_ids": []}


def subscribe(ws, topic=TOPIC):
    ws.send_json({"type": "subscribe", "topic": topic, "presence_key": "RELAY1"})
    status = ws.receive_json()
    presence = ws.receive_json()
    return status, presence


def test_parse_inbound_frames():
    """Inbound frames parse into their models."""
    frame = parse_inbound_frame({"type": "subscribe", "topic": TOPIC})
    assert isinstance(frame, SubscribeFrame)
    assert frame.presence_key is None

    frame = parse_inbound_frame({"type": "broadcast", "event": "CHAT", "payload": {"text": "hi"}})
    assert isinstance(frame, BroadcastFrame)
    assert frame.payload == {"text": "hi"}


@pytest.mark.parametrize("data", [
    "not an object",
    {},
    {"type": "teleport"},
    {"type": "subscribe"},
    {"type": "broadcast", "event": ""},
])
def test_parse_inbound_rejects_bad_frames(data):
    """Malformed inbound frames raise ValueError."""
    with pytest.raises(ValueError):
        parse_inbound_frame(data)


def test_outbound_frames_survive_the_wire():
    """Outbound frames decode back into their models."""
    raw = encode_frame(create_status_frame(STATUS_SUBSCRIBED, TOPIC))
    frame = parse_outbound_frame(decode_frame(raw))
    assert isinstance(frame, StatusFrame)
    assert frame.status == STATUS_SUBSCRIBED

    with pytest.raises(ValueError):
        decode_frame("{not json")
    with pytest.raises(ValueError):
        parse_outbound_frame({"type": "status", "status": "BOGUS"})


def test_health_endpoint(client):
    """The health endpoint reports healthy."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_subscribe_acknowledges_with_presence(client):
    """Subscribing returns a status and the presence directory."""
    with client.websocket_connect("/realtime") as ws:
        status, presence = subscribe(ws)
        assert status == {"type": "status", "status": STATUS_SUBSCRIBED, "topic": TOPIC}
        assert presence == {"type": "presence_sync", "state": {}}


def test_presence_and_broadcast_between_clients(client):
    """Broadcasts and presence changes reach the other socket."""
    with client.websocket_connect("/realtime") as alice:
        subscribe(alice)
        alice.send_json({"type": "track", "record": record("a", "Alice")})
        assert alice.receive_json()["state"] == {"RELAY1": [record("a", "Alice")]}

        with client.websocket_connect("/realtime") as bob:
            _, presence = subscribe(bob)
            assert presence["state"] == {"RELAY1": [record("a", "Alice")]}

            bob.send_json({"type": "broadcast", "event": "GAME_UPDATE", "payload": {"mode": "FULL"}})
            message = alice.receive_json()
            assert message == {"type": "broadcast", "event": "GAME_UPDATE", "payload": {"mode": "FULL"}}

            bob.send_json({"type": "track", "record": record("b", "Bob")})
            synced = alice.receive_json()
            assert len(synced["state"]["RELAY1"]) == 2
            assert len(bob.receive_json()["state"]["RELAY1"]) == 2

        # Bob's socket closed; Alice sees him drop out of presence
        synced = alice.receive_json()
        assert synced["state"] == {"RELAY1": [record("a", "Alice")]}


def test_unsubscribe_reports_closed(client):
    """Unsubscribing is acknowledged with CLOSED."""
    with client.websocket_connect("/realtime") as ws:
        subscribe(ws)
        ws.send_json({"type": "unsubscribe"})
        frame = parse_outbound_frame(ws.receive_json())
        assert isinstance(frame, StatusFrame)
        assert frame.status == STATUS_CLOSED


def test_invalid_frames_get_error_replies(client):
    """Bad frames get error replies and the socket stays open."""
    with client.websocket_connect("/realtime") as ws:
        ws.send_text("{broken")
        frame = parse_outbound_frame(ws.receive_json())
        assert isinstance(frame, ErrorFrame)
        assert frame.code.value == "INVALID_FRAME"

        ws.send_json({"type": "track", "record": record("a", "Alice")})
        frame = parse_outbound_frame(ws.receive_json())
        assert frame.code.value == "NOT_SUBSCRIBED"

        # Connection stays usable after errors
        _, presence = subscribe(ws, "apex-room:ERRORS")
        assert isinstance(parse_outbound_frame(presence), PresenceSyncFrame)
