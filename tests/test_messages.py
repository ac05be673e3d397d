import json

import pytest

from api.messages import (
    CLIENT_MESSAGE_TYPES,
    JoinRoom,
    Offer,
    ShareFile,
    parse_client_message,
)
from api.websocket import MessageDispatcher
from errors import ProtocolError


def _frame(event: str, data) -> str:
    return json.dumps({"event": event, "data": data})


def test_join_room_accepts_camel_case_payload():
    message = parse_client_message(_frame("join-room", {
        "roomId": "ROOM00001",
        "identity": {"displayName": "Alice", "shortHash": "a1b2c3"},
        "publicKey": "pk",
    }))

    assert isinstance(message, JoinRoom)
    assert message.data.room_id == "ROOM00001"
    assert message.data.identity.display_name == "Alice"
    assert message.data.password is None


async def test_browser_identity_shape_can_join(coordinator, outbox, connect):
    room = await coordinator.create_room()
    await connect("a")
    dispatcher = MessageDispatcher(coordinator, outbox)

    await dispatcher.dispatch("a", _frame("join-room", {
        "roomId": room.room_id,
        "password": None,
        "identity": {"displayName": "Anonymous", "hash": "a1b2c3", "fullIdentity": "Anonymous#a1b2c3"},
        "publicKey": "pk-a",
    }))

    assert room.members == {"a"}
    assert outbox.data("a", "error") == []
    joined = outbox.last("a", "room-joined")
    assert joined["peers"][0]["identity"] == {
        "displayName": "Anonymous",
        "shortHash": "a1b2c3",
        "fullIdentity": "Anonymous#a1b2c3",
    }


def test_signal_payload_accepts_legacy_field_names():
    message = parse_client_message(_frame("offer", {
        "targetPeerId": "b",
        "offer": {"type": "offer", "sdp": "v=0"},
    }))

    assert isinstance(message, Offer)
    assert message.data.payload == {"type": "offer", "sdp": "v=0"}


def test_share_file_validates_fields():
    message = parse_client_message(_frame("share-file", {"name": "a.txt", "size": 3}))
    assert isinstance(message, ShareFile)
    assert message.data.type is None

    with pytest.raises(ProtocolError):
        parse_client_message(_frame("share-file", {"name": "a.txt", "size": -1}))


@pytest.mark.parametrize("raw", [
    "not json",
    json.dumps({"event": "launch-missiles", "data": {}}),
    json.dumps({"data": {"roomId": "x"}}),
    _frame("join-room", {}),
    _frame("join-room", {"roomId": "x", "identity": {"displayName": "A", "shortHash": "zz"}}),
])
def test_malformed_frames_are_rejected(raw):
    with pytest.raises(ProtocolError):
        parse_client_message(raw)


def test_dispatcher_handles_every_client_message_type(coordinator, outbox):
    dispatcher = MessageDispatcher(coordinator, outbox)
    assert dispatcher.handled_types == set(CLIENT_MESSAGE_TYPES)


async def test_dispatcher_reports_protocol_errors(coordinator, outbox, connect):
    await connect("a")
    outbox.clear()
    dispatcher = MessageDispatcher(coordinator, outbox)

    await dispatcher.dispatch("a", "{}")

    [(event, data)] = outbox.events("a")
    assert event == "error"
    assert data["reason"] == "protocol_error"
    assert "a" in coordinator.peers


async def test_dispatcher_reports_failed_requests_to_the_sender_only(coordinator, outbox, connect):
    await connect("a", "b")
    outbox.clear()
    dispatcher = MessageDispatcher(coordinator, outbox)

    await dispatcher.dispatch("a", _frame("join-room", {"roomId": "ZZZZZZZZZ"}))

    assert outbox.events("a") == [("room-error", {"reason": "not_found", "error": "Room not found"})]
    assert outbox.events("b") == []


async def test_dispatcher_routes_share_and_signal(coordinator, outbox, connect):
    await connect("a", "b")
    dispatcher = MessageDispatcher(coordinator, outbox)

    await dispatcher.dispatch("a", _frame("share-file", {"name": "a.txt", "size": 3}))
    await dispatcher.dispatch("a", _frame("ice-candidate", {"targetPeerId": "b", "candidate": "c1"}))

    assert outbox.last("b", "file-available")["name"] == "a.txt"
    assert outbox.last("b", "ice-candidate") == {"payload": "c1", "fromPeerId": "a"}
