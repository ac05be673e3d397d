import random

import pytest

from api.websocket import MessageDispatcher
from config import ROOM_SWEEP_INTERVAL
from errors import ChallengeExpired, Expired, InvalidPassword, NotFound
from peers.models import Identity
from security.crypto import compute_proof

ALICE = Identity(display_name="Alice", short_hash="a1b2c3", full_identity="Alice#a1b2c3")
BOB = Identity(display_name="Bob", short_hash="0f0f0f")


async def test_connect_greets_with_the_global_view(coordinator, outbox, connect):
    await connect("a")
    assert outbox.events("a") == [
        ("connected", {"peerId": "a"}),
        ("peers-list", []),
        ("files-list", []),
    ]

    await connect("b")
    assert outbox.last("a", "peer-joined") == {"id": "b"}
    assert outbox.last("b", "peers-list") == [{"id": "a", "identity": None, "publicKey": None}]


async def test_join_public_room(coordinator, outbox, connect):
    room = await coordinator.create_room()
    await connect("a", "b")

    assert await coordinator.join_room("a", room.room_id, identity=ALICE, public_key="pk-a")
    snapshot = outbox.last("a", "room-joined")
    assert snapshot["roomId"] == room.room_id
    assert [p["id"] for p in snapshot["peers"]] == ["a"]
    assert snapshot["publicKeys"] == {"a": "pk-a"}
    assert snapshot["activity"][-1]["action"] == "joined"

    await coordinator.join_room("b", room.room_id, identity=BOB)
    assert outbox.last("a", "peer-joined-room") == {
        "peerId": "b",
        "identity": BOB.dump(),
        "publicKey": None,
    }
    assert {p["id"] for p in outbox.last("b", "room-joined")["peers"]} == {"a", "b"}
    assert room.members == {"a", "b"}
    assert coordinator.peers.get("b").room_id == room.room_id


async def test_password_room_admission_and_expiry(coordinator, outbox, clock, connect):
    room = await coordinator.create_room(password="abc123", ttl=600)
    await connect("a", "b")
    dispatcher = MessageDispatcher(coordinator, outbox)

    # A answers the challenge correctly.
    assert await coordinator.join_room("a", room.room_id, identity=ALICE) is False
    nonce = outbox.last("a", "password-challenge")["nonce"]
    await coordinator.submit_proof("a", compute_proof("abc123", nonce))
    assert outbox.last("a", "room-joined")["roomId"] == room.room_id

    # B sends a wrong proof through the message surface.
    await dispatcher.dispatch("b", f'{{"event": "join-room", "data": {{"roomId": "{room.room_id}"}}}}')
    nonce = outbox.last("b", "password-challenge")["nonce"]
    await dispatcher.dispatch(
        "b",
        f'{{"event": "password-proof", "data": {{"proof": "{compute_proof("wrong", nonce)}"}}}}',
    )
    assert outbox.last("b", "room-error") == {"reason": "invalid_password", "error": "Invalid password"}
    assert outbox.data("b", "room-joined") == []
    assert coordinator.peers.get("b").room_id is None
    assert room.members == {"a"}

    clock.advance(601)
    with pytest.raises(Expired):
        await coordinator.get_room_info(room.room_id)
    assert outbox.last("a", "room-expired") == {"roomId": room.room_id}
    assert coordinator.peers.get("a").room_id is None
    assert outbox.events("a")[-1] == ("files-list", [])

    with pytest.raises(NotFound) as exc:
        await coordinator.get_room_info(room.room_id)
    assert not isinstance(exc.value, Expired)


async def test_direct_password_join(coordinator, outbox, connect):
    room = await coordinator.create_room(password="abc123")
    await connect("a")

    with pytest.raises(InvalidPassword):
        await coordinator.join_room("a", room.room_id, password="nope")
    assert room.members == set()

    assert await coordinator.join_room("a", room.room_id, password="abc123")
    assert room.members == {"a"}


async def test_proof_without_challenge_is_rejected(coordinator, connect):
    await connect("a")
    with pytest.raises(ChallengeExpired):
        await coordinator.submit_proof("a", "deadbeef")


async def test_failed_proof_consumes_the_challenge(coordinator, outbox, connect):
    room = await coordinator.create_room(password="abc123")
    await connect("a")
    await coordinator.join_room("a", room.room_id)
    nonce = outbox.last("a", "password-challenge")["nonce"]

    with pytest.raises(InvalidPassword):
        await coordinator.submit_proof("a", compute_proof("wrong", nonce))
    with pytest.raises(ChallengeExpired):
        await coordinator.submit_proof("a", compute_proof("abc123", nonce))


async def test_stale_challenge_is_rejected(coordinator, outbox, clock, connect):
    room = await coordinator.create_room(password="abc123")
    await connect("a")
    await coordinator.join_room("a", room.room_id)
    nonce = outbox.last("a", "password-challenge")["nonce"]

    clock.advance(301)
    with pytest.raises(ChallengeExpired):
        await coordinator.submit_proof("a", compute_proof("abc123", nonce))
    assert room.members == set()


async def test_proof_for_a_room_that_expired_meanwhile(coordinator, outbox, clock, connect):
    room = await coordinator.create_room(password="abc123", ttl=60)
    await connect("a")
    await coordinator.join_room("a", room.room_id)
    nonce = outbox.last("a", "password-challenge")["nonce"]

    clock.advance(61)
    with pytest.raises(Expired):
        await coordinator.submit_proof("a", compute_proof("abc123", nonce))
    assert room.room_id not in coordinator.rooms


async def test_join_unknown_room(coordinator, connect):
    await connect("a")
    with pytest.raises(NotFound):
        await coordinator.join_room("a", "ZZZZZZZZZ")


async def test_disconnect_removes_room_files(coordinator, outbox, connect):
    room = await coordinator.create_room()
    await connect("a", "b")
    await coordinator.join_room("a", room.room_id, identity=ALICE)
    await coordinator.join_room("b", room.room_id, identity=BOB)

    record = await coordinator.share_file("a", "notes.txt", 1200, type="text/plain")
    assert record.room_id == room.room_id
    assert outbox.last("b", "file-available")["fileId"] == record.file_id
    # Room scope includes the sharer.
    assert outbox.last("a", "file-available")["fileId"] == record.file_id
    assert outbox.last("a", "file-shared-confirmation") == {
        "fileId": record.file_id,
        "originalName": "notes.txt",
    }

    await coordinator.disconnect("a")

    assert outbox.last("b", "peer-left-room") == {"peerId": "a", "filesRemoved": [record.file_id]}
    assert outbox.last("b", "files-list") == []
    assert coordinator.catalog.files(room.room_id) == []
    assert "a" not in coordinator.peers
    assert room.members == {"b"}
    assert room.activity_log[-1].action == "disconnected"


async def test_leave_returns_peer_to_global_scope(coordinator, outbox, connect):
    room = await coordinator.create_room()
    await connect("a", "b", "c")
    await coordinator.share_file("c", "global.iso", 5000)
    await coordinator.join_room("a", room.room_id)
    await coordinator.join_room("b", room.room_id)
    outbox.clear()

    await coordinator.leave_room("a", room.room_id)

    assert coordinator.peers.get("a").room_id is None
    assert [f["name"] for f in outbox.last("a", "files-list")] == ["global.iso"]
    assert [p["id"] for p in outbox.last("a", "peers-list")] == ["c"]
    assert outbox.last("b", "peer-left-room") == {"peerId": "a", "filesRemoved": []}


async def test_leave_of_a_room_the_peer_is_not_in_is_ignored(coordinator, outbox, connect):
    room = await coordinator.create_room()
    await connect("a")
    outbox.clear()

    await coordinator.leave_room("a", room.room_id)

    assert outbox.messages == []


async def test_last_member_leaving_deletes_the_room(coordinator, connect):
    room = await coordinator.create_room()
    await connect("a")
    await coordinator.join_room("a", room.room_id)

    await coordinator.leave_room("a", room.room_id)

    assert room.room_id not in coordinator.rooms


async def test_joining_another_room_leaves_the_first(coordinator, outbox, connect):
    first = await coordinator.create_room()
    second = await coordinator.create_room()
    await connect("a", "b")
    await coordinator.join_room("a", first.room_id)
    await coordinator.join_room("b", first.room_id)

    await coordinator.join_room("a", second.room_id)

    assert first.members == {"b"}
    assert second.members == {"a"}
    assert outbox.last("b", "peer-left-room")["peerId"] == "a"


async def test_rejoining_resends_the_snapshot_only(coordinator, outbox, connect):
    room = await coordinator.create_room()
    await connect("a", "b")
    await coordinator.join_room("a", room.room_id)
    await coordinator.join_room("b", room.room_id)
    outbox.clear()

    await coordinator.join_room("b", room.room_id)

    assert outbox.last("b", "room-joined")["roomId"] == room.room_id
    assert outbox.data("a", "peer-joined-room") == []
    assert room.members == {"a", "b"}


async def test_catalog_scopes_are_isolated(coordinator, outbox, connect):
    room = await coordinator.create_room()
    await connect("a", "b", "c")
    await coordinator.join_room("b", room.room_id)
    outbox.clear()

    record = await coordinator.share_file("a", "global.txt", 10)

    assert record.room_id is None
    assert outbox.last("c", "file-available")["fileId"] == record.file_id
    assert outbox.data("b", "file-available") == []
    # Global announcements skip the sharer.
    assert outbox.data("a", "file-available") == []


async def test_global_files_persist_while_owner_is_in_a_room(coordinator, connect):
    room = await coordinator.create_room()
    await connect("a", "c")
    record = await coordinator.share_file("a", "global.txt", 10)

    await coordinator.join_room("a", room.room_id)

    assert [r.file_id for r in coordinator.catalog.files(None)] == [record.file_id]


async def test_disconnect_drops_global_files(coordinator, outbox, connect):
    await connect("a", "c")
    await coordinator.share_file("a", "global.txt", 10)

    await coordinator.disconnect("a")

    assert coordinator.catalog.files(None) == []
    assert outbox.last("c", "peer-left") == {"id": "a"}
    assert outbox.last("c", "files-list") == []


async def test_only_the_owner_can_unshare(coordinator, outbox, connect):
    room = await coordinator.create_room()
    await connect("a", "b")
    await coordinator.join_room("a", room.room_id)
    await coordinator.join_room("b", room.room_id)
    record = await coordinator.share_file("a", "notes.txt", 10)
    outbox.clear()

    assert not await coordinator.unshare_file("b", record.file_id, room.room_id)
    assert outbox.messages == []

    assert await coordinator.unshare_file("a", record.file_id, room.room_id)
    assert outbox.events("b") == [
        ("file-removed", {"fileId": record.file_id, "roomId": room.room_id}),
        ("files-list", []),
    ]
    assert coordinator.peers.get("a").room_file_ids == []
    assert room.activity_log[-1].action == "unshared"


async def test_same_name_same_instant_gets_distinct_ids(coordinator, connect):
    await connect("a")
    first = await coordinator.share_file("a", "x.bin", 1)
    second = await coordinator.share_file("a", "x.bin", 1)

    assert first.file_id != second.file_id
    assert second.file_id == f"{first.file_id}-1"


async def test_file_expiry_sweep(coordinator, outbox, clock, connect):
    await connect("a", "c")
    record = await coordinator.share_file("a", "short.txt", 10, expires_at=clock.now + 30)

    clock.advance(29)
    assert await coordinator.sweep_files() == 0
    clock.advance(1)
    assert await coordinator.sweep_files() == 1

    assert outbox.last("c", "file-removed") == {"fileId": record.file_id, "roomId": None}
    assert coordinator.peers.get("a").global_file_ids == []


async def test_room_sweep_expires_rooms_with_members(coordinator, outbox, clock, connect):
    room = await coordinator.create_room(ttl=60)
    await connect("a")
    await coordinator.join_room("a", room.room_id)

    clock.advance(61)
    assert await coordinator.sweep_rooms() == 1

    assert room.room_id not in coordinator.rooms
    assert outbox.last("a", "room-expired") == {"roomId": room.room_id}
    assert coordinator.peers.get("a").room_id is None


async def test_room_sweep_removes_rooms_nobody_joined(coordinator, clock):
    room = await coordinator.create_room()

    clock.advance(149)
    assert await coordinator.sweep_rooms() == 0
    clock.advance(1)
    assert await coordinator.sweep_rooms() == 1
    assert room.room_id not in coordinator.rooms


async def test_empty_room_is_gone_within_one_sweep_interval(coordinator, clock):
    # Sweeps every ROOM_SWEEP_INTERVAL / 2; the worst case is a sweep just before the grace ends.
    room = await coordinator.create_room()
    deadline = room.created_at + ROOM_SWEEP_INTERVAL

    clock.advance(ROOM_SWEEP_INTERVAL / 2 - 1)
    await coordinator.sweep_rooms()
    assert room.room_id in coordinator.rooms

    clock.advance(ROOM_SWEEP_INTERVAL / 2)
    await coordinator.sweep_rooms()
    assert clock.now <= deadline
    assert room.room_id not in coordinator.rooms
    with pytest.raises(NotFound):
        await coordinator.get_room_info(room.room_id)


async def test_signals_are_forwarded_with_sender_id(coordinator, outbox, connect):
    from signaling.relay import SignalKind

    await connect("a", "b")
    offer = {"type": "offer", "sdp": "v=0"}

    assert await coordinator.relay_signal("a", SignalKind.OFFER, offer, "b")
    assert outbox.last("b", "offer") == {"payload": offer, "fromPeerId": "a"}
    assert not await coordinator.relay_signal("a", SignalKind.ANSWER, offer, "gone")


async def test_stop_clears_all_state(coordinator, connect):
    await coordinator.start()
    await coordinator.create_room()
    await connect("a")

    await coordinator.stop()

    assert coordinator.stats() == {"peers": 0, "rooms": 0, "challenges": 0}


def _assert_consistent(coordinator):
    for peer in coordinator.peers:
        if peer.room_id is not None:
            room = coordinator.rooms.get(peer.room_id)
            assert room is not None
            assert peer.peer_id in room.members
    for room in coordinator.rooms:
        for member in room.members:
            peer = coordinator.peers.get(member)
            assert peer is not None
            assert peer.room_id == room.room_id
        for record in room.files.values():
            assert record.owner_peer_id in room.members
            assert record.room_id == room.room_id


async def test_membership_stays_consistent_under_random_operations(coordinator, clock, connect):
    rng = random.Random(1234)
    peer_ids = [f"p{n}" for n in range(6)]
    await connect(*peer_ids)
    room_ids: list[str] = []
    ops = ["create", "join", "join", "leave", "share", "reconnect", "tick", "sweep"]

    for _ in range(400):
        op = rng.choice(ops)
        peer_id = rng.choice(peer_ids)
        try:
            if op == "create":
                room = await coordinator.create_room(ttl=rng.choice([None, 30, 120]))
                room_ids.append(room.room_id)
            elif op == "join" and room_ids:
                await coordinator.join_room(peer_id, rng.choice(room_ids))
            elif op == "leave":
                peer = coordinator.peers.get(peer_id)
                if peer.room_id is not None:
                    await coordinator.leave_room(peer_id, peer.room_id)
            elif op == "share":
                await coordinator.share_file(peer_id, f"f{rng.randint(0, 99)}.bin", rng.randint(0, 10_000))
            elif op == "reconnect":
                await coordinator.disconnect(peer_id)
                await coordinator.connect(peer_id)
            elif op == "tick":
                clock.advance(rng.choice([1, 10, 45]))
            elif op == "sweep":
                await coordinator.sweep_rooms()
                assert coordinator.rooms.expired() == []
        except NotFound:
            pass
        _assert_consistent(coordinator)
