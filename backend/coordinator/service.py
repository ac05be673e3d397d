"""
Coordinator service.

Owns the peer, room, admission and catalog registries and is the single
place that mutates them. Every mutating operation runs under one asyncio
lock, so joins, leaves, disconnects and the periodic sweeps never interleave
partially. Outbound delivery goes through a non-blocking outbox, which keeps
the critical sections free of network waits.
"""

import asyncio
import logging
import time
from typing import Any, Callable

from catalog.broadcaster import FileCatalog
from catalog.models import FileRecord, make_file_id
from config import (
    CHALLENGE_SWEEP_INTERVAL,
    DEFAULT_FILE_TYPE,
    FILE_SWEEP_INTERVAL,
    ROOM_SWEEP_INTERVAL,
)
from errors import Expired, InvalidPassword, NotFound
from peers.models import Identity, Peer, PeerSummary
from peers.registry import PeerRegistry
from rooms.admission import AdmissionProtocol
from rooms.models import Room, RoomAction, RoomInfo, RoomSnapshot
from rooms.registry import RoomRegistry
from security.crypto import verify_password
from signaling.relay import SignalingRelay, SignalKind
from wire import Outbox, ServerEvent, to_wire

logger = logging.getLogger(__name__)


class CoordinatorService:
    """Room, membership and catalog coordination for all connected peers."""

    def __init__(
        self,
        outbox: Outbox,
        clock: Callable[[], float] = time.time,
        room_sweep_interval: float = ROOM_SWEEP_INTERVAL,
        challenge_sweep_interval: float = CHALLENGE_SWEEP_INTERVAL,
        file_sweep_interval: float = FILE_SWEEP_INTERVAL,
    ) -> None:
        self._outbox = outbox
        self._clock = clock
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []
        # Grace plus one sweep period must not exceed room_sweep_interval, so an
        # empty room never outlives it.
        self._room_sweep_interval = room_sweep_interval / 2
        self._challenge_sweep_interval = challenge_sweep_interval
        self._file_sweep_interval = file_sweep_interval

        self.peers = PeerRegistry()
        self.rooms = RoomRegistry(clock=clock, empty_grace=room_sweep_interval / 2)
        self.admission = AdmissionProtocol(clock=clock)
        self.catalog = FileCatalog(self.peers, self.rooms, outbox, clock=clock)
        self.relay = SignalingRelay(self.peers, outbox)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start the recurring sweeps."""
        self._lock = asyncio.Lock()
        self._tasks = [
            asyncio.create_task(self._periodic(self._room_sweep_interval, self.sweep_rooms)),
            asyncio.create_task(self._periodic(self._challenge_sweep_interval, self.sweep_challenges)),
            asyncio.create_task(self._periodic(self._file_sweep_interval, self.sweep_files)),
        ]
        logger.info("Coordinator started")

    async def stop(self) -> None:
        """Cancel the sweeps and drop all in-memory state."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        self.admission.clear()
        self.catalog.clear()
        self.rooms.clear()
        self.peers.clear()
        logger.info("Coordinator stopped")

    async def _periodic(self, interval: float, job) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception as e:
                logger.error(f"Sweep {job.__name__} failed: {e}", exc_info=True)

    def stats(self) -> dict:
        return {
            "peers": len(self.peers),
            "rooms": len(self.rooms),
            "challenges": len(self.admission),
        }

    # --- Connections ---

    async def connect(self, peer_id: str) -> Peer:
        """Register a new connection and greet it with the global view."""
        async with self._lock:
            peer = self.peers.register(peer_id)
            self._send(peer_id, ServerEvent.CONNECTED, {"peerId": peer_id})
            self._send(peer_id, ServerEvent.PEERS_LIST, self._global_summaries(exclude=peer_id))
            self.catalog.send_catalog(peer_id, None)
            for other in self.peers.global_peers(exclude=peer_id):
                self._send(other.peer_id, ServerEvent.PEER_JOINED, {"id": peer_id})
        logger.info(f"Peer connected: {peer_id}")
        return peer

    async def disconnect(self, peer_id: str) -> None:
        """Cascade cleanup for a closed connection."""
        async with self._lock:
            peer = self.peers.get(peer_id)
            if peer is None:
                return
            self.admission.discard(peer_id)
            if peer.room_id is not None:
                self._depart_room(peer, RoomAction.DISCONNECTED)
            removed = self.catalog.drop_owner(peer_id)
            self.peers.unregister(peer_id)

            for other in self.peers.global_peers():
                self._send(other.peer_id, ServerEvent.PEER_LEFT, {"id": peer_id})
            self.catalog.broadcast_catalog(None)
        logger.info(f"Peer disconnected: {peer_id} ({len(removed)} global file(s) removed)")

    # --- Rooms ---

    async def create_room(self, password: str | None = None, ttl: float | None = None) -> Room:
        async with self._lock:
            return self.rooms.create(password=password, ttl=ttl)

    async def get_room_info(self, room_id: str) -> RoomInfo:
        """Public room data. An expired room is torn down before Expired is raised."""
        async with self._lock:
            return RoomInfo.of(self._servable_room(room_id))

    async def join_room(
        self,
        peer_id: str,
        room_id: str,
        password: str | None = None,
        identity: Identity | None = None,
        public_key: str | None = None,
    ) -> bool:
        """
        Join a room. For password rooms without a password this issues a
        challenge instead and returns False; the join completes in submit_proof.
        """
        async with self._lock:
            peer = self.peers.require(peer_id)
            room = self._servable_room(room_id)

            if room.requires_password:
                if password is None:
                    challenge = self.admission.issue(peer_id, room_id, identity, public_key)
                    self._send(peer_id, ServerEvent.PASSWORD_CHALLENGE, {"nonce": challenge.nonce})
                    logger.info(f"Challenge issued to {peer_id} for room {room_id}")
                    return False
                if not verify_password(password, room.password_hash):
                    logger.info(f"Peer {peer_id} gave a wrong password for room {room_id}")
                    raise InvalidPassword()

            self._admit(peer, room, identity, public_key)
            return True

    async def submit_proof(self, peer_id: str, proof: str) -> None:
        """Second step of the password gate. The challenge is consumed either way."""
        async with self._lock:
            peer = self.peers.require(peer_id)
            challenge = self.admission.consume(peer_id)
            room = self._servable_room(challenge.room_id)

            if room.requires_password and not self.admission.verify(
                challenge, room.password_hash, proof
            ):
                logger.info(f"Peer {peer_id} failed the challenge for room {room.room_id}")
                raise InvalidPassword()

            self._admit(peer, room, challenge.pending_identity, challenge.pending_public_key)
            logger.info(f"Peer {peer_id} joined room {room.room_id} (password verified)")

    async def leave_room(self, peer_id: str, room_id: str) -> None:
        """Return a peer to the global scope."""
        async with self._lock:
            peer = self.peers.get(peer_id)
            if peer is None or peer.room_id != room_id:
                logger.debug(f"Ignoring leave of {room_id} from {peer_id}: not a member")
                return
            self._depart_room(peer, RoomAction.LEFT)
            self.catalog.send_catalog(peer_id, None)
            self._send(peer_id, ServerEvent.PEERS_LIST, self._global_summaries(exclude=peer_id))
        logger.info(f"Peer {peer_id} left room {room_id}")

    # --- Catalog ---

    async def share_file(
        self,
        peer_id: str,
        name: str,
        size: int,
        type: str | None = None,
        expires_at: float | None = None,
    ) -> FileRecord:
        """Announce a file in the sharer's current scope."""
        async with self._lock:
            peer = self.peers.require(peer_id)
            now = self._clock()
            room = self.rooms.get(peer.room_id) if peer.room_id else None
            if peer.room_id is not None and room is None:
                raise NotFound()

            record = FileRecord(
                file_id=self._unique_file_id(peer_id, now, name),
                name=name,
                size=size,
                type=type or DEFAULT_FILE_TYPE,
                owner_peer_id=peer_id,
                owner_identity=peer.identity,
                room_id=peer.room_id,
                shared_at=now,
                expires_at=expires_at,
            )
            if room is not None:
                peer.room_file_ids.append(record.file_id)
                self.rooms.log_activity(
                    room, peer_id, RoomAction.UPLOADED, peer.display_name, file_name=name
                )
            else:
                peer.global_file_ids.append(record.file_id)

            self.catalog.announce(record)
            self._send(
                peer_id,
                ServerEvent.FILE_SHARED_CONFIRMATION,
                {"fileId": record.file_id, "originalName": name},
            )
            return record

    async def unshare_file(self, peer_id: str, file_id: str, room_id: str | None = None) -> bool:
        async with self._lock:
            record = self.catalog.get(file_id, room_id)
            if record is None:
                logger.debug(f"Unshare of unknown file {file_id} from {peer_id}")
                return False
            if record.owner_peer_id != peer_id:
                logger.warning(f"Peer {peer_id} tried to unshare {file_id} owned by {record.owner_peer_id}")
                return False
            self._retract(record)
            return True

    # --- Signaling ---

    async def relay_signal(
        self, peer_id: str, kind: SignalKind, payload: Any, target_peer_id: str
    ) -> bool:
        # Stateless forwarding; reads the registry only.
        return self.relay.relay(kind, payload, peer_id, target_peer_id)

    # --- Sweeps ---

    async def sweep_rooms(self) -> int:
        """Tear down expired rooms and rooms left empty past the grace period."""
        async with self._lock:
            expired = self.rooms.expired()
            for room in expired:
                self._expire_room(room)
            abandoned = self.rooms.abandoned()
            for room in abandoned:
                self.rooms.remove(room)
        if expired or abandoned:
            logger.info(f"Room sweep: {len(expired)} expired, {len(abandoned)} abandoned")
        return len(expired) + len(abandoned)

    async def sweep_challenges(self) -> int:
        async with self._lock:
            return self.admission.sweep()

    async def sweep_files(self) -> int:
        async with self._lock:
            expired = self.catalog.expired()
            for record in expired:
                self._retract(record)
        return len(expired)

    # --- Internals (caller holds the lock) ---

    def _send(self, peer_id: str, event: ServerEvent, data: Any) -> bool:
        return self._outbox.send(peer_id, event, to_wire(data))

    def _global_summaries(self, exclude: str | None = None) -> list[PeerSummary]:
        return [PeerSummary.of(p) for p in self.peers.global_peers(exclude=exclude)]

    def _unique_file_id(self, peer_id: str, now: float, name: str) -> str:
        base = make_file_id(peer_id, now, name)
        file_id, n = base, 1
        while self.catalog.contains(file_id):
            file_id = f"{base}-{n}"
            n += 1
        return file_id

    def _servable_room(self, room_id: str) -> Room:
        try:
            return self.rooms.lookup(room_id)
        except Expired:
            room = self.rooms.get(room_id)
            if room is not None:
                self._expire_room(room)
            raise

    def _admit(
        self,
        peer: Peer,
        room: Room,
        identity: Identity | None,
        public_key: str | None,
    ) -> None:
        if peer.room_id == room.room_id:
            # Already a member: resend the snapshot, nothing changes.
            self._send(peer.peer_id, ServerEvent.ROOM_JOINED, self._snapshot(room))
            return
        if peer.room_id is not None:
            self._depart_room(peer, RoomAction.LEFT)

        if identity is not None:
            peer.identity = identity
        if public_key:
            peer.public_key = public_key
        self.rooms.add_member(room, peer, identity, public_key)
        peer.room_id = room.room_id

        self._send(peer.peer_id, ServerEvent.ROOM_JOINED, self._snapshot(room))
        joined = {
            "peerId": peer.peer_id,
            "identity": to_wire(peer.identity),
            "publicKey": peer.public_key,
        }
        for member in room.members:
            if member != peer.peer_id:
                self._send(member, ServerEvent.PEER_JOINED_ROOM, joined)
        logger.info(f"Peer {peer.peer_id} joined room {room.room_id} ({len(room.members)} member(s))")

    def _snapshot(self, room: Room) -> RoomSnapshot:
        members = [self.peers.get(m) for m in room.members]
        return RoomSnapshot(
            room_id=room.room_id,
            peers=[PeerSummary.of(p) for p in members if p is not None],
            files=self.catalog.files(room.room_id),
            public_keys=dict(room.public_keys),
            activity=list(room.activity_log),
        )

    def _depart_room(self, peer: Peer, action: RoomAction) -> list[str]:
        """Remove a peer from its room, notify the rest, delete the room if empty."""
        room = self.rooms.get(peer.room_id) if peer.room_id else None
        peer.room_id = None
        peer.room_file_ids = []
        if room is None:
            return []

        removed = self.rooms.remove_member(room, peer, action)
        for member in room.members:
            self._send(
                member,
                ServerEvent.PEER_LEFT_ROOM,
                {"peerId": peer.peer_id, "filesRemoved": removed},
            )
        self.catalog.broadcast_catalog(room.room_id)

        if not room.members:
            self.rooms.remove(room)
            logger.info(f"Room {room.room_id} deleted (empty)")
        return removed

    def _expire_room(self, room: Room) -> None:
        for member in list(room.members):
            self._send(member, ServerEvent.ROOM_EXPIRED, {"roomId": room.room_id})
            peer = self.peers.get(member)
            if peer is not None and peer.room_id == room.room_id:
                peer.room_id = None
                peer.room_file_ids = []
                self.catalog.send_catalog(member, None)
        room.members.clear()
        self.rooms.remove(room)
        logger.info(f"Room {room.room_id} expired and deleted")

    def _retract(self, record: FileRecord) -> None:
        self.catalog.retract(record.file_id, record.room_id)
        owner = self.peers.get(record.owner_peer_id)
        if owner is not None:
            for ids in (owner.global_file_ids, owner.room_file_ids):
                if record.file_id in ids:
                    ids.remove(record.file_id)
        if record.room_id is not None:
            room = self.rooms.get(record.room_id)
            if room is not None:
                self.rooms.log_activity(
                    room,
                    record.owner_peer_id,
                    RoomAction.UNSHARED,
                    owner.display_name if owner else None,
                    file_name=record.name,
                )
