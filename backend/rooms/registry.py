"""Room registry: creation, lookup, membership bookkeeping and expiry checks."""

import logging
import time
from typing import Callable, Iterator

from config import ACTIVITY_LOG_LIMIT, ROOM_SWEEP_INTERVAL
from errors import Expired, NotFound
from peers.models import Identity, Peer
from rooms.models import ActivityEntry, Room, RoomAction
from security.crypto import generate_room_id, hash_password

logger = logging.getLogger(__name__)


class RoomRegistry:
    """
    In-memory map of live rooms.

    Every method is synchronous; the coordinator serializes calls so no
    operation can interleave partially with another on the same room.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = generate_room_id,
        empty_grace: float = ROOM_SWEEP_INTERVAL,
    ) -> None:
        self._rooms: dict[str, Room] = {}
        self._clock = clock
        self._id_factory = id_factory
        self._empty_grace = empty_grace

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def create(self, password: str | None = None, ttl: float | None = None) -> Room:
        """Create a room with a collision-checked id; ttl is in seconds."""
        room_id = self._id_factory()
        while room_id in self._rooms:
            room_id = self._id_factory()

        now = self._clock()
        room = Room(
            room_id=room_id,
            created_at=now,
            expires_at=now + ttl if ttl else None,
            password_hash=hash_password(password) if password else None,
            empty_since=now,
        )
        self._rooms[room_id] = room
        logger.info(
            f"Room {room_id} created "
            f"(password: {room.requires_password}, ttl: {ttl or 'none'})"
        )
        return room

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def lookup(self, room_id: str) -> Room:
        """
        Return a servable room. Raises NotFound when absent and Expired when
        past its expiry; the caller is responsible for tearing the expired room down.
        """
        room = self._rooms.get(room_id)
        if room is None:
            raise NotFound()
        if room.is_expired(self._clock()):
            raise Expired()
        return room

    def remove(self, room: Room) -> bool:
        """Delete the registry entry only if it still refers to this room."""
        if self._rooms.get(room.room_id) is room:
            del self._rooms[room.room_id]
            logger.info(f"Room {room.room_id} deleted")
            return True
        return False

    def add_member(self, room: Room, peer: Peer, identity: Identity | None, public_key: str | None) -> None:
        room.members.add(peer.peer_id)
        room.empty_since = None
        if public_key:
            room.public_keys[peer.peer_id] = public_key
        self.log_activity(
            room, peer.peer_id, RoomAction.JOINED,
            identity.display_name if identity else None,
        )

    def remove_member(self, room: Room, peer: Peer, action: RoomAction) -> list[str]:
        """Drop the peer and every file it owns in the room; returns removed file ids."""
        room.members.discard(peer.peer_id)
        room.public_keys.pop(peer.peer_id, None)
        removed = [
            file_id for file_id, record in room.files.items()
            if record.owner_peer_id == peer.peer_id
        ]
        for file_id in removed:
            del room.files[file_id]
        self.log_activity(room, peer.peer_id, action, peer.display_name)
        if not room.members:
            room.empty_since = self._clock()
        return removed

    def log_activity(
        self,
        room: Room,
        peer_id: str,
        action: RoomAction,
        display_name: str | None = None,
        file_name: str | None = None,
    ) -> None:
        room.activity_log.append(ActivityEntry(
            timestamp=self._clock(),
            peer_id=peer_id,
            identity=display_name or "Anonymous",
            action=action,
            file_name=file_name,
        ))
        if len(room.activity_log) > ACTIVITY_LOG_LIMIT:
            del room.activity_log[:-ACTIVITY_LOG_LIMIT]

    def expired(self) -> list[Room]:
        now = self._clock()
        return [room for room in self._rooms.values() if room.is_expired(now)]

    def abandoned(self) -> list[Room]:
        """Rooms that have had no members for at least the grace period."""
        now = self._clock()
        return [
            room for room in self._rooms.values()
            if not room.members
            and room.empty_since is not None
            and now - room.empty_since >= self._empty_grace
        ]

    def clear(self) -> None:
        self._rooms.clear()
