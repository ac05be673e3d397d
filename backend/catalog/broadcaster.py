"""
File catalog broadcaster.

Keeps the global file map (room catalogs live on their Room) and publishes
availability changes to exactly the audience of a file's scope: the room's
members, or the peers that are not in any room.
"""

import logging
import time
from typing import Callable

from catalog.models import FileRecord
from peers.registry import PeerRegistry
from rooms.registry import RoomRegistry
from wire import Outbox, ServerEvent

logger = logging.getLogger(__name__)


class FileCatalog:
    """Scope-aware catalog of shared files."""

    def __init__(
        self,
        peers: PeerRegistry,
        rooms: RoomRegistry,
        outbox: Outbox,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._global: dict[str, FileRecord] = {}
        self._peers = peers
        self._rooms = rooms
        self._outbox = outbox
        self._clock = clock

    def _catalog(self, room_id: str | None) -> dict[str, FileRecord] | None:
        if room_id is None:
            return self._global
        room = self._rooms.get(room_id)
        return room.files if room else None

    def audience(self, room_id: str | None, exclude: str | None = None) -> list[str]:
        """Peer ids entitled to events for the given scope."""
        if room_id is None:
            return [p.peer_id for p in self._peers.global_peers(exclude=exclude)]
        room = self._rooms.get(room_id)
        if room is None:
            return []
        return [
            peer_id for peer_id in room.members
            if peer_id != exclude and peer_id in self._peers
        ]

    def files(self, room_id: str | None) -> list[FileRecord]:
        catalog = self._catalog(room_id)
        if catalog is None:
            return []
        return sorted(catalog.values(), key=lambda r: r.shared_at)

    def get(self, file_id: str, room_id: str | None) -> FileRecord | None:
        catalog = self._catalog(room_id)
        return catalog.get(file_id) if catalog is not None else None

    def contains(self, file_id: str) -> bool:
        if file_id in self._global:
            return True
        return any(file_id in room.files for room in self._rooms)

    def announce(self, record: FileRecord) -> bool:
        """Insert a record into its scope and tell that scope about it."""
        catalog = self._catalog(record.room_id)
        if catalog is None:
            logger.warning(f"Cannot announce {record.file_id}: room {record.room_id} is gone")
            return False
        catalog[record.file_id] = record

        # Room members all hear it, the owner included; globally the owner is skipped.
        exclude = record.owner_peer_id if record.room_id is None else None
        self._broadcast(record.room_id, ServerEvent.FILE_AVAILABLE, record.dump(), exclude=exclude)
        logger.info(
            f"File shared {'in room ' + record.room_id if record.room_id else 'globally'}: "
            f"{record.name} by {record.owner_peer_id}"
        )
        return True

    def retract(self, file_id: str, room_id: str | None) -> FileRecord | None:
        """
        Remove a record, announce the removal and then resend the full list so
        peers that missed the removal event still converge.
        """
        catalog = self._catalog(room_id)
        if catalog is None:
            return None
        record = catalog.pop(file_id, None)
        if record is None:
            return None

        self._broadcast(room_id, ServerEvent.FILE_REMOVED, {"fileId": file_id, "roomId": room_id})
        self.broadcast_catalog(room_id)
        logger.info(f"File {file_id} unshared {'in room ' + room_id if room_id else 'globally'}")
        return record

    def drop_owner(self, peer_id: str) -> list[str]:
        """Silently remove a departing peer's global files; returns their ids."""
        removed = [
            file_id for file_id, record in self._global.items()
            if record.owner_peer_id == peer_id
        ]
        for file_id in removed:
            del self._global[file_id]
        return removed

    def expired(self) -> list[FileRecord]:
        now = self._clock()
        records = [r for r in self._global.values() if r.is_expired(now)]
        for room in self._rooms:
            records.extend(r for r in room.files.values() if r.is_expired(now))
        return records

    def send_catalog(self, peer_id: str, room_id: str | None) -> bool:
        return self._outbox.send(
            peer_id, ServerEvent.FILES_LIST, [r.dump() for r in self.files(room_id)]
        )

    def broadcast_catalog(self, room_id: str | None, exclude: str | None = None) -> None:
        payload = [r.dump() for r in self.files(room_id)]
        self._broadcast(room_id, ServerEvent.FILES_LIST, payload, exclude=exclude)

    def _broadcast(
        self, room_id: str | None, event: ServerEvent, data, exclude: str | None = None
    ) -> None:
        for peer_id in self.audience(room_id, exclude=exclude):
            self._outbox.send(peer_id, event, data)

    def clear(self) -> None:
        self._global.clear()
