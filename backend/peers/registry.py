"""Registry of every peer currently connected to the coordinator."""

import logging
from typing import Iterator

from errors import NotFound
from peers.models import Peer

logger = logging.getLogger(__name__)


class PeerRegistry:
    """
    Owns the Peer records. It does not cascade on its own: room and catalog
    cleanup for a departing peer is driven by the coordinator, which holds
    the lock spanning all registries.
    """

    def __init__(self) -> None:
        self._peers: dict[str, Peer] = {}

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    def __iter__(self) -> Iterator[Peer]:
        return iter(list(self._peers.values()))

    def register(self, peer_id: str) -> Peer:
        if peer_id in self._peers:
            raise ValueError(f"Peer {peer_id} is already registered")
        peer = Peer(peer_id=peer_id)
        self._peers[peer_id] = peer
        logger.debug(f"Registered peer {peer_id} (total: {len(self._peers)})")
        return peer

    def unregister(self, peer_id: str) -> Peer | None:
        peer = self._peers.pop(peer_id, None)
        if peer:
            logger.debug(f"Unregistered peer {peer_id} (total: {len(self._peers)})")
        return peer

    def get(self, peer_id: str) -> Peer | None:
        return self._peers.get(peer_id)

    def require(self, peer_id: str) -> Peer:
        peer = self._peers.get(peer_id)
        if peer is None:
            raise NotFound(f"Peer {peer_id} is not connected")
        return peer

    def global_peers(self, exclude: str | None = None) -> list[Peer]:
        """Peers not inside any room."""
        return [
            p for p in self._peers.values()
            if p.room_id is None and p.peer_id != exclude
        ]

    def clear(self) -> None:
        self._peers.clear()
