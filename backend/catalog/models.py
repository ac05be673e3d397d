"""Pydantic models for shared-file announcements."""

from pydantic import Field

from peers.models import Identity
from wire import WireModel


class FileRecord(WireModel):
    """A file a peer offers to its scope. The bytes never touch the coordinator."""
    file_id: str
    name: str
    size: int = Field(ge=0)
    type: str
    owner_peer_id: str
    owner_identity: Identity | None = None
    room_id: str | None = None  # None means global scope
    shared_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def make_file_id(peer_id: str, timestamp: float, name: str) -> str:
    return f"{peer_id}-{int(timestamp * 1000)}-{name}"
