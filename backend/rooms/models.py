"""Pydantic models for rooms and the admission handshake."""

from enum import Enum

from pydantic import Field

from catalog.models import FileRecord
from peers.models import Identity, PeerSummary
from wire import WireModel


class RoomAction(str, Enum):
    JOINED = "joined"
    LEFT = "left"
    DISCONNECTED = "disconnected"
    UPLOADED = "uploaded"
    UNSHARED = "unshared"


class ActivityEntry(WireModel):
    timestamp: float
    peer_id: str
    identity: str
    action: RoomAction
    file_name: str | None = None


class Room(WireModel):
    """An isolated namespace of peers and their files."""
    room_id: str
    created_at: float
    expires_at: float | None = None
    password_hash: str | None = Field(default=None, exclude=True)
    members: set[str] = Field(default_factory=set)
    files: dict[str, FileRecord] = Field(default_factory=dict)
    public_keys: dict[str, str] = Field(default_factory=dict)
    activity_log: list[ActivityEntry] = Field(default_factory=list)
    # Set while the room has no members; the sweep removes rooms left empty too long.
    empty_since: float | None = None

    @property
    def requires_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class RoomInfo(WireModel):
    """Public view of a room, safe to serve without authentication."""
    exists: bool = True
    room_id: str
    requires_password: bool
    member_count: int
    file_count: int
    created_at: float
    expires_at: float | None = None

    @classmethod
    def of(cls, room: Room) -> "RoomInfo":
        return cls(
            room_id=room.room_id,
            requires_password=room.requires_password,
            member_count=len(room.members),
            file_count=len(room.files),
            created_at=room.created_at,
            expires_at=room.expires_at,
        )


class RoomSnapshot(WireModel):
    """Everything a peer needs right after entering a room."""
    room_id: str
    peers: list[PeerSummary]
    files: list[FileRecord]
    public_keys: dict[str, str]
    activity: list[ActivityEntry] = Field(default_factory=list)


class AdmissionChallenge(WireModel):
    peer_id: str
    room_id: str
    nonce: str
    issued_at: float
    pending_identity: Identity | None = None
    pending_public_key: str | None = None
