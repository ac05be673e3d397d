"""Pydantic models for connected peers."""

import time

from pydantic import AliasChoices, Field

from wire import WireModel


class Identity(WireModel):
    """Self-declared identity a peer presents when joining a room."""
    display_name: str = Field(min_length=1, max_length=64)
    short_hash: str = Field(
        pattern=r"^[0-9a-fA-F]{6}$",
        # Browser clients send the tag as "hash".
        validation_alias=AliasChoices("shortHash", "short_hash", "hash"),
        serialization_alias="shortHash",
    )
    full_identity: str | None = None


class Peer(WireModel):
    """A connection to the coordinator. Lives exactly as long as the socket."""
    peer_id: str
    room_id: str | None = None
    identity: Identity | None = None
    public_key: str | None = None
    global_file_ids: list[str] = Field(default_factory=list)
    room_file_ids: list[str] = Field(default_factory=list)
    connected_at: float = Field(default_factory=time.time)

    @property
    def display_name(self) -> str:
        return self.identity.display_name if self.identity else "Anonymous"


class PeerSummary(WireModel):
    """What other peers get to see about a peer."""
    id: str
    identity: Identity | None = None
    public_key: str | None = None

    @classmethod
    def of(cls, peer: Peer) -> "PeerSummary":
        return cls(id=peer.peer_id, identity=peer.identity, public_key=peer.public_key)
