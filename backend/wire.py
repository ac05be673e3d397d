"""Shared wire vocabulary: the pydantic base, server event names, outbox."""

from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ServerEvent(str, Enum):
    """Every event the coordinator sends to a peer."""
    CONNECTED = "connected"
    PEERS_LIST = "peers-list"
    FILES_LIST = "files-list"
    PEER_JOINED = "peer-joined"
    PEER_LEFT = "peer-left"
    PASSWORD_CHALLENGE = "password-challenge"
    ROOM_JOINED = "room-joined"
    ROOM_ERROR = "room-error"
    PEER_JOINED_ROOM = "peer-joined-room"
    PEER_LEFT_ROOM = "peer-left-room"
    ROOM_EXPIRED = "room-expired"
    FILE_AVAILABLE = "file-available"
    FILE_REMOVED = "file-removed"
    FILE_SHARED_CONFIRMATION = "file-shared-confirmation"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    ERROR = "error"


class Outbox(Protocol):
    """Non-blocking, at-most-once delivery to a connected peer."""

    def send(self, peer_id: str, event: str, data: Any) -> bool:
        """Queue a message; False when the peer is not connected."""
        ...


class WireModel(BaseModel):
    """Model serialized with camelCase keys; accepts either spelling on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def to_wire(data: Any) -> Any:
    """Convert models (or lists/dicts of models) into JSON-ready structures."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, (list, tuple)):
        return [to_wire(item) for item in data]
    if isinstance(data, dict):
        return {key: to_wire(value) for key, value in data.items()}
    return data
