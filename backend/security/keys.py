"""
Key layers a peer holds while sharing.

- identity: Ed25519 signing key, created once per client (IdentityService)
- room: PBKDF2-derived shared key, computed on entering a room, dropped on leaving
- session: random key per transfer, created when it starts, dropped when it ends

Sealing applies the session layer first, then the room layer when present.
"""

import logging
import time
from enum import Enum

from pydantic import BaseModel, Field

from security.crypto import (
    decrypt_chunk,
    derive_room_key,
    encrypt_chunk,
    generate_session_key,
)
from security.identity import IdentityService

logger = logging.getLogger(__name__)


class KeyLayer(str, Enum):
    SESSION = "session"
    ROOM = "room"
    IDENTITY = "identity"


class SessionKey(BaseModel):
    transfer_id: str
    key: bytes = Field(repr=False)
    created_at: float = Field(default_factory=time.time)


class RoomKey(BaseModel):
    room_id: str
    key: bytes = Field(repr=False)
    password_protected: bool = False


class KeyRing:
    """All keys currently live for one peer."""

    def __init__(self, identity: IdentityService | None = None) -> None:
        self.identity = identity
        self.room_key: RoomKey | None = None
        self._sessions: dict[str, SessionKey] = {}

    @property
    def layers(self) -> list[KeyLayer]:
        active = []
        if self._sessions:
            active.append(KeyLayer.SESSION)
        if self.room_key is not None:
            active.append(KeyLayer.ROOM)
        if self.identity is not None:
            active.append(KeyLayer.IDENTITY)
        return active

    def enter_room(self, room_id: str, password: str | None = None) -> RoomKey:
        self.room_key = RoomKey(
            room_id=room_id,
            key=derive_room_key(room_id, password),
            password_protected=bool(password),
        )
        logger.debug(f"Derived room key for {room_id}")
        return self.room_key

    def leave_room(self) -> None:
        self.room_key = None

    def open_session(self, transfer_id: str) -> SessionKey:
        session = SessionKey(transfer_id=transfer_id, key=generate_session_key())
        self._sessions[transfer_id] = session
        return session

    def session(self, transfer_id: str) -> SessionKey | None:
        return self._sessions.get(transfer_id)

    def close_session(self, transfer_id: str) -> None:
        self._sessions.pop(transfer_id, None)

    def seal(self, transfer_id: str, data: bytes) -> bytes:
        session = self._sessions.get(transfer_id)
        if session is None:
            raise KeyError(f"No session key for transfer {transfer_id}")
        sealed = encrypt_chunk(session.key, data)
        if self.room_key is not None:
            sealed = encrypt_chunk(self.room_key.key, sealed)
        return sealed

    def open(self, transfer_id: str, data: bytes) -> bytes:
        session = self._sessions.get(transfer_id)
        if session is None:
            raise KeyError(f"No session key for transfer {transfer_id}")
        if self.room_key is not None:
            data = decrypt_chunk(self.room_key.key, data)
        return decrypt_chunk(session.key, data)

    def sign(self, data: bytes) -> bytes:
        if self.identity is None:
            raise RuntimeError("No identity key loaded")
        return self.identity.sign(data)
