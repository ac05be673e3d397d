"""
Client-to-coordinator WebSocket messages.

Every frame is a JSON envelope ``{"event": <name>, "data": {...}}``. The set
of accepted events is closed: the envelope is validated against a
discriminated union keyed on ``event``, and anything else is rejected.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError

from errors import ProtocolError
from peers.models import Identity
from wire import WireModel


# --- Payloads ---

class JoinRoomData(WireModel):
    room_id: str
    password: str | None = None
    identity: Identity | None = None
    public_key: str | None = None


class PasswordProofData(WireModel):
    proof: str


class LeaveRoomData(WireModel):
    room_id: str


class ShareFileData(WireModel):
    name: str = Field(min_length=1)
    size: int = Field(ge=0)
    type: str | None = None
    expires_at: float | None = None


class UnshareFileData(WireModel):
    file_id: str
    room_id: str | None = None


class SignalData(WireModel):
    target_peer_id: str
    # Older browser clients name the payload after the event.
    payload: Any = Field(
        default=None,
        validation_alias=AliasChoices("payload", "offer", "answer", "candidate"),
    )


# --- Envelopes ---

class JoinRoom(BaseModel):
    event: Literal["join-room"]
    data: JoinRoomData


class PasswordProof(BaseModel):
    event: Literal["password-proof"]
    data: PasswordProofData


class LeaveRoom(BaseModel):
    event: Literal["leave-room"]
    data: LeaveRoomData


class ShareFile(BaseModel):
    event: Literal["share-file"]
    data: ShareFileData


class UnshareFile(BaseModel):
    event: Literal["unshare-file"]
    data: UnshareFileData


class Offer(BaseModel):
    event: Literal["offer"]
    data: SignalData


class Answer(BaseModel):
    event: Literal["answer"]
    data: SignalData


class IceCandidate(BaseModel):
    event: Literal["ice-candidate"]
    data: SignalData


CLIENT_MESSAGE_TYPES = (
    JoinRoom,
    PasswordProof,
    LeaveRoom,
    ShareFile,
    UnshareFile,
    Offer,
    Answer,
    IceCandidate,
)

ClientMessage = Annotated[
    Union[
        JoinRoom,
        PasswordProof,
        LeaveRoom,
        ShareFile,
        UnshareFile,
        Offer,
        Answer,
        IceCandidate,
    ],
    Field(discriminator="event"),
]

_client_message = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> BaseModel:
    """Validate one frame; raises ProtocolError on anything unrecognised."""
    try:
        return _client_message.validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(f"Malformed message: {e.error_count()} error(s)") from e
