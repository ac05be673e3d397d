"""Error taxonomy shared by the coordinator and its HTTP/WebSocket surface."""


class CoordinatorError(Exception):
    """Base class for errors reported back to the requesting peer."""

    reason = "error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"reason": self.reason, "error": self.message}


class NotFound(CoordinatorError):
    reason = "not_found"
    default_message = "Room not found"


class Expired(NotFound):
    """A room or challenge past its TTL. Callers treating it as NotFound stay correct."""

    reason = "expired"
    default_message = "Room expired"


class InvalidPassword(CoordinatorError):
    reason = "invalid_password"
    default_message = "Invalid password"


class ChallengeExpired(CoordinatorError):
    reason = "challenge_expired"
    default_message = "No challenge found"


class ProtocolError(CoordinatorError):
    """A client message that does not match any known message shape."""

    reason = "protocol_error"
    default_message = "Malformed message"
