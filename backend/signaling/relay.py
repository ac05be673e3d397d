"""Store-nothing forwarding of connection-negotiation messages between peers."""

import logging
from enum import Enum
from typing import Any

from peers.registry import PeerRegistry
from wire import Outbox, ServerEvent

logger = logging.getLogger(__name__)


class SignalKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


_EVENTS = {
    SignalKind.OFFER: ServerEvent.OFFER,
    SignalKind.ANSWER: ServerEvent.ANSWER,
    SignalKind.ICE_CANDIDATE: ServerEvent.ICE_CANDIDATE,
}


class SignalingRelay:
    """
    Forwards opaque payloads tagged with the sender's id. Never buffers or
    retries: a target that is gone just means the message is dropped, and the
    caller notices through its own timeout.
    """

    def __init__(self, peers: PeerRegistry, outbox: Outbox) -> None:
        self._peers = peers
        self._outbox = outbox

    def relay(
        self,
        kind: SignalKind,
        payload: Any,
        from_peer_id: str,
        target_peer_id: str,
    ) -> bool:
        if target_peer_id not in self._peers:
            logger.warning(
                f"Dropping {kind.value} from {from_peer_id}: "
                f"target {target_peer_id} is not connected"
            )
            return False

        delivered = self._outbox.send(
            target_peer_id,
            _EVENTS[kind],
            {"payload": payload, "fromPeerId": from_peer_id},
        )
        if not delivered:
            logger.warning(
                f"Dropping {kind.value} from {from_peer_id}: "
                f"no open connection to {target_peer_id}"
            )
        return delivered
