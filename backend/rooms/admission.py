"""
Password gate for protected rooms.

Two-step handshake: the coordinator issues a random nonce, the peer answers
with sha256(sha256(password) || nonce). A challenge is single use and expires
after CHALLENGE_TIMEOUT. This authenticates knowledge of the password without
sending it, but it is not a zero-knowledge proof.
"""

import logging
import time
from typing import Callable

from config import CHALLENGE_TIMEOUT
from errors import ChallengeExpired
from peers.models import Identity
from rooms.models import AdmissionChallenge
from security.crypto import generate_challenge, verify_proof

logger = logging.getLogger(__name__)


class AdmissionProtocol:
    """Holds at most one live challenge per peer."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        timeout: float = CHALLENGE_TIMEOUT,
    ) -> None:
        self._challenges: dict[str, AdmissionChallenge] = {}
        self._clock = clock
        self._timeout = timeout

    def __len__(self) -> int:
        return len(self._challenges)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._challenges

    def issue(
        self,
        peer_id: str,
        room_id: str,
        identity: Identity | None = None,
        public_key: str | None = None,
    ) -> AdmissionChallenge:
        """Create a fresh challenge, replacing any outstanding one for the peer."""
        challenge = AdmissionChallenge(
            peer_id=peer_id,
            room_id=room_id,
            nonce=generate_challenge(),
            issued_at=self._clock(),
            pending_identity=identity,
            pending_public_key=public_key,
        )
        if peer_id in self._challenges:
            logger.debug(f"Replacing outstanding challenge for {peer_id}")
        self._challenges[peer_id] = challenge
        return challenge

    def consume(self, peer_id: str) -> AdmissionChallenge:
        """Remove and return the peer's challenge; stale or missing ones raise."""
        challenge = self._challenges.pop(peer_id, None)
        if challenge is None:
            raise ChallengeExpired()
        if self._is_stale(challenge, self._clock()):
            raise ChallengeExpired("Challenge expired")
        return challenge

    @staticmethod
    def verify(challenge: AdmissionChallenge, password_hash: str, proof: str) -> bool:
        return verify_proof(proof, password_hash, challenge.nonce)

    def discard(self, peer_id: str) -> None:
        self._challenges.pop(peer_id, None)

    def sweep(self) -> int:
        """Drop abandoned challenges. Returns how many were removed."""
        now = self._clock()
        stale = [
            peer_id for peer_id, challenge in self._challenges.items()
            if self._is_stale(challenge, now)
        ]
        for peer_id in stale:
            del self._challenges[peer_id]
        if stale:
            logger.info(f"Swept {len(stale)} stale admission challenge(s)")
        return len(stale)

    def clear(self) -> None:
        self._challenges.clear()

    def _is_stale(self, challenge: AdmissionChallenge, now: float) -> bool:
        return now - challenge.issued_at > self._timeout
