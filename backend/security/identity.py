"""
Identity Service for a peer's display identity and long-term signing key.
"""

import base64
import logging
import random
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from peers.models import Identity
from security.crypto import generate_identity_hash

logger = logging.getLogger(__name__)

ADJECTIVES = [
    "Neon", "Cosmic", "Turbo", "Silent", "Electric", "Quantum",
    "Hidden", "Mystic", "Clever", "Swift", "Brave", "Pixel",
    "Sneaky", "Bold", "Lucky", "Happy", "Fierce", "Calm"
]

ANIMALS = [
    "Fox", "Panda", "Gopher", "Bear", "Snail", "Owl",
    "Wolf", "Tiger", "Hawk", "Dolphin", "Penguin", "Falcon",
    "Eagle", "Lion", "Shark", "Whale", "Octopus", "Duck"
]


class IdentityService:
    """Holds the local peer's identity and its Ed25519 identity key."""

    def __init__(self, display_name: str | None = None, key_path: Path | None = None):
        self.display_name = display_name or f"{random.choice(ADJECTIVES)} {random.choice(ANIMALS)}"
        self.short_hash = generate_identity_hash(self.display_name)

        # Long-term Identity Key (Ed25519); kept in memory unless a path is given
        self._key_path = key_path
        self.identity_key = self._load_or_generate_key()

        logger.info(f"Initialized IdentityService as {self.display_name}#{self.short_hash}")

    def _load_or_generate_key(self) -> ed25519.Ed25519PrivateKey:
        """Loads the existing identity key or creates a new one."""
        if self._key_path is not None and self._key_path.exists():
            try:
                key_bytes = self._key_path.read_bytes()
                return serialization.load_pem_private_key(key_bytes, password=None)
            except Exception as e:
                logger.warning(f"Failed to load existing identity key: {e}. Generating new one.")

        private_key = ed25519.Ed25519PrivateKey.generate()
        if self._key_path is not None:
            pem = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption()
            )
            self._key_path.write_bytes(pem)
        return private_key

    @property
    def identity(self) -> Identity:
        return Identity(
            display_name=self.display_name,
            short_hash=self.short_hash,
            full_identity=f"{self.display_name}#{self.short_hash}",
        )

    def get_public_bytes(self) -> bytes:
        """Returns the public key as 32-byte raw bytes."""
        return self.identity_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )

    @property
    def public_key(self) -> str:
        """Base64 public key as announced to room members."""
        return base64.b64encode(self.get_public_bytes()).decode("ascii")

    def sign(self, data: bytes) -> bytes:
        """Sign data using the long-term identity key."""
        return self.identity_key.sign(data)

    @staticmethod
    def verify(public_key: str, signature: bytes, data: bytes) -> bool:
        """Check a signature against a peer's announced base64 public key."""
        try:
            key = ed25519.Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key))
            key.verify(signature, data)
            return True
        except (ValueError, InvalidSignature):
            return False
