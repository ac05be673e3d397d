"""
Security module: password challenge hashing, identifiers, and the
symmetric primitives the key layers are built on.

The password check is a salted-hash challenge, not a zero-knowledge proof:
the coordinator holds sha256(password) and verifies
sha256(sha256(password) || nonce) computed by the client.
"""

import os
import logging
import secrets

from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import (
    CHALLENGE_BYTES,
    IDENTITY_HASH_LENGTH,
    KEY_SIZE,
    PBKDF2_ITERATIONS,
    ROOM_ID_ALPHABET,
    ROOM_ID_LENGTH,
)

logger = logging.getLogger(__name__)

# AES-256-GCM nonce size (12 bytes recommended)
NONCE_SIZE = 12


def sha256_hex(data: str | bytes) -> str:
    """SHA-256 of a UTF-8 string or raw bytes, as lowercase hex."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize().hex()


def hash_password(password: str) -> str:
    """Hash stored by the coordinator for a password-protected room."""
    return sha256_hex(password)


def generate_challenge() -> str:
    """Fresh random nonce for one admission attempt."""
    return secrets.token_hex(CHALLENGE_BYTES)


def proof_from_hash(password_hash: str, nonce: str) -> str:
    return sha256_hex(password_hash + nonce)


def compute_proof(password: str, nonce: str) -> str:
    """Client side of the challenge: never sends the password itself."""
    return proof_from_hash(hash_password(password), nonce)


def verify_proof(proof: str, password_hash: str, nonce: str) -> bool:
    """Constant-time comparison of a submitted proof against the expected one."""
    expected = proof_from_hash(password_hash, nonce)
    return constant_time.bytes_eq(
        proof.encode("utf-8"), expected.encode("utf-8")
    )


def verify_password(password: str, password_hash: str) -> bool:
    return constant_time.bytes_eq(
        hash_password(password).encode("utf-8"), password_hash.encode("utf-8")
    )


def generate_room_id() -> str:
    """Exactly ROOM_ID_LENGTH alphanumeric characters."""
    return "".join(
        secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH)
    )


def generate_identity_hash(display_name: str) -> str:
    """Short hex tag that disambiguates identical display names."""
    combined = f"{display_name}{secrets.token_hex(8)}"
    return sha256_hex(combined)[:IDENTITY_HASH_LENGTH]


def generate_session_key() -> bytes:
    """Ephemeral 256-bit key for a single transfer."""
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def derive_room_key(room_id: str, password: str | None = None) -> bytes:
    """
    Derive the shared room key with PBKDF2-SHA256.

    The salt is sha256(room_id) so every member derives the same key; rooms
    without a password fall back to the room id as the secret.
    """
    digest = hashes.Hash(hashes.SHA256())
    digest.update(room_id.encode("utf-8"))
    salt = digest.finalize()

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive((password or room_id).encode("utf-8"))


def encrypt_chunk(key: bytes, plaintext: bytes) -> bytes:
    """
    Encrypt a data chunk using AES-256-GCM.

    Returns: nonce (12 bytes) || ciphertext || tag (16 bytes)
    """
    nonce = os.urandom(NONCE_SIZE)
    aesgcm = AESGCM(key)
    ciphertext = aesgcm.encrypt(nonce, plaintext, None)
    return nonce + ciphertext


def decrypt_chunk(key: bytes, data: bytes) -> bytes:
    """
    Decrypt a data chunk encrypted with AES-256-GCM.

    Expects: nonce (12 bytes) || ciphertext || tag (16 bytes)
    """
    nonce = data[:NONCE_SIZE]
    ciphertext = data[NONCE_SIZE:]
    aesgcm = AESGCM(key)
    return aesgcm.decrypt(nonce, ciphertext, None)
