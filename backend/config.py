"""Application-wide configuration constants."""

import os

# --- Identity ---
APP_NAME = "RoomShare"
ROOM_ID_LENGTH = 9
ROOM_ID_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
)
IDENTITY_HASH_LENGTH = 6

# --- Networking ---
API_HOST = os.environ.get("ROOMSHARE_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("PORT", "3000"))
CORS_ORIGINS = os.environ.get("ROOMSHARE_CORS_ORIGINS", "*").split(",")
OUTBOX_QUEUE_SIZE = 256  # pending messages per connection
LOG_LEVEL = os.environ.get("ROOMSHARE_LOG_LEVEL", "INFO")

# --- Rooms ---
ROOM_SWEEP_INTERVAL = int(os.environ.get("ROOMSHARE_ROOM_SWEEP", "300"))  # seconds
ACTIVITY_LOG_LIMIT = 200

# --- Admission ---
CHALLENGE_SWEEP_INTERVAL = 60  # seconds
CHALLENGE_TIMEOUT = 5 * 60  # seconds before an unanswered challenge is stale
CHALLENGE_BYTES = 32

# --- Catalog ---
FILE_SWEEP_INTERVAL = 60  # seconds
DEFAULT_FILE_TYPE = "application/octet-stream"

# --- Transfer scheduling ---
MAX_CONCURRENT_TRANSFERS = int(os.environ.get("ROOMSHARE_MAX_TRANSFERS", "3"))
PRIORITY_JUMP_THRESHOLD = 10
DEFAULT_PRIORITY = 1
TRANSFER_TIMEOUT = 30 * 60  # seconds

# --- Keys ---
PBKDF2_ITERATIONS = 100_000
KEY_SIZE = 32  # AES-256
