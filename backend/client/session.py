"""
Python peer for a RoomShare coordinator.

Keeps the peer's view of its scope (peers, visible catalog, room), answers
password challenges, and feeds download requests to a TransferManager. The
actual byte transfer is left to the launcher installed on the manager.
"""

import json
import logging
from collections import deque
from typing import Any

import websockets

from catalog.models import FileRecord
from config import DEFAULT_PRIORITY
from peers.models import PeerSummary
from security.crypto import compute_proof
from security.identity import IdentityService
from security.keys import KeyRing
from transfer.manager import TransferManager
from transfer.models import FileRef, TransferQueueItem
from wire import ServerEvent

logger = logging.getLogger(__name__)


class PeerSession:
    """One peer's connection to the coordinator."""

    def __init__(
        self,
        identity: IdentityService | None = None,
        scheduler: TransferManager | None = None,
    ) -> None:
        self.identity = identity or IdentityService()
        self.keys = KeyRing(self.identity)
        self.scheduler = scheduler or TransferManager()
        self.scheduler.on_event(self._on_transfer_event)

        self.peer_id: str | None = None
        self.room_id: str | None = None
        self.peers: dict[str, PeerSummary] = {}
        self.files: dict[str, FileRecord] = {}
        self.shared_files: dict[str, str | None] = {}  # file id -> scope it was shared in

        self._ws = None
        self._pending_room: str | None = None
        self._pending_password: str | None = None
        self._pending_shares: deque[tuple[str, str | None]] = deque()  # (name, scope)
        self._event_callbacks: list = []  # async fn(event, data)
        self._handlers = {
            ServerEvent.CONNECTED: self._on_connected,
            ServerEvent.PEERS_LIST: self._on_peers_list,
            ServerEvent.FILES_LIST: self._on_files_list,
            ServerEvent.PEER_JOINED: self._on_peer_joined,
            ServerEvent.PEER_LEFT: self._on_peer_left,
            ServerEvent.PASSWORD_CHALLENGE: self._on_password_challenge,
            ServerEvent.ROOM_JOINED: self._on_room_joined,
            ServerEvent.ROOM_ERROR: self._on_room_error,
            ServerEvent.PEER_JOINED_ROOM: self._on_peer_joined_room,
            ServerEvent.PEER_LEFT_ROOM: self._on_peer_left_room,
            ServerEvent.ROOM_EXPIRED: self._on_room_expired,
            ServerEvent.FILE_AVAILABLE: self._on_file_available,
            ServerEvent.FILE_REMOVED: self._on_file_removed,
            ServerEvent.FILE_SHARED_CONFIRMATION: self._on_file_shared,
            ServerEvent.OFFER: self._on_signal,
            ServerEvent.ANSWER: self._on_signal,
            ServerEvent.ICE_CANDIDATE: self._on_signal,
            ServerEvent.ERROR: self._on_error,
        }

    def on_event(self, callback) -> None:
        """Register callback: async fn(event: str, data) for every server event."""
        self._event_callbacks.append(callback)

    # --- Connection ---

    async def connect(self, url: str) -> None:
        self._ws = await websockets.connect(url)
        logger.info(f"Connected to coordinator at {url}")

    async def close(self) -> None:
        await self.scheduler.stop()
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def run(self) -> None:
        """Process server events until the connection closes."""
        try:
            async for raw in self._ws:
                await self.handle_message(raw)
        except websockets.ConnectionClosed:
            logger.info("Coordinator connection closed")

    async def send(self, event: str, data: dict) -> None:
        if self._ws is None:
            raise RuntimeError("Not connected")
        await self._ws.send(json.dumps({"event": event, "data": data}))

    # --- Requests ---

    async def join_room(self, room_id: str, password: str | None = None) -> None:
        """
        Ask to join. The password is kept locally and only used to answer the
        coordinator's challenge; it is never sent.
        """
        self._pending_room = room_id
        self._pending_password = password
        await self.send("join-room", {
            "roomId": room_id,
            "identity": self.identity.identity.dump(),
            "publicKey": self.identity.public_key,
        })

    async def leave_room(self) -> None:
        if self.room_id is None:
            return
        await self.send("leave-room", {"roomId": self.room_id})
        self._forget_room_shares(self.room_id)
        self.room_id = None
        self.keys.leave_room()

    async def share_file(
        self, name: str, size: int, type: str | None = None, expires_at: float | None = None
    ) -> None:
        """Share in the current scope; confirmations arrive in request order."""
        self._pending_shares.append((name, self.room_id))
        await self.send("share-file", {
            "name": name, "size": size, "type": type, "expiresAt": expires_at,
        })

    async def unshare_file(self, file_id: str) -> None:
        """Withdraw one of our files from the scope it was shared in."""
        room_id = self.shared_files.pop(file_id, self.room_id)
        await self.send("unshare-file", {"fileId": file_id, "roomId": room_id})

    async def signal(self, kind: ServerEvent, target_peer_id: str, payload: Any) -> None:
        await self.send(kind.value, {"targetPeerId": target_peer_id, "payload": payload})

    async def download(self, file_id: str, priority: int = DEFAULT_PRIORITY) -> TransferQueueItem:
        """Queue a download of a file from the visible catalog."""
        record = self.files.get(file_id)
        if record is None:
            raise LookupError(f"File {file_id} is not in the current catalog")
        ref = FileRef(
            file_id=record.file_id,
            name=record.name,
            size=record.size,
            owner_peer_id=record.owner_peer_id,
            room_id=record.room_id,
        )
        return await self.scheduler.enqueue(ref, priority=priority)

    # --- Server events ---

    async def handle_message(self, raw: str | bytes) -> None:
        try:
            envelope = json.loads(raw)
            event, data = envelope["event"], envelope.get("data")
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.debug(f"Ignoring malformed frame: {e}")
            return
        await self.handle_event(event, data)

    async def handle_event(self, event: str, data: Any) -> None:
        try:
            kind = ServerEvent(event)
        except ValueError:
            logger.debug(f"Ignoring unknown event {event!r}")
            return
        await self._handlers[kind](kind, data)

        for cb in self._event_callbacks:
            try:
                await cb(kind.value, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def _on_connected(self, kind, data) -> None:
        self.peer_id = data["peerId"]

    async def _on_peers_list(self, kind, data) -> None:
        self.peers = {p.id: p for p in (PeerSummary.model_validate(d) for d in data)}

    async def _on_files_list(self, kind, data) -> None:
        self._replace_catalog(data)
        await self.scheduler.reconcile(self.files)

    async def _on_peer_joined(self, kind, data) -> None:
        self.peers[data["id"]] = PeerSummary(id=data["id"])

    async def _on_peer_left(self, kind, data) -> None:
        self.peers.pop(data["id"], None)
        await self.scheduler.cancel_owner(data["id"])

    async def _on_password_challenge(self, kind, data) -> None:
        if self._pending_password is None:
            logger.warning(f"Room {self._pending_room} requires a password")
            return
        proof = compute_proof(self._pending_password, data["nonce"])
        await self.send("password-proof", {"proof": proof})

    async def _on_room_joined(self, kind, data) -> None:
        self.room_id = data["roomId"]
        self.peers = {
            p.id: p for p in (PeerSummary.model_validate(d) for d in data["peers"])
            if p.id != self.peer_id
        }
        self._replace_catalog(data["files"])
        self.keys.enter_room(self.room_id, self._pending_password)
        self._pending_room = None
        self._pending_password = None
        await self.scheduler.reconcile(self.files)
        logger.info(f"Joined room {self.room_id} ({len(self.peers)} other peer(s))")

    async def _on_room_error(self, kind, data) -> None:
        self._pending_password = None
        logger.warning(f"Room request failed: {data.get('reason')} ({data.get('error')})")

    async def _on_peer_joined_room(self, kind, data) -> None:
        self.peers[data["peerId"]] = PeerSummary(
            id=data["peerId"], identity=data.get("identity"), public_key=data.get("publicKey")
        )

    async def _on_peer_left_room(self, kind, data) -> None:
        self.peers.pop(data["peerId"], None)
        for file_id in data.get("filesRemoved", []):
            self.files.pop(file_id, None)
        await self.scheduler.cancel_owner(data["peerId"])

    async def _on_room_expired(self, kind, data) -> None:
        if self.room_id == data["roomId"]:
            logger.info(f"Room {self.room_id} expired")
            self.files = {
                file_id: r for file_id, r in self.files.items() if r.room_id != self.room_id
            }
            self._forget_room_shares(self.room_id)
            self.room_id = None
            self.keys.leave_room()
            await self.scheduler.reconcile(self.files)

    async def _on_file_available(self, kind, data) -> None:
        record = FileRecord.model_validate(data)
        if record.room_id == self.room_id:
            self.files[record.file_id] = record

    async def _on_file_removed(self, kind, data) -> None:
        self.files.pop(data["fileId"], None)
        self.shared_files.pop(data["fileId"], None)
        await self.scheduler.reconcile(self.files)

    async def _on_file_shared(self, kind, data) -> None:
        name = data.get("originalName")
        scope = self.room_id
        for pending in self._pending_shares:
            if pending[0] == name:
                self._pending_shares.remove(pending)
                scope = pending[1]
                break
        self.shared_files[data["fileId"]] = scope

    def _forget_room_shares(self, room_id: str) -> None:
        self.shared_files = {
            file_id: scope for file_id, scope in self.shared_files.items() if scope != room_id
        }

    async def _on_signal(self, kind, data) -> None:
        # Negotiation payloads are opaque here; subscribers hand them to the transport.
        logger.debug(f"{kind.value} from {data.get('fromPeerId')}")

    async def _on_error(self, kind, data) -> None:
        logger.warning(f"Coordinator rejected a message: {data}")

    def _replace_catalog(self, records: list[dict]) -> None:
        self.files = {
            r.file_id: r for r in (FileRecord.model_validate(d) for d in records)
        }

    # --- Transfer events ---

    async def _on_transfer_event(self, event_type: str, data: dict) -> None:
        if event_type == "transfer_started":
            self.keys.open_session(str(data["id"]))
        elif event_type in ("transfer_completed", "transfer_cancelled"):
            self.keys.close_session(str(data["id"]))
