"""WebSocket connection handling and client message dispatch."""

import asyncio
import json
import logging
from enum import Enum
from typing import Any

from fastapi import WebSocket

from api.messages import (
    Answer,
    IceCandidate,
    JoinRoom,
    LeaveRoom,
    Offer,
    PasswordProof,
    ShareFile,
    UnshareFile,
    parse_client_message,
)
from config import OUTBOX_QUEUE_SIZE
from coordinator.service import CoordinatorService
from errors import CoordinatorError, ProtocolError
from signaling.relay import SignalKind
from wire import ServerEvent

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Tracks one WebSocket per peer. Sending never blocks the caller: messages
    go onto a bounded per-connection queue drained by a writer task, and a
    dead socket just stops receiving. A client too slow to keep up loses its
    oldest pending messages.
    """

    def __init__(self, max_queue: int = OUTBOX_QUEUE_SIZE) -> None:
        self._max_queue = max_queue
        self._queues: dict[str, asyncio.Queue[str]] = {}
        self._writers: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._queues)

    def is_connected(self, peer_id: str) -> bool:
        return peer_id in self._queues

    async def connect(self, websocket: WebSocket, peer_id: str) -> None:
        await websocket.accept()
        queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self._max_queue)
        self._queues[peer_id] = queue
        self._writers[peer_id] = asyncio.create_task(
            self._writer(peer_id, websocket, queue)
        )
        logger.info(f"WebSocket client connected. Total: {len(self._queues)}")

    async def disconnect(self, peer_id: str) -> None:
        self._queues.pop(peer_id, None)
        writer = self._writers.pop(peer_id, None)
        if writer:
            writer.cancel()
        logger.info(f"WebSocket client disconnected. Total: {len(self._queues)}")

    def send(self, peer_id: str, event: str, data: Any) -> bool:
        queue = self._queues.get(peer_id)
        if queue is None:
            return False
        name = event.value if isinstance(event, Enum) else event
        message = json.dumps({"event": name, "data": data})
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            queue.get_nowait()
            queue.put_nowait(message)
            logger.warning(f"Outbound queue for {peer_id} is full, dropped its oldest message")
        return True

    async def _writer(self, peer_id: str, websocket: WebSocket, queue: asyncio.Queue) -> None:
        while True:
            message = await queue.get()
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.debug(f"Send to {peer_id} failed, dropping its queue: {e}")
                self._queues.pop(peer_id, None)
                return


class MessageDispatcher:
    """Routes each validated client message to the coordinator."""

    def __init__(self, coordinator: CoordinatorService, connections: ConnectionManager) -> None:
        self._coordinator = coordinator
        self._connections = connections
        self._handlers = {
            JoinRoom: self._join_room,
            PasswordProof: self._password_proof,
            LeaveRoom: self._leave_room,
            ShareFile: self._share_file,
            UnshareFile: self._unshare_file,
            Offer: self._signal(SignalKind.OFFER),
            Answer: self._signal(SignalKind.ANSWER),
            IceCandidate: self._signal(SignalKind.ICE_CANDIDATE),
        }

    @property
    def handled_types(self) -> set[type]:
        return set(self._handlers)

    async def dispatch(self, peer_id: str, raw: str | bytes) -> None:
        try:
            message = parse_client_message(raw)
        except ProtocolError as e:
            logger.debug(f"Rejected frame from {peer_id}: {e}")
            self._connections.send(peer_id, ServerEvent.ERROR, e.to_payload())
            return

        handler = self._handlers[type(message)]
        try:
            await handler(peer_id, message.data)
        except CoordinatorError as e:
            # Reported to the requester only; nothing else is touched.
            logger.info(f"{message.event} from {peer_id} failed: {e.reason}")
            self._connections.send(peer_id, ServerEvent.ROOM_ERROR, e.to_payload())

    async def _join_room(self, peer_id: str, data) -> None:
        await self._coordinator.join_room(
            peer_id,
            data.room_id,
            password=data.password,
            identity=data.identity,
            public_key=data.public_key,
        )

    async def _password_proof(self, peer_id: str, data) -> None:
        await self._coordinator.submit_proof(peer_id, data.proof)

    async def _leave_room(self, peer_id: str, data) -> None:
        await self._coordinator.leave_room(peer_id, data.room_id)

    async def _share_file(self, peer_id: str, data) -> None:
        await self._coordinator.share_file(
            peer_id, data.name, data.size, type=data.type, expires_at=data.expires_at
        )

    async def _unshare_file(self, peer_id: str, data) -> None:
        await self._coordinator.unshare_file(peer_id, data.file_id, room_id=data.room_id)

    def _signal(self, kind: SignalKind):
        async def handler(peer_id: str, data) -> None:
            await self._coordinator.relay_signal(peer_id, kind, data.payload, data.target_peer_id)
        return handler
