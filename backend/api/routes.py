"""REST API routes for RoomShare."""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import Field

from errors import Expired, NotFound
from wire import WireModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_coordinator = None


def init_routes(coordinator) -> None:
    """Inject the coordinator into the routes module."""
    global _coordinator
    _coordinator = coordinator


# --- Rooms ---

class CreateRoomBody(WireModel):
    password: str | None = None
    expires_in: float | None = Field(default=None, gt=0)  # seconds


@router.post("/rooms")
async def create_room(body: CreateRoomBody, request: Request):
    """Create a private room and return the link to share it."""
    room = await _coordinator.create_room(
        password=body.password or None, ttl=body.expires_in
    )
    base_url = str(request.base_url).rstrip("/")
    return {
        "success": True,
        "roomId": room.room_id,
        "shareLink": f"{base_url}/room/{room.room_id}",
        "requiresPassword": room.requires_password,
        "expiresAt": room.expires_at,
    }


@router.get("/rooms/{room_id}")
async def get_room(room_id: str):
    """Public information about a room; never exposes members or files."""
    try:
        info = await _coordinator.get_room_info(room_id)
    except Expired:
        raise HTTPException(status_code=410, detail="Room expired")
    except NotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    return info.dump()


# --- Health ---

@router.get("/health")
async def health():
    return {"status": "ok", **_coordinator.stats()}
