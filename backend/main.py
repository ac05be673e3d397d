"""
RoomShare: FastAPI application entry point.

Starts the coordinator sweeps on startup, serves the REST API and the
WebSocket endpoint peers use for rooms, catalogs and signaling.
"""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import ConnectionManager, MessageDispatcher
from config import API_HOST, API_PORT, APP_NAME, CORS_ORIGINS, LOG_LEVEL
from coordinator.service import CoordinatorService

# --- Logging ---
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
ws_manager = ConnectionManager()
coordinator = CoordinatorService(outbox=ws_manager)
dispatcher = MessageDispatcher(coordinator, ws_manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop background services."""
    logger.info(f"Starting {APP_NAME} coordinator...")

    try:
        await coordinator.start()
        logger.info(f"{APP_NAME} ready, API on {API_HOST}:{API_PORT}")
        yield
    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info(f"Shutting down {APP_NAME}...")
        await coordinator.stop()


# --- FastAPI app ---
app = FastAPI(
    title=APP_NAME,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(coordinator)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    peer_id = str(uuid.uuid4())
    await ws_manager.connect(websocket, peer_id)
    try:
        await coordinator.connect(peer_id)
        while True:
            raw = await websocket.receive_text()
            await dispatcher.dispatch(peer_id, raw)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for {peer_id}: {e}", exc_info=True)
    finally:
        await coordinator.disconnect(peer_id)
        await ws_manager.disconnect(peer_id)


def run() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
