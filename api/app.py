"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the live
face overlay service.

The application provides:
- WebSocket endpoint for streaming face animation
- REST endpoint for one-shot animation
- Session lookup and server status endpoints

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 3000 --reload

    # Or run directly:
    python -m api.app
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.gateway import get_gateway
from api.routes.animation import router as animation_router
from api.routes.sessions import router as sessions_router
from api.schemas import AnimationStoppedResponse, StatusResponse
from core.config import get_api_config, get_logging_config, get_server_config, get_session_config
from core.face_transform import get_engine
from core.session_manager import get_session_manager


# Configure logging
logging.basicConfig(
    level=get_logging_config().get("level", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

_started_at = time.time()


async def sweep_inactive_sessions(interval_sec: float) -> None:
    """
    Periodically unbind idle connections and tell them why.

    Runs until cancelled at shutdown.
    """
    manager = get_session_manager()
    gateway = get_gateway()

    while True:
        await asyncio.sleep(interval_sec)
        for binding in manager.sweep_inactive():
            notice = AnimationStoppedResponse(
                type="animation-stopped",
                sessionId=binding.session_id,
                reason="inactive",
            )
            await gateway.send(binding.connection_id, notice.model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Build the face transform engine and session manager
    - Start the inactive-session sweeper

    Runs on shutdown:
    - Stop the sweeper
    """
    logger.info("=" * 60)
    logger.info("Starting Live Face Overlay API")
    logger.info("=" * 60)

    engine = get_engine()
    manager = get_session_manager()
    logger.info(
        f"Engine ready (blink_threshold={engine.blink_threshold}); "
        f"sessions time out after {manager.inactive_timeout_sec}s idle"
    )

    interval = get_session_config().get("cleanup_interval_sec", 600)
    sweeper = asyncio.create_task(sweep_inactive_sessions(interval))

    logger.info("API startup complete!")

    yield

    logger.info("Shutting down API...")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Live Face Overlay API",
    description="""
Overlay a live camera expression onto a still photo.

## WebSocket Animation
Connect to `/ws/animate`, then send:
- `{"type": "start-animation", "sessionId": "...", "imageId": "..."}`
- `{"type": "face-landmarks", "landmarks": [{"x": .., "y": .., "z": ..}, ...]}`
- `{"type": "stop-animation"}`

Every landmark frame is answered with an `animation-update`, which is also
broadcast to other connections started with the same `sessionId`.
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for browser clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_api_config().get("cors_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(animation_router)
app.include_router(sessions_router)


@app.get("/status", response_model=StatusResponse, tags=["system"])
async def status():
    """Report active sessions, connections and processed frames."""
    stats = get_session_manager().stats()

    return StatusResponse(
        status="running",
        activeSessions=stats["active_sessions"],
        activeConnections=stats["active_connections"],
        totalFrames=stats["total_frames"],
        serverUptime=int(time.time() - _started_at),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Live Face Overlay API",
        "version": "0.1.0",
        "docs": "/docs",
        "status": "/status",
        "websocket": "/ws/animate",
    }


if __name__ == "__main__":
    import uvicorn

    server_config = get_server_config()
    logger.info(f"Starting server on {server_config['host']}:{server_config['port']}")
    uvicorn.run(
        "api.app:app",
        host=server_config["host"],
        port=server_config["port"],
        reload=True,
        log_level="info",
    )
