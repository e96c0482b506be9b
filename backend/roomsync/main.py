"""roomsync server application.

Hosts the room functions next to the store and serves uploaded files.

Modules:
    - store: messages, reactions, rooms and sessions with realtime feeds
    - functions: create-room, verify-room-password, chat-ai, cleanup
    - assistant: responder backends for chat-ai
    - storage: local blob storage for file messages
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from roomsync.assistant.resolver import build_responder
from roomsync.config import get_config
from roomsync.errors import RoomSyncError
from roomsync.functions import set_responder, set_store
from roomsync.functions.router import router as functions_router
from roomsync.store import build_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "duckdb",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

config = get_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Apply configured log level to root logger
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    Path(config.storage.upload_dir).mkdir(parents=True, exist_ok=True)

    store = build_store(config.store)
    set_store(store)
    logger.info(f"Store ready: backend={config.store.backend}")

    if config.ai.enabled and config.ai.provider == "function":
        # chat-ai cannot answer by calling itself
        logger.warning("ai.provider=function is client-only; chat-ai disabled on this server")
        set_responder(None)
    else:
        responder = build_responder(config)
        set_responder(responder)
        if responder is not None:
            logger.info(f"AI active: provider={config.ai.provider}")

    yield  # Application runs here

    # Shutdown
    set_responder(None)
    set_store(None)
    store.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="roomsync API",
    description="Room functions and file serving for roomsync chat rooms",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(functions_router)

app.mount(
    config.storage.base_url,
    StaticFiles(directory=config.storage.upload_dir, check_dir=False),
    name="storage",
)


@app.exception_handler(RoomSyncError)
async def roomsync_error_handler(request: Request, exc: RoomSyncError) -> JSONResponse:
    logger.error(f"{request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
