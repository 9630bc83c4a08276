from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import os
from routers.rooms import rooms_router
from backend import get_redis_backend
from constants import PRESENCE_ENABLED, ROOM_IDLE_SUSPEND_SECONDS, ROOM_SWEEP_INTERVAL_SECONDS
from directory import RoomDirectory
from logging_config import get_logger, setup_logging

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


async def sweep_idle_rooms(directory: RoomDirectory, max_idle: float, interval: float):
    """Background task suspending room actors that have been idle for max_idle seconds."""
    logger.info(f"Starting idle room sweeper (idle={max_idle}s, interval={interval}s)")
    try:
        while True:
            await asyncio.sleep(interval)
            directory.suspend_idle(max_idle)
    except asyncio.CancelledError:
        logger.info("Idle room sweeper cancelled")
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    directory = app.state.directory
    if directory.presence is not None and not directory.presence.ping():
        logger.warning("Redis unavailable; room presence will not be mirrored until it recovers")

    sweeper = None
    if ROOM_IDLE_SUSPEND_SECONDS > 0:
        sweeper = asyncio.create_task(
            sweep_idle_rooms(directory, ROOM_IDLE_SUSPEND_SECONDS, ROOM_SWEEP_INTERVAL_SECONDS)
        )
    yield
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


def create_app(directory: Optional[RoomDirectory] = None) -> FastAPI:
    if directory is None:
        directory = RoomDirectory(presence=get_redis_backend() if PRESENCE_ENABLED else None)

    app = FastAPI(title="PeerRelay", lifespan=lifespan)
    app.state.directory = directory

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins
        allow_credentials=True,
        allow_methods=["*"],  # Allow all HTTP methods
        allow_headers=["*"],  # Allow all headers
    )

    app.include_router(rooms_router)

    @app.get("/")
    async def root():
        return PlainTextResponse("Chat server is running.")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc: StarletteHTTPException):
        detail = "Not found" if exc.status_code == 404 else str(exc.detail)
        return PlainTextResponse(detail, status_code=exc.status_code)

    logger.info(f"FastAPI application initialized (presence={'redis' if directory.presence else 'off'})")
    return app


app = create_app()
