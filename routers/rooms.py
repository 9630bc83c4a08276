from fastapi import APIRouter, Request, WebSocket
from fastapi.responses import PlainTextResponse
from starlette.websockets import WebSocketState
import json
import traceback
from connection import PlainRequest, WebSocketUpgrade
from constants import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_POLICY_VIOLATION,
    CLOSE_TRY_AGAIN_LATER,
    ROOM_CAPACITY,
    SETUP_FAILED_REASON,
)
from directory import RoomDirectory, resolve_room_id
from exceptions import RelayError, RoomFull
from schemas.rooms import RoomPresenceResponse
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api", tags=["rooms"])

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def get_directory(connection) -> RoomDirectory:
    return connection.app.state.directory


async def reject_websocket(websocket: WebSocket, error: RelayError):
    """Refuse an upgrade before it completes."""
    if "websocket.http.response" in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(PlainTextResponse(error.detail, status_code=error.status_code))
    else:
        # Server can't send an HTTP response on a websocket scope; close before accept instead
        code = CLOSE_TRY_AGAIN_LATER if isinstance(error, RoomFull) else CLOSE_POLICY_VIOLATION
        await websocket.close(code=code, reason=error.detail)


async def report_setup_failure(websocket: WebSocket, stack: str):
    """Hand the client a channel that carries the diagnostic and then closes."""
    try:
        if websocket.application_state == WebSocketState.CONNECTING:
            await websocket.accept()
        if websocket.application_state == WebSocketState.CONNECTED:
            await websocket.send_text(json.dumps({"error": stack}))
            await websocket.close(code=CLOSE_INTERNAL_ERROR, reason=SETUP_FAILED_REASON)
    except Exception as e:
        logger.debug(f"Could not report setup failure to client: {e}")


@rooms_router.api_route("/room", methods=ALL_METHODS)
@rooms_router.api_route("/room/", methods=ALL_METHODS)
async def room_name_missing():
    return PlainTextResponse("Method not allowed", status_code=405)


@rooms_router.api_route("/room/{name}", methods=ALL_METHODS)
@rooms_router.api_route("/room/{name}/{path:path}", methods=ALL_METHODS)
async def room_request(request: Request, name: str, path: str = ""):
    """Plain HTTP requests forwarded to a room.

    The room only serves /websocket, and only as an upgrade, so these always end
    in an error response: 400 for /websocket, 404 for anything else.
    """
    try:
        room_id = resolve_room_id(name)
        await get_directory(request).admit(room_id, PlainRequest(request, "/" + path))
    except RelayError as e:
        logger.info(f"Room request {request.method} /{path} for '{name}' rejected: {e.status_code} {e.detail}")
        return PlainTextResponse(e.detail, status_code=e.status_code)
    except Exception:
        logger.error(f"Uncaught exception handling room request for '{name}'", exc_info=True)
        return PlainTextResponse(traceback.format_exc(), status_code=500)


@rooms_router.websocket("/room/{name}")
@rooms_router.websocket("/room/{name}/{path:path}")
async def room_websocket(websocket: WebSocket, name: str, path: str = ""):
    logger.info(f"WebSocket connection attempt for room '{name}', path: /{path}")
    try:
        room_id = resolve_room_id(name)
        directory = get_directory(websocket)
        connection = await directory.admit(room_id, WebSocketUpgrade(websocket, "/" + path))
    except RelayError as e:
        logger.info(f"WebSocket connection rejected for room '{name}': {e.status_code} {e.detail}")
        await reject_websocket(websocket, e)
        return
    except Exception:
        logger.error(f"Error during WebSocket connection setup for room '{name}'", exc_info=True)
        await report_setup_failure(websocket, traceback.format_exc())
        return

    try:
        await directory.serve(room_id, connection)
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection.id} in room {room_id}: {e}", exc_info=True)
        await connection.close(CLOSE_INTERNAL_ERROR, "Internal error")


@rooms_router.get("/presence/{name}", response_model=RoomPresenceResponse)
async def room_presence(name: str, request: Request):
    """Occupancy of a room as seen by this instance, plus the Redis mirror when enabled."""
    try:
        room_id = resolve_room_id(name)
    except RelayError as e:
        return PlainTextResponse(e.detail, status_code=e.status_code)

    directory = get_directory(request)
    occupancy = directory.occupancy(room_id)

    recorded = None
    if directory.presence is not None:
        connections = directory.presence.get_connections(room_id.value)
        if connections is not None:
            recorded = len(connections)

    return RoomPresenceResponse(
        room_id=room_id.value,
        kind=room_id.kind,
        name=room_id.name,
        occupancy=occupancy,
        capacity=ROOM_CAPACITY,
        is_full=occupancy >= ROOM_CAPACITY,
        is_resident=directory.is_resident(room_id),
        recorded_connections=recorded,
    )
