"""Room directory: maps room ids to room actors and hosts their live channels.

The directory plays the part of the host environment for each room. It keeps the
live channel registry and the room lock in a RoomHost that outlives any single
ChatRoom instance, so an actor can be suspended to free its state and rebuilt
later from the channels that are still open.
"""
import asyncio
import hashlib
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from connection import CloseEvent, Connection, ErrorEvent, MessageEvent
from constants import MAX_ROOM_NAME_LENGTH
from exceptions import MissingRoomName, NameTooLong
from logging_config import get_logger
from room import ChatRoom

logger = get_logger(__name__)

GLOBAL_ID_PATTERN = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class RoomId:
    value: str
    kind: str  # "global" or "name"
    name: Optional[str] = None

    def __str__(self):
        return self.name if self.kind == "name" else self.value[:12]


def resolve_room_id(name: str) -> RoomId:
    """Turn the room segment of a URL into a room id.

    64 lowercase hex characters address a room globally; anything up to
    MAX_ROOM_NAME_LENGTH characters is a short name whose id is derived from it.
    """
    if not name:
        raise MissingRoomName()
    if GLOBAL_ID_PATTERN.match(name):
        return RoomId(value=name, kind="global")
    if len(name) <= MAX_ROOM_NAME_LENGTH:
        return RoomId(value=hashlib.sha256(name.encode("utf-8")).hexdigest(), kind="name", name=name)
    raise NameTooLong()


@dataclass(eq=False)
class RoomHost:
    """Host-side state of one room that survives actor suspension."""
    room_id: RoomId
    presence: Optional[object] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    admitting: int = field(default=0, init=False)
    _live: Dict[Connection, float] = field(default_factory=dict, init=False, repr=False)
    _pending: Set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    def __contains__(self, connection) -> bool:
        return connection in self._live

    def track(self, connection: Connection):
        self._live[connection] = time.time()
        if self.presence is not None:
            self.presence.add_connection(self.room_id.value, connection.id, {"room_kind": self.room_id.kind})

    def release(self, connection: Connection):
        if self._live.pop(connection, None) is None:
            return
        if self.presence is not None:
            self.presence.remove_connection(self.room_id.value, connection.id)

    def list_live_channels(self) -> List[Connection]:
        """Every channel not yet released, including ones whose close is still being delivered."""
        return list(self._live)

    def schedule_close(self, connection: Connection, code: int, reason: str):
        task = asyncio.get_running_loop().create_task(connection.close(code, reason))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def is_empty(self) -> bool:
        return not self._live


class RoomDirectory:
    def __init__(self, presence=None):
        self.presence = presence
        self._hosts: Dict[str, RoomHost] = {}
        self._rooms: Dict[str, ChatRoom] = {}

    def room_ids(self) -> List[str]:
        return list(self._hosts)

    def is_resident(self, room_id: RoomId) -> bool:
        return room_id.value in self._rooms

    def occupancy(self, room_id: RoomId) -> int:
        room = self._rooms.get(room_id.value)
        if room is not None:
            return room.occupancy
        host = self._hosts.get(room_id.value)
        return len(host.list_live_channels()) if host else 0

    def get(self, room_id: RoomId) -> ChatRoom:
        """Return the room actor, creating or waking it if needed."""
        room = self._rooms.get(room_id.value)
        if room is not None:
            return room

        host = self._hosts.get(room_id.value)
        if host is None:
            host = RoomHost(room_id=room_id, presence=self.presence)
            self._hosts[room_id.value] = host
            logger.info(f"Created room {room_id} ({room_id.kind})")
        else:
            logger.info(f"Waking room {room_id} with {len(host.list_live_channels())} live channel(s)")

        room = ChatRoom(room_id, host)
        self._rooms[room_id.value] = room
        return room

    async def admit(self, room_id: RoomId, request) -> Connection:
        """Admit a request into a room, keeping the room registered while the upgrade completes."""
        room = self.get(room_id)
        room.host.admitting += 1
        try:
            return await room.admit(request)
        finally:
            room.host.admitting -= 1
            if room.host.is_empty:
                self.discard_if_empty(room_id)

    def suspend(self, room_id: RoomId) -> bool:
        """Drop the actor's in-memory state; its channels stay open."""
        room = self._rooms.pop(room_id.value, None)
        if room is None:
            return False
        logger.info(f"Suspended room {room_id} at {room.occupancy} session(s)")
        self.discard_if_empty(room_id)
        return True

    def suspend_idle(self, max_idle_seconds: float) -> int:
        now = time.monotonic()
        suspended = 0
        for room in list(self._rooms.values()):
            if room.host.lock.locked():
                continue
            if now - room.last_activity >= max_idle_seconds:
                self.suspend(room.room_id)
                suspended += 1
        if suspended:
            logger.debug(f"Suspended {suspended} idle room(s)")
        return suspended

    def discard_if_empty(self, room_id: RoomId):
        """Forget a room entirely once it has no actor state and no live channels."""
        host = self._hosts.get(room_id.value)
        if host is None or not host.is_empty or host.admitting or host.lock.locked():
            return
        room = self._rooms.get(room_id.value)
        if room is not None and room.occupancy:
            return
        self._rooms.pop(room_id.value, None)
        del self._hosts[room_id.value]
        if self.presence is not None:
            self.presence.clear_room(room_id.value)
        logger.info(f"Room {room_id} is empty, discarded")

    async def serve(self, room_id: RoomId, connection: Connection):
        """Deliver a connection's inbound events to its room until the channel ends.

        The actor is looked up per event so that a suspended room wakes up on
        the next message.
        """
        ended = False
        try:
            async for event in connection.events():
                if not isinstance(event, MessageEvent):
                    ended = True
                host = self._hosts.get(room_id.value)
                if host is None or connection not in host:
                    # Already torn down, e.g. closed because its peer left
                    logger.debug(f"Ignoring {type(event).__name__} from released connection {connection.id}")
                    continue

                room = self.get(room_id)
                if isinstance(event, MessageEvent):
                    await room.on_message(connection, event.data)
                elif isinstance(event, CloseEvent):
                    await room.on_close(connection, event.code, event.reason, event.was_clean)
                elif isinstance(event, ErrorEvent):
                    await room.on_error(connection, event.error)
        finally:
            host = self._hosts.get(room_id.value)
            if not ended and host is not None and connection in host:
                # Pump cancelled or crashed; make sure the room lets go of the channel
                await self.get(room_id).disconnect(connection, "event stream ended")
            self.discard_if_empty(room_id)
