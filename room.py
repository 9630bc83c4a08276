"""
Room actor: pairs two connections and relays messages between them.

Every operation that touches the session table runs under the room lock. The
lock lives on the host so that a suspended and re-created actor still excludes
operations started by its predecessor.
"""
import asyncio
import time

from connection import Connection, Message, UpgradeRequest
from constants import (
    CLOSE_NORMAL,
    CLOSE_TRY_AGAIN_LATER,
    PEER_DISCONNECTED_REASON,
    RELAY_PATH,
    RELAY_SEND_TIMEOUT_SECONDS,
)
from exceptions import NotAWebSocketUpgrade, NotFound, RoomFull, SendFailed
from logging_config import get_logger
from sessions import SessionTable

logger = get_logger(__name__)


class ChatRoom:
    def __init__(self, room_id, host):
        self.room_id = room_id
        self.host = host
        self.sessions = SessionTable(room_id)
        self.last_activity = time.monotonic()
        self.send_timeout = RELAY_SEND_TIMEOUT_SECONDS
        self._recover()

    def _recover(self):
        """Rebuild the table from channels that outlived the previous actor."""
        live = self.host.list_live_channels()
        for connection in live:
            if self.sessions.is_full:
                # More live channels than slots; they cannot be paired with anyone
                logger.warning(f"Room {self.room_id}: dropping surplus channel {connection.id} during recovery")
                self.host.release(connection)
                self.host.schedule_close(connection, CLOSE_TRY_AGAIN_LATER, RoomFull.detail)
                continue
            self.sessions.add(connection)
        if live:
            logger.info(f"Room {self.room_id} recovered {len(self.sessions)} session(s): {self.sessions.snapshot()}")

    @property
    def occupancy(self) -> int:
        return len(self.sessions)

    def _touch(self):
        self.last_activity = time.monotonic()

    async def admit(self, request: UpgradeRequest) -> Connection:
        if request.path != RELAY_PATH:
            raise NotFound()
        if not request.is_upgrade:
            raise NotAWebSocketUpgrade()

        async with self.host.lock:
            if self.sessions.is_full:
                logger.info(f"Room {self.room_id} rejected a connection: room is full")
                raise RoomFull(self.room_id)

            connection = await request.accept()
            self.host.track(connection)
            session = self.sessions.add(connection)
            self._touch()

            logger.info(f"Connection {connection.id} admitted to room {self.room_id} ({self.occupancy}/{self.sessions.capacity})")
            if session.peer is not None:
                # Pairing is silent: neither side is told
                logger.info(f"Room {self.room_id} paired {connection.id} with {session.peer.id}")
            return connection

    async def relay(self, source: Connection, message: Message):
        async with self.host.lock:
            self._touch()
            session = self.sessions.get(source)
            if session is None or session.peer is None:
                logger.debug(f"Room {self.room_id}: dropped message from unpaired connection {source.id}")
                return
            peer = session.peer

        # Sent outside the lock so a stalled peer cannot hold up the rest of the room
        try:
            await asyncio.wait_for(peer.send(message), timeout=self.send_timeout)
            logger.debug(f"Room {self.room_id}: relayed {type(message).__name__} frame of length {len(message)} from {source.id} to {peer.id}")
        except (SendFailed, asyncio.TimeoutError):
            # The peer is gone or not taking data; treat it exactly like a disconnect of the peer
            logger.info(f"Room {self.room_id}: delivery to {peer.id} failed, tearing down pair")
            await self.disconnect(peer, "send failed")

    async def disconnect(self, connection: Connection, reason: str = ""):
        async with self.host.lock:
            self._touch()
            await self._teardown(connection, reason)

    async def _teardown(self, connection: Connection, reason: str):
        session = self.sessions.remove(connection)
        self.host.release(connection)
        if session is None:
            return
        logger.info(f"Connection {connection.id} left room {self.room_id}: {reason or 'closed'}")

        peer = session.peer
        if peer is not None:
            await peer.close(CLOSE_NORMAL, PEER_DISCONNECTED_REASON)
            self.sessions.remove(peer)
            self.host.release(peer)
            logger.info(f"Connection {peer.id} removed from room {self.room_id}: peer disconnected")

    # Transport callbacks

    async def on_message(self, connection: Connection, message: Message):
        await self.relay(connection, message)

    async def on_close(self, connection: Connection, code: int, reason: str, was_clean: bool):
        logger.debug(f"Connection {connection.id} closed with {code} ({reason}), clean={was_clean}")
        await self.disconnect(connection, f"closed with {code}")

    async def on_error(self, connection: Connection, error: BaseException):
        logger.warning(f"Connection {connection.id} in room {self.room_id} errored: {error}")
        await self.disconnect(connection, f"error: {error}")
