"""Connection handles: the room actor's only view of a transport channel.

A connection is borrowed from the transport. The room keeps a reference so it
can route messages and ask for closure; it never owns the socket.
"""
import abc
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

from fastapi import Request, WebSocket
from starlette.websockets import WebSocketState

from exceptions import NotAWebSocketUpgrade, SendFailed
from logging_config import get_logger

logger = get_logger(__name__)

Message = Union[str, bytes]


@dataclass(frozen=True)
class MessageEvent:
    data: Message


@dataclass(frozen=True)
class CloseEvent:
    code: int
    reason: str = ""
    was_clean: bool = True


@dataclass(frozen=True)
class ErrorEvent:
    error: BaseException


ConnectionEvent = Union[MessageEvent, CloseEvent, ErrorEvent]


class Connection(abc.ABC):
    """One bidirectional message channel.

    Hashable by identity so it can key the session table.
    """

    def __init__(self, connection_id: Optional[str] = None):
        self.id = connection_id or str(uuid.uuid4())

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        ...

    @abc.abstractmethod
    async def send(self, message: Message) -> None:
        """Hand the message to the channel. Raises SendFailed if it cannot take it."""

    @abc.abstractmethod
    async def close(self, code: int, reason: str = "") -> None:
        """Request closure. Closing an already closed channel is a no-op."""

    @abc.abstractmethod
    def events(self) -> AsyncIterator[ConnectionEvent]:
        """Inbound events; the stream ends after a CloseEvent or ErrorEvent."""

    def __repr__(self):
        return f"<{type(self).__name__} {self.id[:8]}>"


class WebSocketConnection(Connection):
    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        super().__init__(connection_id)
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    async def send(self, message: Message) -> None:
        if not self.is_open:
            raise SendFailed(self.id)
        try:
            if isinstance(message, bytes):
                await self.websocket.send_bytes(message)
            else:
                await self.websocket.send_text(message)
        except Exception as e:
            logger.debug(f"Send to connection {self.id} failed: {e}")
            self._closed = True
            raise SendFailed(self.id) from e

    async def close(self, code: int, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
            logger.debug(f"Closed connection {self.id} with {code} ({reason})")
        except Exception as e:
            logger.debug(f"Error closing connection {self.id}: {e}")

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        while True:
            try:
                message = await self.websocket.receive()
            except Exception as e:
                self._closed = True
                yield ErrorEvent(e)
                return

            if message["type"] == "websocket.disconnect":
                self._closed = True
                code = message.get("code") or 1005
                yield CloseEvent(code=code, reason=message.get("reason") or "", was_clean=code in (1000, 1001))
                return

            if message.get("bytes") is not None:
                yield MessageEvent(message["bytes"])
            elif message.get("text") is not None:
                yield MessageEvent(message["text"])


class UpgradeRequest(abc.ABC):
    """A request routed to a room, possibly asking for a channel upgrade."""

    def __init__(self, path: str):
        self.path = path

    @property
    @abc.abstractmethod
    def is_upgrade(self) -> bool:
        ...

    @abc.abstractmethod
    async def accept(self) -> Connection:
        """Complete the upgrade and hand back the live connection."""


class WebSocketUpgrade(UpgradeRequest):
    def __init__(self, websocket: WebSocket, path: str):
        super().__init__(path)
        self.websocket = websocket

    @property
    def is_upgrade(self) -> bool:
        return True

    async def accept(self) -> Connection:
        await self.websocket.accept()
        return WebSocketConnection(self.websocket)


class PlainRequest(UpgradeRequest):
    """An ordinary HTTP request; the server never hands these over as upgrades."""

    def __init__(self, request: Request, path: str):
        super().__init__(path)
        self.request = request

    @property
    def is_upgrade(self) -> bool:
        return False

    async def accept(self) -> Connection:
        raise NotAWebSocketUpgrade()
