"""Shared fakes for room and directory tests."""

import asyncio
from typing import AsyncIterator

import pytest

from connection import CloseEvent, Connection, ConnectionEvent, UpgradeRequest
from directory import RoomDirectory, RoomHost, resolve_room_id
from exceptions import SendFailed


class FakeConnection(Connection):
    """In-memory connection recording what the room does to it."""

    def __init__(self, name: str) -> None:
        super().__init__(connection_id=name)
        self.sent: list = []
        self.closed_with: tuple | None = None
        self.fail_sends = False
        self._inbound: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self.closed_with is None

    async def send(self, message) -> None:
        if self.fail_sends or not self.is_open:
            raise SendFailed(self.id)
        self.sent.append(message)

    async def close(self, code: int, reason: str = "") -> None:
        if self.closed_with is None:
            self.closed_with = (code, reason)

    def push(self, event: ConnectionEvent) -> None:
        self._inbound.put_nowait(event)

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        while True:
            event = await self._inbound.get()
            yield event
            if not hasattr(event, "data"):
                return


class FakeUpgrade(UpgradeRequest):
    def __init__(self, connection: FakeConnection, path: str = "/websocket", upgrade: bool = True) -> None:
        super().__init__(path)
        self.connection = connection
        self.upgrade = upgrade
        self.accepted = False

    @property
    def is_upgrade(self) -> bool:
        return self.upgrade

    async def accept(self) -> Connection:
        self.accepted = True
        return self.connection


@pytest.fixture
def room_id():
    return resolve_room_id("abc")


@pytest.fixture
def host(room_id):
    return RoomHost(room_id=room_id)


@pytest.fixture
def directory():
    return RoomDirectory()


@pytest.fixture
def conns():
    return FakeConnection("conn1"), FakeConnection("conn2"), FakeConnection("conn3")


def close_event(code: int = 1000) -> CloseEvent:
    return CloseEvent(code=code, reason="bye", was_clean=True)


def assert_table_invariants(table) -> None:
    """At most two sessions; two sessions point at each other, fewer have no peers."""
    sessions = list(table)
    assert len(sessions) <= table.capacity, f"session table holds {len(sessions)} entries"
    if len(sessions) == 2:
        first, second = sessions
        assert first.peer is second.connection and second.peer is first.connection, "sessions are not paired"
    else:
        assert all(s.peer is None for s in sessions), "unpaired room has a peer reference"
