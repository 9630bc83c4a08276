"""
Session table of a single room.

At most ROOM_CAPACITY (two) entries. With two entries the sessions point at each
other; with zero or one entry no session has a peer. Pairing happens inside add()
so the table is never observable with two unpaired sessions.
"""
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from connection import Connection
from constants import ROOM_CAPACITY
from exceptions import RoomFull


@dataclass(eq=False)
class Session:
    connection: Connection
    peer: Optional[Connection] = None


class SessionTable:
    def __init__(self, room_id=None):
        self.room_id = room_id
        self.capacity = ROOM_CAPACITY
        # dicts keep insertion order, which is admission order
        self._sessions: Dict[Connection, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection) -> bool:
        return connection in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    @property
    def is_full(self) -> bool:
        return len(self._sessions) >= self.capacity

    def get(self, connection: Connection) -> Optional[Session]:
        return self._sessions.get(connection)

    def add(self, connection: Connection) -> Session:
        if self.is_full:
            raise RoomFull(self.room_id)
        if connection in self._sessions:
            return self._sessions[connection]

        session = Session(connection=connection)
        self._sessions[connection] = session

        if len(self._sessions) == 2:
            first, second = self._sessions.values()
            first.peer = second.connection
            second.peer = first.connection
        return session

    def remove(self, connection: Connection) -> Optional[Session]:
        """Drop a session. The caller is responsible for the removed session's peer."""
        return self._sessions.pop(connection, None)

    def snapshot(self) -> Dict[str, Optional[str]]:
        """connection id -> peer connection id, for logging and tests."""
        return {
            conn.id: (session.peer.id if session.peer is not None else None)
            for conn, session in self._sessions.items()
        }
