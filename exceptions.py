"""
Relay exceptions

Admission errors carry the status code and body the front door answers with;
SendFailed never leaves the room actor.
"""


class RelayError(Exception):
    """Base class for every relay error."""
    status_code = 500
    detail = "Internal error"

    def __init__(self, detail=None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


# ============ Admission ============

class NotAWebSocketUpgrade(RelayError):
    """The relay endpoint was requested without an Upgrade: websocket header."""
    status_code = 400
    detail = "expected websocket"


class RoomFull(RelayError):
    """Both slots of the room are taken."""
    status_code = 429
    detail = "Room is full."

    def __init__(self, room_id=None):
        self.room_id = room_id
        super().__init__()


class NotFound(RelayError):
    status_code = 404
    detail = "Not found"


# ============ Relay ============

class SendFailed(RelayError):
    """The peer channel could not take the message; handled as a disconnect."""

    def __init__(self, connection_id):
        self.connection_id = connection_id
        super().__init__(f"Send to connection {connection_id} failed")


# ============ Front door ============

class RoutingError(RelayError):
    status_code = 404
    detail = "Not found"


class NameTooLong(RoutingError):
    detail = "Name too long"


class MissingRoomName(RoutingError):
    status_code = 405
    detail = "Method not allowed"
