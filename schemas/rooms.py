from pydantic import BaseModel
from typing import Optional


class RoomPresenceResponse(BaseModel):
    room_id: str
    kind: str
    name: Optional[str] = None
    occupancy: int
    capacity: int
    is_full: bool
    is_resident: bool
    recorded_connections: Optional[int] = None
