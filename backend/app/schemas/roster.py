"""
Pydantic schemas for the roster snapshot.
"""

from datetime import datetime
from typing import Optional

from app.schemas.base import CamelModel


class RosterGuest(CamelModel):
    id: str
    slot_id: Optional[int] = None
    name: str = ""
    phone: str = ""
    count: int = 0
    status: str = "registered"
    is_verified: bool = False
    access_token: Optional[str] = None
    created_at: datetime
    arrived_at: Optional[datetime] = None


class RosterStats(CamelModel):
    total_registered: int = 0
    total_registered_party: int = 0
    total_arrived: int = 0
    total_arrived_party: int = 0


class RosterSnapshot(CamelModel):
    event_id: int
    roster_version: int = 0
    guests: list[RosterGuest] = []
    stats: RosterStats = RosterStats()
