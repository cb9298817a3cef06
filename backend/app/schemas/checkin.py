"""
Pydantic schemas for scanner check-in, undo and walk-ins.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from app.schemas.base import CamelModel


class CheckinRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=64)
    action: Literal["checkin", "query"] = "checkin"
    event_id: Optional[int] = None


class UndoRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=64)
    event_id: Optional[int] = None


class ArrivalToggle(CamelModel):
    arrived: bool


class WalkInCreate(CamelModel):
    slot_id: int
    name: Optional[str] = Field(None, max_length=120)
    count: int = Field(default=1, ge=1, le=10)


class GuestView(CamelModel):
    id: int
    event_id: int
    slot_id: int
    name: str
    phone: str
    count: int
    status: str
    is_verified: bool
    avatar_url: Optional[str] = None
    avatar_type: str = "none"
    registered_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None


class CheckinResponse(CamelModel):
    guest: GuestView
    already_arrived: bool
    checked_in_at: Optional[datetime] = None


class UndoResponse(CamelModel):
    guest: GuestView
    reverted: bool
