"""
Pydantic schemas for events and slots.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field, model_validator

from app.schemas.base import CamelModel


class SlotCreate(CamelModel):
    title: Optional[str] = Field(None, max_length=255)
    starts_at: datetime
    ends_at: datetime
    capacity: int = Field(0, ge=0, le=100000)

    @model_validator(mode="after")
    def check_window(self):
        if self.ends_at < self.starts_at:
            raise ValueError("ends_at must not be before starts_at")
        return self


class SlotResponse(CamelModel):
    id: int
    event_id: int
    title: Optional[str]
    starts_at: datetime
    ends_at: datetime
    capacity: int
    registered_count: int
    available: Optional[int]


class EventCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    date: Optional[datetime] = None
    location: Optional[str] = Field(None, max_length=255)
    slots: list[SlotCreate] = Field(default_factory=list)


class EventResponse(CamelModel):
    id: int
    title: str
    description: Optional[str]
    date: Optional[datetime]
    location: Optional[str]
    organizer_id: int
    roster_version: int
    slots: list[SlotResponse]
    created_at: datetime
