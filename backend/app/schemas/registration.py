"""
Pydantic schemas for registration intents and guest-facing status.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from app.schemas.base import CamelModel


class RegistrationCreate(CamelModel):
    slot_id: int
    name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=1, max_length=32)
    count: int = Field(default=1, ge=1, le=10)
    avatar_url: Optional[str] = Field(None, max_length=1024)
    avatar_type: Literal["photo", "emoji", "none"] = "none"
    capacity: Optional[int] = Field(None, ge=0)


class RegistrationCreated(CamelModel):
    registration_id: int
    registration_count: int
    access_token: str
    count: int
    verification_status: str


class RegistrationStatus(CamelModel):
    registration_id: int
    event_id: int
    slot_id: int
    name: str
    phone: str
    count: int
    status: str
    verification_status: str
    access_token: str
    qr_payload: str
    landing_url: str
    arrived_at: Optional[datetime]
    created_at: datetime


class CancelRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=64)


class CancelResponse(CamelModel):
    message: str
    registration_id: int
    status: str
    registration_count: int


class ResendLinkRequest(CamelModel):
    event_id: int
    phone: str = Field(..., min_length=1, max_length=32)
    locale: Literal["he", "en"] = "he"


class ResendLinkResponse(CamelModel):
    success: bool = True
