from app.schemas.user import UserCreate, UserResponse, UserLogin, Token
from app.schemas.event import EventCreate, EventResponse, SlotCreate, SlotResponse
from app.schemas.registration import (
    RegistrationCreate,
    RegistrationCreated,
    RegistrationStatus,
    CancelRequest,
    CancelResponse,
)
from app.schemas.otp import OtpRequest, OtpSendResponse, OtpVerifyResponse
from app.schemas.checkin import (
    CheckinRequest,
    CheckinResponse,
    GuestView,
    UndoRequest,
    UndoResponse,
    ArrivalToggle,
    WalkInCreate,
)
from app.schemas.roster import RosterGuest, RosterStats, RosterSnapshot

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "Token",
    "EventCreate", "EventResponse", "SlotCreate", "SlotResponse",
    "RegistrationCreate", "RegistrationCreated", "RegistrationStatus",
    "CancelRequest", "CancelResponse",
    "OtpRequest", "OtpSendResponse", "OtpVerifyResponse",
    "CheckinRequest", "CheckinResponse", "GuestView",
    "UndoRequest", "UndoResponse", "ArrivalToggle", "WalkInCreate",
    "RosterGuest", "RosterStats", "RosterSnapshot",
]
