"""
Domain error codes and exceptions.

Services raise DomainError subclasses; the handler registered in main.py
renders them as {"error": message, "errorCode": code, ...extra}.
"""

from enum import Enum
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    SLOT_NOT_FOUND = "SLOT_NOT_FOUND"
    INVALID_PHONE = "INVALID_PHONE"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    PHONE_ALREADY_REGISTERED = "PHONE_ALREADY_REGISTERED"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    REGISTRATION_CANCELLED = "REGISTRATION_CANCELLED"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
    SERVICE_NOT_CONFIGURED = "SERVICE_NOT_CONFIGURED"
    RATE_LIMITED = "RATE_LIMITED"
    SEND_FAILED = "SEND_FAILED"
    NO_CODE = "NO_CODE"
    EXPIRED = "EXPIRED"
    BLOCKED = "BLOCKED"
    INVALID_CODE = "INVALID_CODE"
    CONFLICT = "CONFLICT"


class DomainError(Exception):
    """Base domain error with code, user-safe message and HTTP status."""

    code: ErrorCode = ErrorCode.CONFLICT
    message: str = "Request could not be completed"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        if message is not None:
            self.message = message
        self.extra = extra
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_payload(self) -> dict:
        return {"error": self.message, "errorCode": self.code.value, **self.extra}


class RegistrationNotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    message = "Registration not found"
    status_code = status.HTTP_404_NOT_FOUND


class EventNotFoundError(DomainError):
    code = ErrorCode.EVENT_NOT_FOUND
    message = "Event not found"
    status_code = status.HTTP_404_NOT_FOUND


class SlotNotFoundError(DomainError):
    code = ErrorCode.SLOT_NOT_FOUND
    message = "Slot not found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidPhoneError(DomainError):
    code = ErrorCode.INVALID_PHONE
    message = "Invalid mobile number"


class CapacityExceededError(DomainError):
    code = ErrorCode.CAPACITY_EXCEEDED
    message = "Capacity exceeded"
    status_code = status.HTTP_409_CONFLICT


class PhoneAlreadyRegisteredError(DomainError):
    code = ErrorCode.PHONE_ALREADY_REGISTERED
    message = "Phone already registered"
    status_code = status.HTTP_409_CONFLICT


class AlreadyCancelledError(DomainError):
    code = ErrorCode.ALREADY_CANCELLED
    message = "Registration is already cancelled"


class RegistrationCancelledError(DomainError):
    code = ErrorCode.REGISTRATION_CANCELLED
    message = "Registration was cancelled"
    status_code = status.HTTP_409_CONFLICT


class AlreadyVerifiedError(DomainError):
    code = ErrorCode.ALREADY_VERIFIED
    message = "Registration is already verified"
    status_code = status.HTTP_409_CONFLICT


class ServiceNotConfiguredError(DomainError):
    code = ErrorCode.SERVICE_NOT_CONFIGURED
    message = "Messaging service not configured"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class RateLimitedError(DomainError):
    code = ErrorCode.RATE_LIMITED
    message = "Too many requests"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class SendFailedError(DomainError):
    code = ErrorCode.SEND_FAILED
    message = "Failed to send verification code"
    status_code = status.HTTP_502_BAD_GATEWAY


class NoPendingCodeError(DomainError):
    code = ErrorCode.NO_CODE
    message = "No pending verification found"
    status_code = status.HTTP_404_NOT_FOUND


class CodeExpiredError(DomainError):
    code = ErrorCode.EXPIRED
    message = "Code expired"


class VerificationBlockedError(DomainError):
    code = ErrorCode.BLOCKED
    message = "Too many failed attempts"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class InvalidCodeError(DomainError):
    code = ErrorCode.INVALID_CODE
    message = "Invalid code"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
