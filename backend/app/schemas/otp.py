"""
Pydantic schemas for the OTP send/verify endpoint.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field, model_validator

from app.schemas.base import CamelModel


class OtpRequest(CamelModel):
    action: Literal["send", "verify"]
    registration_id: int
    phone: str = Field(..., min_length=1, max_length=32)
    code: Optional[str] = Field(None, max_length=12)
    locale: Literal["he", "en"] = "he"

    @model_validator(mode="after")
    def code_required_for_verify(self):
        if self.action == "verify" and not self.code:
            raise ValueError("code is required for verify action")
        return self


class OtpSendResponse(CamelModel):
    success: bool = True
    expires_at: datetime
    method: str


class OtpVerifyResponse(CamelModel):
    success: bool = True
    qr_token: str
    registration_id: int
