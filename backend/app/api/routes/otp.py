"""
OTP endpoint: one URL, two actions.

  {"action": "send", "registrationId", "phone", "locale"}
  {"action": "verify", "registrationId", "phone", "code"}

A successful verify also sends the guest their QR page link.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.session import get_db
from app.infrastructure.messaging import MessagingGateway, get_messaging_gateway
from app.schemas.otp import OtpRequest, OtpSendResponse, OtpVerifyResponse
from app.services.access_link_service import deliver_access_link
from app.services.cache_service import invalidate_roster
from app.services.interfaces.rate_limit import RateLimiter
from app.services.otp_service import send_otp, verify_otp
from app.services.strategy_factory import get_rate_limiter

settings = get_settings()

router = APIRouter(prefix="/otp", tags=["OTP"])


@router.post("", response_model=OtpSendResponse | OtpVerifyResponse)
async def otp_endpoint(
    request: OtpRequest,
    db: AsyncSession = Depends(get_db),
    gateway: MessagingGateway = Depends(get_messaging_gateway),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    if request.action == "send":
        challenge, result = await send_otp(
            db,
            gateway,
            limiter,
            request.registration_id,
            request.phone,
            request.locale,
        )
        return OtpSendResponse(expires_at=challenge.expires_at, method=result.method)

    registration = await verify_otp(db, request.registration_id, request.phone, request.code)
    await invalidate_roster(registration.event_id)
    if settings.SEND_ACCESS_LINK_ON_VERIFY:
        await deliver_access_link(db, gateway, registration, request.locale)
    return OtpVerifyResponse(qr_token=registration.access_token, registration_id=registration.id)
