"""
Guest registration endpoints: register into a slot, look up by access
token, cancel, and have the QR page link sent again.

CONCURRENCY NOTE:
  POST /events/{id}/registrations is the hot path during a registration
  storm. Capacity is admitted by a single conditional UPDATE inside
  registration_service; see capacity_service for the full rationale.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.infrastructure.messaging import MessagingGateway, get_messaging_gateway
from app.schemas.registration import (
    CancelRequest,
    CancelResponse,
    RegistrationCreate,
    RegistrationCreated,
    RegistrationStatus,
    ResendLinkRequest,
    ResendLinkResponse,
)
from app.services.access_link_service import resend_access_link
from app.services.cache_service import invalidate_roster
from app.services.interfaces.rate_limit import RateLimiter
from app.services.registration_service import cancel_registration, get_registration_status, register_intent
from app.services.strategy_factory import get_rate_limiter

router = APIRouter(tags=["Registrations"])


@router.post(
    "/events/{event_id}/registrations",
    response_model=RegistrationCreated,
    status_code=status.HTTP_201_CREATED,
)
async def create_registration(
    event_id: int,
    data: RegistrationCreate,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a party into a slot. The registration starts unverified.

    Returns 409 CAPACITY_EXCEEDED (with availableSlots) when the party does
    not fit, 409 PHONE_ALREADY_REGISTERED for a second active registration
    of the same phone in the slot.
    """
    registration, slot = await register_intent(db, event_id, data)
    await invalidate_roster(event_id)

    return RegistrationCreated(
        registration_id=registration.id,
        registration_count=slot.registered_count,
        access_token=registration.access_token,
        count=registration.count,
        verification_status=registration.verification_status,
    )


@router.get("/registrations/{token}", response_model=RegistrationStatus)
async def registration_status(token: str, db: AsyncSession = Depends(get_db)):
    """Guest-facing view of one registration (confirmation / QR page)."""
    return await get_registration_status(db, token)


@router.post("/registrations/cancel", response_model=CancelResponse)
async def cancel(request: CancelRequest, db: AsyncSession = Depends(get_db)):
    """Cancel by access token; the party's seats go back to the slot."""
    registration, slot = await cancel_registration(db, request.token)
    await invalidate_roster(registration.event_id)

    return CancelResponse(
        message="Registration cancelled",
        registration_id=registration.id,
        status=registration.status,
        registration_count=slot.registered_count,
    )


@router.post("/registrations/resend-link", response_model=ResendLinkResponse)
async def resend_link(
    request: ResendLinkRequest,
    db: AsyncSession = Depends(get_db),
    gateway: MessagingGateway = Depends(get_messaging_gateway),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Send a verified guest their QR page link again, found by phone.

    Answers success whether or not such a guest exists; 429 RATE_LIMITED
    after a couple of requests per phone and event.
    """
    await resend_access_link(db, gateway, limiter, request.event_id, request.phone, request.locale)
    return ResendLinkResponse()
