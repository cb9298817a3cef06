"""
Access link delivery: the guest's QR page link over WhatsApp / SMS.

Sent once after a successful verification, and again on request when a
guest has lost it. Delivery is best effort: a gateway failure is logged and
counted, never turned into a failed verification.

The resend endpoint answers the same way whether or not a verified guest
with that phone exists, so it cannot be used to enumerate guests.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import InvalidPhoneError, RateLimitedError, ServiceNotConfiguredError
from app.core.logging import get_logger
from app.core.metrics import record_access_link
from app.db.base import utcnow
from app.infrastructure.messaging import MessagingGateway, SendResult
from app.models.registration import Registration, STATUS_CANCELLED, VERIFICATION_VERIFIED
from app.services.event_service import get_event
from app.services.interfaces.rate_limit import RateLimiter
from app.services.token_resolver import landing_url
from app.utils.phone import normalize_phone

logger = get_logger(__name__)
settings = get_settings()


async def deliver_access_link(
    db: AsyncSession,
    gateway: MessagingGateway,
    registration: Registration,
    locale: str = "he",
    trigger: str = "verified",
) -> SendResult | None:
    """Send the QR page link for `registration`. None when messaging is off."""
    if not gateway.is_configured:
        record_access_link(trigger, "skipped")
        return None

    event = await get_event(db, registration.event_id)
    result = await gateway.send_access_link(
        registration.phone,
        landing_url(registration.access_token, settings.PUBLIC_BASE_URL),
        guest_name=registration.name,
        event_title=event.title,
        locale=locale,
    )

    if result.success:
        record_access_link(trigger, "sent")
        logger.info("access_link_sent", registration_id=registration.id, method=result.method, trigger=trigger)
    else:
        record_access_link(trigger, "failed")
        logger.error(
            "access_link_send_failed",
            registration_id=registration.id,
            method=result.method,
            error=result.error,
            trigger=trigger,
        )
    return result


async def resend_access_link(
    db: AsyncSession,
    gateway: MessagingGateway,
    limiter: RateLimiter,
    event_id: int,
    phone: str,
    locale: str = "he",
) -> bool:
    """
    Look up the guest's live, verified registration in the event by phone and
    send its link again. True when a message went out.
    """
    if not gateway.is_configured:
        raise ServiceNotConfiguredError()

    normalized = normalize_phone(phone, settings.DEFAULT_COUNTRY_CODE)
    if normalized is None:
        raise InvalidPhoneError()

    await get_event(db, event_id)

    limit = await limiter.hit(
        f"access-link:{event_id}:{normalized}",
        settings.ACCESS_LINK_RESEND_LIMIT,
        settings.ACCESS_LINK_RESEND_WINDOW_SECONDS,
    )
    if not limit.allowed:
        retry_after = max(0, int((limit.reset_at - utcnow()).total_seconds()))
        raise RateLimitedError(retryAfter=retry_after)

    result = await db.execute(
        select(Registration)
        .where(
            Registration.event_id == event_id,
            Registration.phone == normalized,
            Registration.status != STATUS_CANCELLED,
            Registration.verification_status == VERIFICATION_VERIFIED,
        )
        .order_by(Registration.created_at.desc(), Registration.id.desc())
        .limit(1)
    )
    registration = result.scalars().first()
    if registration is None:
        logger.info("access_link_no_guest", event_id=event_id)
        return False

    sent = await deliver_access_link(db, gateway, registration, locale, trigger="resend")
    return bool(sent and sent.success)
