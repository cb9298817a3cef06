"""
Registration service: capacity-safe registration intents and cancellation.

A registration intent is one transaction:
  1. duplicate-phone pre-check (friendly error for the common case)
  2. conditional capacity increment (capacity_service.reserve)
  3. registration insert, guarded by the partial unique index on
     (slot_id, phone) for the racing case the pre-check cannot see
  4. roster version bump, commit

Any failure after step 2 rolls back the whole transaction, increment
included.
"""

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import (
    AlreadyCancelledError,
    CapacityExceededError,
    InvalidPhoneError,
    PhoneAlreadyRegisteredError,
    RegistrationNotFoundError,
)
from app.core.logging import get_logger
from app.core.metrics import record_registration
from app.core.security import generate_guest_token
from app.db.base import utcnow
from app.models.otp_challenge import OtpChallenge
from app.models.registration import (
    Registration,
    STATUS_CANCELLED,
    STATUS_REGISTERED,
    VERIFICATION_UNVERIFIED,
)
from app.models.slot import Slot
from app.schemas.registration import RegistrationCreate, RegistrationStatus
from app.services import capacity_service
from app.services.event_service import bump_roster_version
from app.services.token_resolver import landing_url, qr_payload
from app.utils.phone import mask_phone, normalize_phone

logger = get_logger(__name__)
settings = get_settings()


async def find_active_registration(db: AsyncSession, slot_id: int, phone: str) -> Registration | None:
    result = await db.execute(
        select(Registration).where(
            Registration.slot_id == slot_id,
            Registration.phone == phone,
            Registration.status != STATUS_CANCELLED,
        )
    )
    return result.scalars().first()


async def get_registration(db: AsyncSession, registration_id: int) -> Registration:
    result = await db.execute(
        select(Registration)
        .where(Registration.id == registration_id)
        .execution_options(populate_existing=True)
    )
    registration = result.scalar_one_or_none()
    if registration is None:
        raise RegistrationNotFoundError()
    return registration


async def get_by_token(db: AsyncSession, token: str, event_id: int | None = None) -> Registration:
    """Look up a registration by access token; tokens match case-insensitively."""
    token = (token or "").strip()
    if not token:
        raise RegistrationNotFoundError()

    query = (
        select(Registration)
        .where(Registration.access_token.in_({token, token.upper()}))
        .execution_options(populate_existing=True)
    )
    if event_id is not None:
        query = query.where(Registration.event_id == event_id)

    registration = (await db.execute(query)).scalars().first()
    if registration is None:
        raise RegistrationNotFoundError()
    return registration


async def register_intent(
    db: AsyncSession,
    event_id: int,
    data: RegistrationCreate,
) -> tuple[Registration, Slot]:
    """Create an unverified registration, admitting its party into the slot."""
    phone = normalize_phone(data.phone, settings.DEFAULT_COUNTRY_CODE)
    if phone is None:
        raise InvalidPhoneError()

    slot = await capacity_service.load_slot(db, data.slot_id, event_id)
    if data.capacity is not None and data.capacity != slot.capacity:
        logger.info(
            "registration_stale_client_capacity",
            slot_id=slot.id,
            client_capacity=data.capacity,
            capacity=slot.capacity,
        )

    if await find_active_registration(db, slot.id, phone):
        record_registration("duplicate_phone")
        logger.warning("registration_rejected", reason="duplicate_phone", slot_id=slot.id, phone=phone)
        raise PhoneAlreadyRegisteredError()

    try:
        slot = await capacity_service.reserve(db, slot.id, data.count)
    except CapacityExceededError:
        record_registration("capacity_exceeded")
        raise

    registration = Registration(
        event_id=event_id,
        slot_id=slot.id,
        name=data.name,
        phone=phone,
        count=data.count,
        avatar_url=data.avatar_url,
        avatar_type=data.avatar_type,
        access_token=generate_guest_token(),
        verification_status=VERIFICATION_UNVERIFIED,
        status=STATUS_REGISTERED,
    )
    db.add(registration)
    try:
        await db.flush()
    except IntegrityError:
        # Lost the race against a concurrent intent for the same phone.
        await db.rollback()
        record_registration("duplicate_phone")
        logger.warning("registration_rejected", reason="duplicate_phone_race", slot_id=slot.id, phone=phone)
        raise PhoneAlreadyRegisteredError()

    await bump_roster_version(db, event_id)
    await db.commit()

    record_registration("created")
    logger.info(
        "registration_created",
        registration_id=registration.id,
        event_id=event_id,
        slot_id=slot.id,
        seats=data.count,
        registered=slot.registered_count,
    )
    return registration, slot


async def cancel_registration(db: AsyncSession, token: str) -> tuple[Registration, Slot]:
    """Mark the registration cancelled and hand its seats back to the slot."""
    registration = await get_by_token(db, token)

    result = await db.execute(
        update(Registration)
        .where(Registration.id == registration.id, Registration.status != STATUS_CANCELLED)
        .values(status=STATUS_CANCELLED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise AlreadyCancelledError()

    await capacity_service.release(db, registration.slot_id, registration.count)
    await db.execute(delete(OtpChallenge).where(OtpChallenge.registration_id == registration.id))
    await bump_roster_version(db, registration.event_id)
    await db.commit()

    registration = await get_registration(db, registration.id)
    slot = await capacity_service.load_slot(db, registration.slot_id)

    record_registration("cancelled")
    logger.info(
        "registration_cancelled",
        registration_id=registration.id,
        slot_id=slot.id,
        seats_restored=registration.count,
    )
    return registration, slot


async def get_registration_status(db: AsyncSession, token: str) -> RegistrationStatus:
    """Guest-facing summary: masked phone plus what the QR code and link carry."""
    registration = await get_by_token(db, token)
    return RegistrationStatus(
        registration_id=registration.id,
        event_id=registration.event_id,
        slot_id=registration.slot_id,
        name=registration.name,
        phone=mask_phone(registration.phone),
        count=registration.count,
        status=registration.status,
        verification_status=registration.verification_status,
        access_token=registration.access_token,
        qr_payload=qr_payload(registration.access_token, settings.SCANNER_APP_TAG),
        landing_url=landing_url(registration.access_token, settings.PUBLIC_BASE_URL),
        arrived_at=registration.arrived_at,
        created_at=registration.created_at,
    )
