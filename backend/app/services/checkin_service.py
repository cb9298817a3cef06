"""
Check-in service: arrival transitions driven by scanners and staff.

CONCURRENCY STRATEGY: Idempotent conditional UPDATE
===================================================

Two scanners at two doors can read the same guest's code at the same
moment. The arrival write is

    UPDATE registrations SET status='arrived', arrived_at=:now
    WHERE id = :id AND status = 'registered'

Exactly one scanner matches the row; the other gets rows_affected == 0 and
reports "already arrived" with the stored arrived_at, which never moves
once set. Undo is the mirror image (WHERE status = 'arrived').
"""

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import RegistrationCancelledError, RegistrationNotFoundError
from app.core.logging import get_logger
from app.core.metrics import record_checkin
from app.core.security import generate_guest_token
from app.db.base import utcnow
from app.models.registration import (
    Registration,
    STATUS_ARRIVED,
    STATUS_CANCELLED,
    STATUS_REGISTERED,
    VERIFICATION_VERIFIED,
)
from app.schemas.checkin import GuestView, WalkInCreate
from app.services import capacity_service
from app.services.event_service import bump_roster_version, get_event
from app.services.registration_service import get_by_token, get_registration
from app.utils.phone import mask_phone

logger = get_logger(__name__)

ARRIVED_BY_SCANNER = "scanner"
ARRIVED_BY_MANUAL = "manual"
ARRIVED_BY_WALK_IN = "walk_in"


def guest_view(registration: Registration) -> GuestView:
    return GuestView(
        id=registration.id,
        event_id=registration.event_id,
        slot_id=registration.slot_id,
        name=registration.name,
        phone=mask_phone(registration.phone),
        count=registration.count,
        status=registration.status,
        is_verified=registration.verification_status == VERIFICATION_VERIFIED,
        avatar_url=registration.avatar_url,
        avatar_type=registration.avatar_type or "none",
        registered_at=registration.created_at,
        arrived_at=registration.arrived_at,
    )


async def _lookup(
    db: AsyncSession,
    token: str,
    event_id: int | None,
    operator_id: int | None,
) -> Registration:
    try:
        registration = await get_by_token(db, token, event_id)
        if operator_id is not None:
            event = await get_event(db, registration.event_id)
            if event.organizer_id != operator_id:
                raise RegistrationNotFoundError()
    except RegistrationNotFoundError:
        record_checkin("not_found")
        logger.warning("checkin_not_found", event_id=event_id)
        raise
    return registration


async def _mark_arrived(db: AsyncSession, registration: Registration, arrived_by: str) -> bool:
    """Flip registered -> arrived. False when another writer got there first."""
    result = await db.execute(
        update(Registration)
        .where(Registration.id == registration.id, Registration.status == STATUS_REGISTERED)
        .values(status=STATUS_ARRIVED, arrived_at=utcnow(), arrived_by=arrived_by, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False
    await bump_roster_version(db, registration.event_id)
    await db.commit()
    return True


async def _mark_registered(db: AsyncSession, registration: Registration) -> bool:
    result = await db.execute(
        update(Registration)
        .where(Registration.id == registration.id, Registration.status == STATUS_ARRIVED)
        .values(status=STATUS_REGISTERED, arrived_at=None, arrived_by=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False
    await bump_roster_version(db, registration.event_id)
    await db.commit()
    return True


async def checkin(
    db: AsyncSession,
    token: str,
    event_id: int | None = None,
    operator_id: int | None = None,
) -> tuple[Registration, bool]:
    """
    Admit the guest holding `token`.

    Returns (registration, already_arrived). Repeating the call is safe:
    the second call reports already_arrived=True and arrived_at is unchanged.
    """
    registration = await _lookup(db, token, event_id, operator_id)
    if registration.status == STATUS_CANCELLED:
        record_checkin("cancelled")
        logger.warning("checkin_rejected", registration_id=registration.id, reason="cancelled")
        raise RegistrationCancelledError()

    arrived_now = await _mark_arrived(db, registration, ARRIVED_BY_SCANNER)
    registration = await get_registration(db, registration.id)

    if not arrived_now:
        if registration.status == STATUS_CANCELLED:
            record_checkin("cancelled")
            raise RegistrationCancelledError()
        record_checkin("already_arrived")
        logger.info("checkin_already_arrived", registration_id=registration.id, arrived_at=str(registration.arrived_at))
        return registration, True

    record_checkin("arrived")
    logger.info(
        "checkin_arrived",
        registration_id=registration.id,
        event_id=registration.event_id,
        party=registration.count,
    )
    return registration, False


async def query(
    db: AsyncSession,
    token: str,
    event_id: int | None = None,
    operator_id: int | None = None,
) -> Registration:
    """Read-only lookup for the legacy fetch-then-confirm scanner flow."""
    return await _lookup(db, token, event_id, operator_id)


async def undo_checkin(
    db: AsyncSession,
    token: str,
    event_id: int | None = None,
    operator_id: int | None = None,
) -> tuple[Registration, bool]:
    """Revert an arrival. Returns (registration, reverted)."""
    registration = await _lookup(db, token, event_id, operator_id)
    reverted = await _mark_registered(db, registration)
    registration = await get_registration(db, registration.id)

    if reverted:
        record_checkin("undone")
        logger.info("checkin_undone", registration_id=registration.id, event_id=registration.event_id)
    else:
        logger.info("checkin_undo_noop", registration_id=registration.id, status=registration.status)
    return registration, reverted


async def set_arrival(
    db: AsyncSession,
    event_id: int,
    registration_id: int,
    arrived: bool,
) -> tuple[Registration, bool]:
    """Manual toggle from the guest list. Returns (registration, changed)."""
    registration = await get_registration(db, registration_id)
    if registration.event_id != event_id:
        raise RegistrationNotFoundError()
    if registration.status == STATUS_CANCELLED:
        raise RegistrationCancelledError()

    if arrived:
        changed = await _mark_arrived(db, registration, ARRIVED_BY_MANUAL)
    else:
        changed = await _mark_registered(db, registration)

    registration = await get_registration(db, registration_id)
    logger.info(
        "arrival_toggled",
        registration_id=registration_id,
        arrived=arrived,
        changed=changed,
    )
    return registration, changed


async def quick_add_walk_in(
    db: AsyncSession,
    event_id: int,
    data: WalkInCreate,
) -> Registration:
    """Register and admit a guest at the door in one step."""
    await get_event(db, event_id)
    slot = await capacity_service.load_slot(db, data.slot_id, event_id)

    name = (data.name or "").strip()
    if not name:
        existing = await db.scalar(
            select(func.count(Registration.id)).where(Registration.event_id == event_id)
        )
        name = f"Guest #{(existing or 0) + 1}"

    await capacity_service.reserve(db, slot.id, data.count)

    now = utcnow()
    registration = Registration(
        event_id=event_id,
        slot_id=slot.id,
        name=name,
        phone=None,
        count=data.count,
        avatar_type="none",
        access_token=generate_guest_token(),
        verification_status=VERIFICATION_VERIFIED,
        verified_at=now,
        status=STATUS_ARRIVED,
        arrived_at=now,
        arrived_by=ARRIVED_BY_WALK_IN,
        registered_by_operator=True,
    )
    db.add(registration)
    await db.flush()
    await bump_roster_version(db, event_id)
    await db.commit()

    record_checkin("walk_in")
    logger.info("walk_in_added", registration_id=registration.id, event_id=event_id, party=data.count)
    return await get_registration(db, registration.id)
