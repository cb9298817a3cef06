"""
Event service handling event scopes and their slots.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import EventNotFoundError
from app.core.logging import get_logger
from app.models.event import Event
from app.models.slot import Slot
from app.schemas.event import EventCreate, SlotCreate

logger = get_logger(__name__)


async def create_event(db: AsyncSession, event_data: EventCreate, organizer_id: int) -> Event:
    """Create an event scope together with its initial slots."""
    event = Event(
        title=event_data.title,
        description=event_data.description,
        date=event_data.date,
        location=event_data.location,
        organizer_id=organizer_id,
    )
    db.add(event)
    await db.flush()

    for slot_data in event_data.slots:
        db.add(_build_slot(event.id, slot_data))

    await db.commit()
    event = await get_event(db, event.id)

    logger.info("event_created", event_id=event.id, title=event.title, slots=len(event.slots))
    return event


def _build_slot(event_id: int, slot_data: SlotCreate) -> Slot:
    return Slot(
        event_id=event_id,
        title=slot_data.title,
        starts_at=slot_data.starts_at,
        ends_at=slot_data.ends_at,
        capacity=slot_data.capacity,
        registered_count=0,
    )


async def add_slot(db: AsyncSession, event_id: int, slot_data: SlotCreate, organizer_id: int) -> Slot:
    await get_owned_event(db, event_id, organizer_id)
    slot = _build_slot(event_id, slot_data)
    db.add(slot)
    await db.commit()
    await db.refresh(slot)
    logger.info("slot_created", event_id=event_id, slot_id=slot.id, capacity=slot.capacity)
    return slot


async def get_event(db: AsyncSession, event_id: int) -> Event:
    """Get a single event by ID with fresh slot counters."""
    result = await db.execute(
        select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()

    if not event:
        raise EventNotFoundError()
    return event


async def get_owned_event(db: AsyncSession, event_id: int, organizer_id: int) -> Event:
    """Operators only see their own events; anything else is reported as missing."""
    event = await get_event(db, event_id)
    if event.organizer_id != organizer_id:
        logger.warning("event_access_denied", event_id=event_id, user_id=organizer_id)
        raise EventNotFoundError()
    return event


async def list_events(db: AsyncSession, organizer_id: int) -> list[Event]:
    result = await db.execute(
        select(Event)
        .where(Event.organizer_id == organizer_id)
        .order_by(Event.created_at.desc())
    )
    return list(result.scalars().all())


async def bump_roster_version(db: AsyncSession, event_id: int) -> None:
    """Mark the event's roster as changed for polling synchronizers."""
    await db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(roster_version=Event.roster_version + 1)
        .execution_options(synchronize_session=False)
    )
