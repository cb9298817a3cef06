"""
Server-side roster snapshots, read through the Redis cache.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.registration import Registration
from app.schemas.roster import RosterSnapshot
from app.services import cache_service
from app.services.event_service import get_event
from app.services.roster import summarize

logger = get_logger(__name__)


def _as_record(registration: Registration) -> dict:
    return {
        "id": registration.id,
        "slot_id": registration.slot_id,
        "name": registration.name,
        "phone": registration.phone,
        "count": registration.count,
        "status": registration.status,
        "verification_status": registration.verification_status,
        "access_token": registration.access_token,
        "created_at": registration.created_at,
        "arrived_at": registration.arrived_at,
    }


async def build_snapshot(db: AsyncSession, event_id: int) -> RosterSnapshot:
    event = await get_event(db, event_id)
    result = await db.execute(
        select(Registration)
        .where(Registration.event_id == event_id)
        .order_by(Registration.created_at.desc(), Registration.id.desc())
        .execution_options(populate_existing=True)
    )
    records = [_as_record(registration) for registration in result.scalars().all()]
    return summarize(records, event_id=event_id, version=event.roster_version)


async def get_roster(db: AsyncSession, event_id: int) -> dict:
    """Roster snapshot as wire JSON, cached per event."""
    cached = await cache_service.get_cached_roster(event_id)
    if cached is not None:
        return cached

    snapshot = await build_snapshot(db, event_id)
    data = snapshot.model_dump(mode="json", by_alias=True)
    await cache_service.set_cached_roster(event_id, data)

    logger.info(
        "roster_built",
        event_id=event_id,
        roster_version=snapshot.roster_version,
        guests=len(snapshot.guests),
    )
    return data
