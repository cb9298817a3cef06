"""
Event scope endpoints: operators create events and slots, guests read
slot availability, operators read the (cached) roster.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.models.user import User
from app.schemas.event import EventCreate, EventResponse, SlotCreate, SlotResponse
from app.services.auth_service import get_current_operator
from app.services.event_service import add_slot, create_event, get_event, get_owned_event, list_events
from app.services.roster_service import get_roster
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    operator: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """Create an event scope with its slots. Requires authentication."""
    return await create_event(db, event_data, operator.id)


@router.get("/", response_model=list[EventResponse])
async def list_events_endpoint(
    operator: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """Events owned by the calling operator, newest first."""
    return await list_events(db, operator.id)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Public event page data. Not cached (needs real-time seat counts)."""
    return await get_event(db, event_id)


@router.post("/{event_id}/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def add_slot_endpoint(
    event_id: int,
    slot_data: SlotCreate,
    operator: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    return await add_slot(db, event_id, slot_data, operator.id)


@router.get("/{event_id}/roster")
async def roster_endpoint(
    event_id: int,
    operator: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """
    Full roster snapshot: guests newest first plus derived counts.
    Served from Redis when warm; every roster write invalidates it.
    """
    await get_owned_event(db, event_id, operator.id)
    return await get_roster(db, event_id)
