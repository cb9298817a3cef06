"""
Scanner and guest-list endpoints. All of them require an operator.

POST /checkin is idempotent: scanning the same code twice answers
alreadyArrived=true with the original checkedInAt.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.metrics import checkin_latency
from app.db.session import get_db
from app.models.user import User
from app.schemas.checkin import (
    ArrivalToggle,
    CheckinRequest,
    CheckinResponse,
    GuestView,
    UndoRequest,
    UndoResponse,
    WalkInCreate,
)
from app.services import checkin_service
from app.services.auth_service import get_current_operator
from app.services.cache_service import invalidate_roster
from app.services.event_service import get_owned_event

router = APIRouter(tags=["Check-in"])


@router.post("/checkin", response_model=CheckinResponse)
async def checkin_endpoint(
    request: CheckinRequest,
    operator: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """
    Check a guest in by access token (action "checkin"), or only look the
    guest up (action "query").
    """
    with checkin_latency.time():
        if request.action == "query":
            registration = await checkin_service.query(db, request.token, request.event_id, operator.id)
            return CheckinResponse(
                guest=checkin_service.guest_view(registration),
                already_arrived=registration.arrived_at is not None,
                checked_in_at=registration.arrived_at,
            )

        registration, already_arrived = await checkin_service.checkin(
            db, request.token, request.event_id, operator.id
        )

    if not already_arrived:
        await invalidate_roster(registration.event_id)

    return CheckinResponse(
        guest=checkin_service.guest_view(registration),
        already_arrived=already_arrived,
        checked_in_at=registration.arrived_at,
    )


@router.post("/checkin/undo", response_model=UndoResponse)
async def undo_endpoint(
    request: UndoRequest,
    operator: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    registration, reverted = await checkin_service.undo_checkin(
        db, request.token, request.event_id, operator.id
    )
    if reverted:
        await invalidate_roster(registration.event_id)
    return UndoResponse(guest=checkin_service.guest_view(registration), reverted=reverted)


@router.post("/events/{event_id}/guests/{registration_id}/arrival", response_model=GuestView)
async def arrival_endpoint(
    event_id: int,
    registration_id: int,
    toggle: ArrivalToggle,
    operator: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """Manual arrival toggle from the guest list."""
    await get_owned_event(db, event_id, operator.id)
    registration, changed = await checkin_service.set_arrival(db, event_id, registration_id, toggle.arrived)
    if changed:
        await invalidate_roster(event_id)
    return checkin_service.guest_view(registration)


@router.post(
    "/events/{event_id}/walk-ins",
    response_model=GuestView,
    status_code=status.HTTP_201_CREATED,
)
async def walk_in_endpoint(
    event_id: int,
    data: WalkInCreate,
    operator: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """Register and admit a guest at the door; takes seats like any registration."""
    await get_owned_event(db, event_id, operator.id)
    registration = await checkin_service.quick_add_walk_in(db, event_id, data)
    await invalidate_roster(event_id)
    return checkin_service.guest_view(registration)
