"""
Capacity ledger: per-slot registered party size against capacity.

CONCURRENCY STRATEGY: Conditional UPDATE
========================================

Problem:
  Two walk-up registrations race for the last seats of a slot.
  Both read registered_count=8 of 10, both add 2, both succeed.
  Result: 12 people in a 10-person slot.

Solution:
  The admission check and the increment are one statement:

    UPDATE slots SET registered_count = registered_count + :n
    WHERE id = :slot AND (capacity = 0 OR registered_count + :n <= capacity)

  The database evaluates the predicate against the latest committed row
  while holding the row lock, so at most one of two jointly-overbooking
  intents can match. rows_affected == 0 means "capacity exceeded"; there is
  nothing to retry because a later read can only show fewer free seats.

  The registration insert runs in the same transaction, so a failure there
  (e.g. the partial unique index on (slot_id, phone)) rolls the increment
  back with it.
"""

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import CapacityExceededError, SlotNotFoundError
from app.core.logging import get_logger
from app.core.metrics import capacity_retries
from app.models.slot import Slot

logger = get_logger(__name__)


async def load_slot(db: AsyncSession, slot_id: int, event_id: int | None = None) -> Slot:
    """Read the slot's committed state, bypassing any stale identity-map copy."""
    query = select(Slot).where(Slot.id == slot_id).execution_options(populate_existing=True)
    if event_id is not None:
        query = query.where(Slot.event_id == event_id)
    slot = (await db.execute(query)).scalar_one_or_none()
    if slot is None:
        raise SlotNotFoundError()
    return slot


def availability(slot: Slot) -> int | None:
    """Remaining seats, or None when the slot is unlimited."""
    return slot.available


async def reserve(db: AsyncSession, slot_id: int, count: int) -> Slot:
    """Atomically admit `count` people into the slot or raise CapacityExceededError."""
    result = await db.execute(
        update(Slot)
        .where(
            Slot.id == slot_id,
            or_(Slot.capacity == 0, Slot.registered_count + count <= Slot.capacity),
        )
        .values(registered_count=Slot.registered_count + count)
        .execution_options(synchronize_session=False)
    )

    slot = await load_slot(db, slot_id)

    if result.rowcount == 0:
        capacity_retries.inc()
        available = availability(slot) or 0
        logger.warning(
            "capacity_exceeded",
            slot_id=slot_id,
            requested=count,
            capacity=slot.capacity,
            registered=slot.registered_count,
        )
        raise CapacityExceededError(
            availableSlots=available,
            capacity=slot.capacity,
            currentCount=slot.registered_count,
        )

    logger.info(
        "capacity_reserved",
        slot_id=slot_id,
        seats=count,
        registered=slot.registered_count,
        capacity=slot.capacity,
    )
    return slot


async def release(db: AsyncSession, slot_id: int, count: int) -> None:
    """Give `count` seats back to the slot (cancellation)."""
    result = await db.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.registered_count >= count)
        .values(registered_count=Slot.registered_count - count)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # Counter drifted below the sum of active registrations; never go negative.
        logger.error("capacity_release_underflow", slot_id=slot_id, seats=count)
        await db.execute(
            update(Slot)
            .where(Slot.id == slot_id)
            .values(registered_count=0)
            .execution_options(synchronize_session=False)
        )
        return

    logger.info("capacity_released", slot_id=slot_id, seats=count)
