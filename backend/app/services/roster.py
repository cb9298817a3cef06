"""
Roster derivation shared by the server endpoint and the client synchronizer.

Records come from the database or straight off the wire, so they may be
partial: missing status means "registered", missing or junk counts mean 0,
missing timestamps sort last. Nothing here raises on a malformed record.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from app.models.registration import STATUS_ARRIVED, STATUS_CANCELLED, STATUS_REGISTERED
from app.schemas.roster import RosterGuest, RosterSnapshot, RosterStats

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_STATUSES = (STATUS_REGISTERED, STATUS_ARRIVED, STATUS_CANCELLED)


def _pick(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _as_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return count if count > 0 else 0


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_guest(record: Mapping[str, Any]) -> RosterGuest:
    status = _pick(record, "status")
    if status not in _STATUSES:
        status = STATUS_REGISTERED

    verification = _pick(record, "is_verified", "isVerified", "verification_status", "verificationStatus")
    if isinstance(verification, str):
        is_verified = verification == "verified"
    else:
        is_verified = bool(verification)

    slot_id = _pick(record, "slot_id", "slotId")
    try:
        slot_id = int(slot_id) if slot_id is not None else None
    except (TypeError, ValueError):
        slot_id = None

    return RosterGuest(
        id=str(_pick(record, "id") or ""),
        slot_id=slot_id,
        name=str(_pick(record, "name") or ""),
        phone=str(_pick(record, "phone") or ""),
        count=_as_count(_pick(record, "count")),
        status=status,
        is_verified=is_verified,
        access_token=_pick(record, "access_token", "accessToken"),
        created_at=_as_datetime(_pick(record, "created_at", "createdAt")) or EPOCH,
        arrived_at=_as_datetime(_pick(record, "arrived_at", "arrivedAt")),
    )


def summarize(
    records: Iterable[Mapping[str, Any] | RosterGuest],
    event_id: int,
    version: int = 0,
) -> RosterSnapshot:
    """Build the full snapshot: guests newest first plus derived counts."""
    guests = [
        record if isinstance(record, RosterGuest) else coerce_guest(record)
        for record in records
    ]
    guests.sort(key=lambda guest: guest.created_at, reverse=True)

    stats = RosterStats()
    for guest in guests:
        if guest.status == STATUS_CANCELLED:
            continue
        stats.total_registered += 1
        stats.total_registered_party += guest.count
        if guest.status == STATUS_ARRIVED:
            stats.total_arrived += 1
            stats.total_arrived_party += guest.count

    return RosterSnapshot(event_id=event_id, roster_version=version, guests=guests, stats=stats)
