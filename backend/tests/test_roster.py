"""
Tests for roster derivation and the operator roster endpoint.
"""

from datetime import datetime, timezone

import pytest
from httpx import AsyncClient

from app.services.roster import EPOCH, coerce_guest, summarize


def test_coerce_accepts_camel_and_snake_keys():
    snake = coerce_guest({"id": 7, "slot_id": 3, "created_at": "2026-03-01T10:00:00Z", "arrived_at": None})
    camel = coerce_guest({"id": 7, "slotId": 3, "createdAt": "2026-03-01T10:00:00Z", "arrivedAt": None})
    assert snake == camel
    assert snake.id == "7"
    assert snake.created_at == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_coerce_fills_defaults_for_junk():
    guest = coerce_guest({"status": "vip", "count": "many", "createdAt": "yesterday", "slotId": "x"})
    assert guest.status == "registered"
    assert guest.count == 0
    assert guest.created_at == EPOCH
    assert guest.slot_id is None
    assert guest.name == ""


@pytest.mark.parametrize("count, expected", [(3, 3), ("2", 2), (-1, 0), (None, 0), (True, 0)])
def test_coerce_count(count, expected):
    assert coerce_guest({"count": count}).count == expected


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), ("verified", True), ("unverified", False), (None, False)],
)
def test_coerce_verification(value, expected):
    assert coerce_guest({"isVerified": value}).is_verified is expected


def test_summarize_stats_skip_cancelled():
    records = [
        {"id": 1, "count": 2, "status": "registered", "createdAt": "2026-03-01T10:00:00Z"},
        {"id": 2, "count": 3, "status": "arrived", "createdAt": "2026-03-01T11:00:00Z"},
        {"id": 3, "count": 4, "status": "cancelled", "createdAt": "2026-03-01T12:00:00Z"},
        {"id": 4, "count": 1, "status": "arrived", "createdAt": "2026-03-01T09:00:00Z"},
    ]
    snapshot = summarize(records, event_id=5, version=9)

    assert snapshot.event_id == 5
    assert snapshot.roster_version == 9
    assert snapshot.stats.total_registered == 3
    assert snapshot.stats.total_registered_party == 6
    assert snapshot.stats.total_arrived == 2
    assert snapshot.stats.total_arrived_party == 4


def test_summarize_orders_newest_first():
    records = [
        {"id": "old", "createdAt": "2026-03-01T09:00:00Z"},
        {"id": "undated"},
        {"id": "new", "createdAt": "2026-03-02T09:00:00Z"},
    ]
    assert [g.id for g in summarize(records, event_id=1).guests] == ["new", "old", "undated"]


def test_summarize_empty():
    snapshot = summarize([], event_id=1)
    assert snapshot.guests == []
    assert snapshot.stats.total_registered == 0


@pytest.mark.asyncio
async def test_roster_endpoint(client: AsyncClient, auth_headers, register, test_event, open_slot_id, small_slot_id):
    await register(open_slot_id, phone="0501111111", count=3, name="Avi")
    second = (await register(small_slot_id, phone="0502222222", count=2, name="Bella")).json()
    await client.post("/api/v1/checkin", json={"token": second["accessToken"]}, headers=auth_headers)

    response = await client.get(f"/api/v1/events/{test_event.id}/roster", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["eventId"] == test_event.id
    assert [g["name"] for g in data["guests"]] == ["Bella", "Avi"]
    assert data["guests"][0]["phone"] == "+972502222222"
    assert data["stats"] == {
        "totalRegistered": 2,
        "totalRegisteredParty": 5,
        "totalArrived": 1,
        "totalArrivedParty": 2,
    }


@pytest.mark.asyncio
async def test_roster_version_moves_with_every_change(client: AsyncClient, auth_headers, register, test_event, open_slot_id):
    async def version():
        response = await client.get(f"/api/v1/events/{test_event.id}/roster", headers=auth_headers)
        return response.json()["rosterVersion"]

    start = await version()
    token = (await register(open_slot_id)).json()["accessToken"]
    after_register = await version()
    await client.post("/api/v1/checkin", json={"token": token}, headers=auth_headers)
    after_checkin = await version()
    # A repeated scan changes nothing
    await client.post("/api/v1/checkin", json={"token": token}, headers=auth_headers)
    after_rescan = await version()

    assert start < after_register < after_checkin == after_rescan


@pytest.mark.asyncio
async def test_undo_reduces_arrived_party(client: AsyncClient, auth_headers, register, test_event, open_slot_id):
    token = (await register(open_slot_id, count=4)).json()["accessToken"]
    await client.post("/api/v1/checkin", json={"token": token}, headers=auth_headers)
    await client.post("/api/v1/checkin/undo", json={"token": token}, headers=auth_headers)

    response = await client.get(f"/api/v1/events/{test_event.id}/roster", headers=auth_headers)
    stats = response.json()["stats"]
    assert stats["totalArrived"] == 0
    assert stats["totalArrivedParty"] == 0
    assert stats["totalRegisteredParty"] == 4


@pytest.mark.asyncio
async def test_cancelled_guest_listed_but_not_counted(client: AsyncClient, auth_headers, register, test_event, open_slot_id):
    token = (await register(open_slot_id, count=2)).json()["accessToken"]
    await client.post("/api/v1/registrations/cancel", json={"token": token})

    data = (await client.get(f"/api/v1/events/{test_event.id}/roster", headers=auth_headers)).json()
    assert data["guests"][0]["status"] == "cancelled"
    assert data["stats"]["totalRegistered"] == 0


@pytest.mark.asyncio
async def test_roster_requires_owner(client: AsyncClient, test_event):
    response = await client.get(f"/api/v1/events/{test_event.id}/roster")
    assert response.status_code == 401
