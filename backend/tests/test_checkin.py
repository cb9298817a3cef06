"""
Tests for scanner check-in, undo, manual arrival and walk-ins.
"""

import asyncio

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select

from app.models.slot import Slot


@pytest_asyncio.fixture
async def guest(register, open_slot_id) -> dict:
    """A registered party of three."""
    response = await register(open_slot_id, count=3)
    return response.json()


async def _other_operator_headers(client: AsyncClient) -> dict:
    await client.post("/api/v1/auth/register", json={
        "email": "rival@example.com",
        "username": "rival",
        "password": "rivalpassword123",
    })
    login = await client.post("/api/v1/auth/login", json={
        "email": "rival@example.com",
        "password": "rivalpassword123",
    })
    return {"Authorization": f"Bearer {login.json()['access_token']}"}


@pytest.mark.asyncio
async def test_checkin_marks_arrived(client: AsyncClient, auth_headers, guest):
    response = await client.post(
        "/api/v1/checkin",
        json={"token": guest["accessToken"]},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["alreadyArrived"] is False
    assert data["checkedInAt"] is not None
    assert data["guest"]["status"] == "arrived"
    assert data["guest"]["count"] == 3
    assert data["guest"]["phone"] == "050-***-4567"


@pytest.mark.asyncio
async def test_checkin_is_idempotent(client: AsyncClient, auth_headers, guest):
    """Scanning twice keeps the first arrival time."""
    first = await client.post("/api/v1/checkin", json={"token": guest["accessToken"]}, headers=auth_headers)
    second = await client.post("/api/v1/checkin", json={"token": guest["accessToken"]}, headers=auth_headers)

    assert second.status_code == 200
    assert second.json()["alreadyArrived"] is True
    assert second.json()["checkedInAt"] == first.json()["checkedInAt"]


@pytest.mark.asyncio
async def test_two_scanners_same_guest(client: AsyncClient, auth_headers, guest):
    responses = await asyncio.gather(*[
        client.post("/api/v1/checkin", json={"token": guest["accessToken"]}, headers=auth_headers)
        for _ in range(4)
    ])

    assert all(r.status_code == 200 for r in responses)
    assert [r.json()["alreadyArrived"] for r in responses].count(False) == 1
    assert len({r.json()["checkedInAt"] for r in responses}) == 1


@pytest.mark.asyncio
async def test_checkin_lowercase_token(client: AsyncClient, auth_headers, guest):
    response = await client.post(
        "/api/v1/checkin",
        json={"token": guest["accessToken"].lower()},
        headers=auth_headers,
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_checkin_requires_operator(client: AsyncClient, guest):
    response = await client.post("/api/v1/checkin", json={"token": guest["accessToken"]})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_checkin_unknown_token(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/checkin", json={"token": "DEADBEEF"}, headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["errorCode"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_checkin_wrong_event(client: AsyncClient, auth_headers, guest, test_event):
    response = await client.post(
        "/api/v1/checkin",
        json={"token": guest["accessToken"], "eventId": test_event.id + 1},
        headers=auth_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_checkin_other_operators_guest(client: AsyncClient, guest):
    headers = await _other_operator_headers(client)
    response = await client.post("/api/v1/checkin", json={"token": guest["accessToken"]}, headers=headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_checkin_cancelled_registration(client: AsyncClient, auth_headers, guest):
    await client.post("/api/v1/registrations/cancel", json={"token": guest["accessToken"]})

    response = await client.post("/api/v1/checkin", json={"token": guest["accessToken"]}, headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["errorCode"] == "REGISTRATION_CANCELLED"


@pytest.mark.asyncio
async def test_query_does_not_check_in(client: AsyncClient, auth_headers, guest):
    response = await client.post(
        "/api/v1/checkin",
        json={"token": guest["accessToken"], "action": "query"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["guest"]["status"] == "registered"
    assert response.json()["alreadyArrived"] is False


@pytest.mark.asyncio
async def test_undo_checkin(client: AsyncClient, auth_headers, guest):
    await client.post("/api/v1/checkin", json={"token": guest["accessToken"]}, headers=auth_headers)

    response = await client.post("/api/v1/checkin/undo", json={"token": guest["accessToken"]}, headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["reverted"] is True
    assert data["guest"]["status"] == "registered"
    assert data["guest"]["arrivedAt"] is None

    # Second undo has nothing to revert
    again = await client.post("/api/v1/checkin/undo", json={"token": guest["accessToken"]}, headers=auth_headers)
    assert again.json()["reverted"] is False


@pytest.mark.asyncio
async def test_checkin_after_undo_gets_new_time(client: AsyncClient, auth_headers, guest):
    await client.post("/api/v1/checkin", json={"token": guest["accessToken"]}, headers=auth_headers)
    await client.post("/api/v1/checkin/undo", json={"token": guest["accessToken"]}, headers=auth_headers)

    response = await client.post("/api/v1/checkin", json={"token": guest["accessToken"]}, headers=auth_headers)
    assert response.json()["alreadyArrived"] is False


@pytest.mark.asyncio
async def test_manual_arrival_toggle(client: AsyncClient, auth_headers, guest, test_event):
    url = f"/api/v1/events/{test_event.id}/guests/{guest['registrationId']}/arrival"

    arrived = await client.post(url, json={"arrived": True}, headers=auth_headers)
    assert arrived.status_code == 200
    assert arrived.json()["status"] == "arrived"

    reverted = await client.post(url, json={"arrived": False}, headers=auth_headers)
    assert reverted.json()["status"] == "registered"


@pytest.mark.asyncio
async def test_manual_arrival_other_operator(client: AsyncClient, guest, test_event):
    headers = await _other_operator_headers(client)
    response = await client.post(
        f"/api/v1/events/{test_event.id}/guests/{guest['registrationId']}/arrival",
        json={"arrived": True},
        headers=headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_walk_in(client: AsyncClient, auth_headers, test_event, open_slot_id):
    response = await client.post(
        f"/api/v1/events/{test_event.id}/walk-ins",
        json={"slotId": open_slot_id, "count": 2},
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Guest #1"
    assert data["status"] == "arrived"
    assert data["isVerified"] is True
    assert data["phone"] == ""
    assert data["arrivedAt"] is not None


@pytest.mark.asyncio
async def test_walk_in_takes_seats(client: AsyncClient, auth_headers, test_event, small_slot_id, db_session):
    url = f"/api/v1/events/{test_event.id}/walk-ins"

    first = await client.post(url, json={"slotId": small_slot_id, "name": "Noa", "count": 2}, headers=auth_headers)
    assert first.status_code == 201
    assert first.json()["name"] == "Noa"

    full = await client.post(url, json={"slotId": small_slot_id}, headers=auth_headers)
    assert full.status_code == 409
    assert full.json()["errorCode"] == "CAPACITY_EXCEEDED"

    assert await db_session.scalar(select(Slot.registered_count).where(Slot.id == small_slot_id)) == 2


@pytest.mark.asyncio
async def test_walk_in_default_name_counts_registrations(client: AsyncClient, auth_headers, test_event, open_slot_id, register):
    await register(open_slot_id, phone="0501111111")
    await register(open_slot_id, phone="0502222222")

    response = await client.post(
        f"/api/v1/events/{test_event.id}/walk-ins",
        json={"slotId": open_slot_id, "name": "   "},
        headers=auth_headers,
    )
    assert response.json()["name"] == "Guest #3"
