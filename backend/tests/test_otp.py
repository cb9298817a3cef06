"""
Tests for OTP send/verify: attempt accounting, expiry, resend and the
send rate limit.
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select, update

from app.core.security import verify_otp_code
from app.db.base import utcnow
from app.models.event import Event
from app.models.otp_challenge import OtpChallenge
from app.models.registration import Registration

PHONE = "0501234567"


async def _otp(client: AsyncClient, action: str, registration_id: int, code: str | None = None, phone: str = PHONE):
    body = {"action": action, "registrationId": registration_id, "phone": phone}
    if code is not None:
        body["code"] = code
    return await client.post("/api/v1/otp", json=body)


def _wrong(code: str) -> str:
    return "0000" if code != "0000" else "1111"


@pytest_asyncio.fixture
async def registration_id(register, open_slot_id) -> int:
    response = await register(open_slot_id, phone=PHONE)
    return response.json()["registrationId"]


@pytest.mark.asyncio
async def test_send_and_verify(client: AsyncClient, gateway, registration_id, db_session, test_event):
    sent = await _otp(client, "send", registration_id)
    assert sent.status_code == 200
    assert sent.json()["method"] == "whatsapp"
    assert gateway.sent[-1][0] == "+972501234567"

    verified = await _otp(client, "verify", registration_id, gateway.last_code)
    assert verified.status_code == 200
    data = verified.json()
    assert data["success"] is True
    assert data["registrationId"] == registration_id

    registration = await db_session.scalar(select(Registration).where(Registration.id == registration_id))
    assert registration.verification_status == "verified"
    assert registration.verified_at is not None
    assert data["qrToken"] == registration.access_token

    # Registration, then verification, each bumped the roster version
    version = await db_session.scalar(select(Event.roster_version).where(Event.id == test_event.id))
    assert version == 3


@pytest.mark.asyncio
async def test_wrong_codes_then_right_code(client: AsyncClient, gateway, registration_id):
    await _otp(client, "send", registration_id)
    code = gateway.last_code

    for expected_remaining in (4, 3, 2):
        response = await _otp(client, "verify", registration_id, _wrong(code))
        assert response.status_code == 400
        assert response.json()["errorCode"] == "INVALID_CODE"
        assert response.json()["attemptsRemaining"] == expected_remaining

    response = await _otp(client, "verify", registration_id, code)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_blocked_after_five_failures(client: AsyncClient, gateway, registration_id):
    await _otp(client, "send", registration_id)
    code = gateway.last_code

    for _ in range(5):
        response = await _otp(client, "verify", registration_id, _wrong(code))
        assert response.json()["errorCode"] == "INVALID_CODE"
    assert response.json()["attemptsRemaining"] == 0

    # Even the right code is refused now
    response = await _otp(client, "verify", registration_id, code)
    assert response.status_code == 429
    assert response.json()["errorCode"] == "BLOCKED"


@pytest.mark.asyncio
async def test_resend_invalidates_previous_code(client: AsyncClient, gateway, registration_id, monkeypatch):
    codes = iter(["1234", "5678"])
    monkeypatch.setattr("app.services.otp_service.generate_otp_code", lambda length: next(codes))

    await _otp(client, "send", registration_id)
    await _otp(client, "send", registration_id)
    assert [c for _, c, _ in gateway.sent] == ["1234", "5678"]

    old = await _otp(client, "verify", registration_id, "1234")
    assert old.json()["errorCode"] == "INVALID_CODE"

    new = await _otp(client, "verify", registration_id, "5678")
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_resend_restores_attempts(client: AsyncClient, gateway, registration_id):
    await _otp(client, "send", registration_id)
    for _ in range(5):
        await _otp(client, "verify", registration_id, _wrong(gateway.last_code))

    await _otp(client, "send", registration_id)
    response = await _otp(client, "verify", registration_id, gateway.last_code)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_expired_code(client: AsyncClient, gateway, registration_id, db_session):
    await _otp(client, "send", registration_id)
    await db_session.execute(
        update(OtpChallenge)
        .where(OtpChallenge.registration_id == registration_id)
        .values(expires_at=utcnow() - timedelta(seconds=1))
    )
    await db_session.commit()

    response = await _otp(client, "verify", registration_id, gateway.last_code)
    assert response.status_code == 400
    assert response.json()["errorCode"] == "EXPIRED"


@pytest.mark.asyncio
async def test_verify_without_send(client: AsyncClient, registration_id):
    response = await _otp(client, "verify", registration_id, "1234")
    assert response.status_code == 404
    assert response.json()["errorCode"] == "NO_CODE"


@pytest.mark.asyncio
async def test_code_is_single_use(client: AsyncClient, gateway, registration_id):
    await _otp(client, "send", registration_id)
    code = gateway.last_code
    assert (await _otp(client, "verify", registration_id, code)).status_code == 200

    again = await _otp(client, "verify", registration_id, code)
    assert again.json()["errorCode"] == "NO_CODE"


@pytest.mark.asyncio
async def test_verify_with_other_phone(client: AsyncClient, gateway, registration_id):
    await _otp(client, "send", registration_id)
    response = await _otp(client, "verify", registration_id, gateway.last_code, phone="0529999999")
    assert response.json()["errorCode"] == "NO_CODE"


@pytest.mark.asyncio
async def test_concurrent_right_codes_verify_once(client: AsyncClient, gateway, registration_id):
    await _otp(client, "send", registration_id)
    code = gateway.last_code

    responses = await asyncio.gather(*[_otp(client, "verify", registration_id, code) for _ in range(4)])

    statuses = [r.status_code for r in responses]
    assert statuses.count(200) == 1
    assert all(r.json()["errorCode"] == "NO_CODE" for r in responses if r.status_code != 200)


@pytest.mark.asyncio
async def test_concurrent_sends_leave_one_challenge(client: AsyncClient, gateway, registration_id, db_session):
    responses = await asyncio.gather(*[_otp(client, "send", registration_id) for _ in range(2)])

    assert [r.status_code for r in responses] == [200, 200]
    challenges = (
        await db_session.scalars(select(OtpChallenge).where(OtpChallenge.registration_id == registration_id))
    ).all()
    assert len(challenges) == 1
    matching = [code for _, code, _ in gateway.sent if verify_otp_code(code, challenges[0].code_hash, challenges[0].salt)]
    assert len(matching) >= 1

    verified = await _otp(client, "verify", registration_id, matching[0])
    assert verified.status_code == 200


@pytest.mark.asyncio
async def test_concurrent_wrong_codes_each_charged_once(client: AsyncClient, gateway, registration_id, db_session):
    await _otp(client, "send", registration_id)
    wrong = _wrong(gateway.last_code)

    responses = await asyncio.gather(*[_otp(client, "verify", registration_id, wrong) for _ in range(3)])

    assert sorted(r.json()["attemptsRemaining"] for r in responses) == [2, 3, 4]
    remaining = await db_session.scalar(
        select(OtpChallenge.attempts_remaining).where(OtpChallenge.registration_id == registration_id)
    )
    assert remaining == 2


@pytest.mark.asyncio
async def test_send_rate_limited(client: AsyncClient, registration_id):
    for _ in range(3):
        assert (await _otp(client, "send", registration_id)).status_code == 200

    response = await _otp(client, "send", registration_id)
    assert response.status_code == 429
    data = response.json()
    assert data["errorCode"] == "RATE_LIMITED"
    assert 0 < data["retryAfter"] <= 300


@pytest.mark.asyncio
async def test_send_not_configured(client: AsyncClient, gateway, registration_id):
    gateway.configured = False
    response = await _otp(client, "send", registration_id)
    assert response.status_code == 503
    assert response.json()["errorCode"] == "SERVICE_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_send_failure(client: AsyncClient, gateway, registration_id):
    gateway.fail = True
    response = await _otp(client, "send", registration_id)
    assert response.status_code == 502
    assert response.json()["errorCode"] == "SEND_FAILED"


@pytest.mark.asyncio
async def test_send_to_mismatched_phone(client: AsyncClient, registration_id):
    response = await _otp(client, "send", registration_id, phone="0529999999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_send_after_verified(client: AsyncClient, gateway, registration_id):
    await _otp(client, "send", registration_id)
    await _otp(client, "verify", registration_id, gateway.last_code)

    response = await _otp(client, "send", registration_id)
    assert response.status_code == 409
    assert response.json()["errorCode"] == "ALREADY_VERIFIED"


@pytest.mark.asyncio
async def test_verify_after_cancel(client: AsyncClient, gateway, register, open_slot_id):
    created = (await register(open_slot_id, phone=PHONE)).json()
    await _otp(client, "send", created["registrationId"])
    await client.post("/api/v1/registrations/cancel", json={"token": created["accessToken"]})

    # Cancelling discards the pending challenge
    response = await _otp(client, "verify", created["registrationId"], gateway.last_code)
    assert response.json()["errorCode"] == "NO_CODE"


@pytest.mark.asyncio
async def test_verify_requires_code(client: AsyncClient, registration_id):
    response = await client.post("/api/v1/otp", json={
        "action": "verify",
        "registrationId": registration_id,
        "phone": PHONE,
    })
    assert response.status_code == 422
