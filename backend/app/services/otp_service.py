"""
OTP challenge service: phone verification for registrations.

CONCURRENCY STRATEGY: Compare-and-swap on the challenge row
===========================================================

Problem:
  Two verify calls race on the same challenge. With read-then-write both
  can see attempts_remaining=1 and both consume the right code, or both
  charge a wrong attempt from the same observed value.

Solution:
  Every mutation of a challenge is

    UPDATE otp_challenges SET ...
    WHERE registration_id = :rid AND challenge_id = :cid
      AND consumed_at IS NULL AND attempts_remaining = :observed

  rows_affected == 0 means another request changed the challenge first; we
  re-read and decide again, at most MAX_CAS_ATTEMPTS times. Exactly one
  verify can consume a challenge, and every failed attempt is charged
  exactly once.

  Failed attempts are committed before INVALID_CODE is raised; the request
  rollback must not refund them.
"""

import uuid
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import (
    AlreadyVerifiedError,
    CodeExpiredError,
    DomainError,
    InvalidCodeError,
    InvalidPhoneError,
    NoPendingCodeError,
    RateLimitedError,
    RegistrationCancelledError,
    RegistrationNotFoundError,
    SendFailedError,
    ServiceNotConfiguredError,
    VerificationBlockedError,
)
from app.core.logging import get_logger
from app.core.metrics import otp_cas_retries, record_otp_send, record_otp_verify
from app.core.security import generate_otp_code, generate_salt, hash_otp_code, verify_otp_code
from app.db.base import as_utc, dialect_insert, utcnow
from app.infrastructure.messaging import MessagingGateway, SendResult
from app.models.otp_challenge import OtpChallenge
from app.models.registration import (
    Registration,
    STATUS_CANCELLED,
    VERIFICATION_VERIFIED,
)
from app.services.event_service import bump_roster_version
from app.services.interfaces.rate_limit import RateLimiter
from app.services.registration_service import get_registration
from app.utils.phone import normalize_phone

logger = get_logger(__name__)
settings = get_settings()

MAX_CAS_ATTEMPTS = 5


def _normalize(phone: str) -> str:
    normalized = normalize_phone(phone, settings.DEFAULT_COUNTRY_CODE)
    if normalized is None:
        raise InvalidPhoneError()
    return normalized


async def _load_challenge(db: AsyncSession, registration_id: int) -> OtpChallenge | None:
    result = await db.execute(
        select(OtpChallenge)
        .where(OtpChallenge.registration_id == registration_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def send_otp(
    db: AsyncSession,
    gateway: MessagingGateway,
    limiter: RateLimiter,
    registration_id: int,
    phone: str,
    locale: str = "he",
) -> tuple[OtpChallenge, SendResult]:
    """Issue a fresh challenge for the registration and deliver its code."""
    if not gateway.is_configured:
        record_otp_send("not_configured")
        logger.info("otp_gateway_not_configured", registration_id=registration_id)
        raise ServiceNotConfiguredError()

    normalized = _normalize(phone)
    registration = await get_registration(db, registration_id)
    if registration.status == STATUS_CANCELLED or registration.phone != normalized:
        raise RegistrationNotFoundError()
    if registration.verification_status == VERIFICATION_VERIFIED:
        raise AlreadyVerifiedError()

    limit = await limiter.hit(
        f"otp:{normalized}",
        settings.OTP_SEND_LIMIT,
        settings.OTP_SEND_WINDOW_SECONDS,
    )
    if not limit.allowed:
        record_otp_send("rate_limited")
        retry_after = max(0, int((limit.reset_at - utcnow()).total_seconds()))
        raise RateLimitedError(retryAfter=retry_after)

    code = generate_otp_code(settings.OTP_CODE_LENGTH)
    salt = generate_salt()
    fresh = {
        "challenge_id": str(uuid.uuid4()),
        "phone": normalized,
        "code_hash": hash_otp_code(code, salt),
        "salt": salt,
        "expires_at": utcnow() + timedelta(minutes=settings.OTP_EXPIRY_MINUTES),
        "attempts_remaining": settings.OTP_MAX_ATTEMPTS,
        "consumed_at": None,
        "created_at": utcnow(),
    }
    # One statement replaces any previous challenge, so overlapping sends
    # cannot collide on the primary key; the last one wins.
    await db.execute(
        dialect_insert(db, OtpChallenge)
        .values(registration_id=registration_id, **fresh)
        .on_conflict_do_update(index_elements=["registration_id"], set_=fresh)
    )
    challenge = await _load_challenge(db, registration_id)
    await db.commit()

    result = await gateway.send_otp(normalized, code, locale)
    if not result.success:
        record_otp_send("failed")
        logger.error("otp_send_failed", registration_id=registration_id, method=result.method, error=result.error)
        raise SendFailedError()

    record_otp_send("sent")
    logger.info(
        "otp_sent",
        registration_id=registration_id,
        phone=normalized,
        method=result.method,
        challenge_id=challenge.challenge_id,
    )
    return challenge, result


async def verify_otp(
    db: AsyncSession,
    registration_id: int,
    phone: str,
    code: str,
) -> Registration:
    """Check `code` against the live challenge and promote the registration on match."""
    normalized = _normalize(phone)

    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        challenge = await _load_challenge(db, registration_id)
        if challenge is None or challenge.consumed_at is not None or challenge.phone != normalized:
            record_otp_verify("no_code")
            raise NoPendingCodeError()

        if as_utc(challenge.expires_at) <= utcnow():
            record_otp_verify("expired")
            raise CodeExpiredError()

        if challenge.attempts_remaining <= 0:
            record_otp_verify("blocked")
            logger.warning("otp_blocked", registration_id=registration_id)
            raise VerificationBlockedError()

        observed = challenge.attempts_remaining
        guard = (
            OtpChallenge.registration_id == registration_id,
            OtpChallenge.challenge_id == challenge.challenge_id,
            OtpChallenge.consumed_at.is_(None),
            OtpChallenge.attempts_remaining == observed,
        )

        if verify_otp_code(code, challenge.code_hash, challenge.salt):
            consumed = await db.execute(
                update(OtpChallenge)
                .where(*guard)
                .values(consumed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if consumed.rowcount == 0:
                otp_cas_retries.inc()
                logger.info("otp_verify_retry", registration_id=registration_id, attempt=attempt)
                continue
            return await _promote(db, registration_id)

        charged = await db.execute(
            update(OtpChallenge)
            .where(*guard)
            .values(attempts_remaining=observed - 1)
            .execution_options(synchronize_session=False)
        )
        if charged.rowcount == 0:
            otp_cas_retries.inc()
            logger.info("otp_verify_retry", registration_id=registration_id, attempt=attempt)
            continue

        await db.commit()
        record_otp_verify("invalid_code")
        logger.warning("otp_invalid_code", registration_id=registration_id, attempts_remaining=observed - 1)
        raise InvalidCodeError(attemptsRemaining=observed - 1)

    raise DomainError("Verification is busy, please try again")


async def _promote(db: AsyncSession, registration_id: int) -> Registration:
    registration = await get_registration(db, registration_id)
    promoted = await db.execute(
        update(Registration)
        .where(Registration.id == registration_id, Registration.status != STATUS_CANCELLED)
        .values(verification_status=VERIFICATION_VERIFIED, verified_at=utcnow(), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if promoted.rowcount == 0:
        raise RegistrationCancelledError()

    await bump_roster_version(db, registration.event_id)
    await db.commit()

    record_otp_verify("verified")
    logger.info("otp_verified", registration_id=registration_id, event_id=registration.event_id)
    return await get_registration(db, registration_id)
