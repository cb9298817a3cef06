"""
One-time passcode challenge, one per registration.

The registration id is the primary key: issuing a new challenge replaces the
previous row, so an old code can never verify. `challenge_id` changes on
every send and is part of every compare-and-swap update.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint

from app.db.base import Base, utcnow


class OtpChallenge(Base):
    __tablename__ = "otp_challenges"

    registration_id = Column(Integer, ForeignKey("registrations.id"), primary_key=True)
    challenge_id = Column(String(36), nullable=False, unique=True)
    phone = Column(String(20), nullable=False)
    code_hash = Column(String(64), nullable=False)
    salt = Column(String(32), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    attempts_remaining = Column(Integer, nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("attempts_remaining >= 0", name="check_otp_attempts_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<OtpChallenge(registration={self.registration_id}, attempts={self.attempts_remaining})>"
