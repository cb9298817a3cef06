"""
Registration model: one registrant (plus party) in one slot.

Key design decisions:
- Partial unique index on (slot_id, phone) over non-cancelled rows enforces
  "one active registration per phone per slot" even under racing inserts
- Cancellation keeps the row (status='cancelled') so the phone can register
  again while history survives
- `access_token` is the check-in key and is globally unique
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin

STATUS_REGISTERED = "registered"
STATUS_ARRIVED = "arrived"
STATUS_CANCELLED = "cancelled"

VERIFICATION_UNVERIFIED = "unverified"
VERIFICATION_VERIFIED = "verified"


class Registration(Base, TimestampMixin):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(20), nullable=True)
    count = Column(Integer, nullable=False, default=1)
    avatar_url = Column(String(1024), nullable=True)
    avatar_type = Column(String(10), nullable=False, default="none")
    access_token = Column(String(64), nullable=False, unique=True, index=True)

    verification_status = Column(String(20), nullable=False, default=VERIFICATION_UNVERIFIED)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(String(20), nullable=False, default=STATUS_REGISTERED)
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    arrived_by = Column(String(20), nullable=True)  # scanner, manual, walk_in
    registered_by_operator = Column(Boolean, nullable=False, default=False)

    slot = relationship("Slot", lazy="joined")

    __table_args__ = (
        Index(
            "uq_active_registration_slot_phone",
            "slot_id",
            "phone",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        CheckConstraint("count >= 1 AND count <= 10", name="check_registration_count_range"),
        CheckConstraint(
            "status IN ('registered', 'arrived', 'cancelled')",
            name="check_registration_status",
        ),
        CheckConstraint(
            "verification_status IN ('unverified', 'verified')",
            name="check_registration_verification",
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status != STATUS_CANCELLED

    def __repr__(self) -> str:
        return f"<Registration(id={self.id}, slot={self.slot_id}, status={self.status})>"
