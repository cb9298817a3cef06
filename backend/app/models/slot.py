"""
Slot model: a capacity-bounded time window of an event.

Key design decisions:
- `registered_count` is denormalized (sum of non-cancelled party sizes) and
  only ever changed by conditional UPDATEs in the capacity ledger
- capacity 0 means unlimited
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class Slot(Base, TimestampMixin):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    capacity = Column(Integer, nullable=False, default=0)
    registered_count = Column(Integer, nullable=False, default=0)

    event = relationship("Event", back_populates="slots")

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="check_slot_capacity_non_negative"),
        CheckConstraint("registered_count >= 0", name="check_slot_registered_non_negative"),
        CheckConstraint("ends_at >= starts_at", name="check_slot_window"),
    )

    @property
    def available(self) -> int | None:
        if not self.capacity:
            return None
        return max(0, self.capacity - self.registered_count)

    def __repr__(self) -> str:
        return f"<Slot(id={self.id}, event={self.event_id}, {self.registered_count}/{self.capacity})>"
