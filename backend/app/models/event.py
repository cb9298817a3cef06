"""
Event scope model: the record that owns slots and registrations.

Key design decisions:
- `roster_version` is bumped by every roster mutation so synchronizers can
  skip unchanged snapshots
- Index on `date` for range queries
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    date = Column(DateTime(timezone=True), nullable=True)
    location = Column(String(255), nullable=True)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    roster_version = Column(Integer, nullable=False, default=1)

    # Relationships
    organizer = relationship("User", back_populates="events")
    slots = relationship(
        "Slot",
        back_populates="event",
        lazy="selectin",
        order_by="Slot.starts_at",
    )

    __table_args__ = (
        Index("ix_events_date", "date"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, version={self.roster_version})>"
