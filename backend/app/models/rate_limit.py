"""
Fixed-window rate limit counter used by the database rate-limit backend.
"""

from sqlalchemy import Column, Integer, String, DateTime

from app.db.base import Base


class RateLimitWindow(Base):
    __tablename__ = "rate_limit_windows"

    key = Column(String(255), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    reset_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<RateLimitWindow(key={self.key}, count={self.count})>"
