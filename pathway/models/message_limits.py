"""Per-user daily usage counters.

One row per user; each quota-gated feature owns a (count, last_reset) column
pair. ``last_reset`` marks the UTC midnight that opened the current window.
"""
from sqlalchemy import Column, DateTime, Integer, String

from .base import Base


class MessageLimits(Base):
    __tablename__ = "message_limits"

    user_id = Column(String(36), primary_key=True)
    message_count = Column(Integer, nullable=False, server_default="0", default=0)
    essay_count = Column(Integer, nullable=False, server_default="0", default=0)
    recommender_count = Column(Integer, nullable=False, server_default="0", default=0)
    last_reset = Column(DateTime(timezone=True))
    last_reset_essays = Column(DateTime(timezone=True))
    last_reset_recommender = Column(DateTime(timezone=True))


__all__ = ["MessageLimits"]
