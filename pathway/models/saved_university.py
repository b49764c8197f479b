from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, String, UniqueConstraint

from .base import Base


class SavedUniversity(Base):
    __tablename__ = "saved_universities"
    __table_args__ = (
        UniqueConstraint("user_id", "university_name", name="uq_saved_universities_user_name"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    university_name = Column(String, nullable=False)
    university_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


__all__ = ["SavedUniversity"]
