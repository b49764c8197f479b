from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from .base import Base


class EssayAnalysis(Base):
    """Stored result of one essay review."""

    __tablename__ = "essay_analyses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    essay_type = Column(String, nullable=False)
    prompt = Column(Text, nullable=False)
    essay = Column(Text, nullable=False)
    feedback = Column(Text, nullable=False)
    overall_score = Column(Integer)
    ratings = Column(JSON)
    highlights = Column(JSON)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


__all__ = ["EssayAnalysis"]
