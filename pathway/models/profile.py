from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String

from .base import Base


class Profile(Base):
    """Academic profile owned by an authenticated user."""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    email = Column(String)
    name = Column(String)
    phone = Column(String)
    address = Column(String)
    date_of_birth = Column(String(10))
    nationality = Column(String)
    countryofresidence = Column(String)
    intended_major = Column(String)
    budget = Column(Integer)
    preferred_country = Column(String)
    preferred_university_type = Column(String)
    study_level = Column(String)
    sat_score = Column(Integer)
    act_score = Column(Integer)
    english_test_type = Column(String)
    english_test_score = Column(Float)
    high_school_curriculum = Column(String)
    curriculum_grades = Column(JSON)
    curriculum_subjects = Column(JSON)
    selected_domains = Column(JSON)
    extracurricular_activities = Column(JSON)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


__all__ = ["Profile"]
