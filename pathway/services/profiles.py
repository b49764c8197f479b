from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from pathway.models import Profile

# API field name -> column
PERSONAL_FIELDS = {
    "name": "name",
    "phone": "phone",
    "address": "address",
    "date_of_birth": "date_of_birth",
    "nationality": "nationality",
    "country_of_residence": "countryofresidence",
}

PREFERENCE_FIELDS = (
    "intended_major",
    "budget",
    "preferred_country",
    "preferred_university_type",
    "study_level",
    "sat_score",
    "act_score",
    "english_test_type",
    "english_test_score",
    "high_school_curriculum",
    "curriculum_grades",
    "curriculum_subjects",
    "selected_domains",
    "extracurricular_activities",
)


def get_profile(db: Session, user_id: str) -> Profile | None:
    return db.get(Profile, user_id)


def upsert_profile(
    db: Session,
    *,
    user_id: str,
    email: str | None,
    personal: dict[str, Any] | None = None,
    preferences: dict[str, Any] | None = None,
) -> Profile:
    """Create or update the user's profile; only keys present are written."""
    profile = db.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id)
        db.add(profile)
    if email:
        profile.email = email
    for key, value in (personal or {}).items():
        column = PERSONAL_FIELDS.get(key)
        if column:
            setattr(profile, column, value)
    for key, value in (preferences or {}).items():
        if key in PREFERENCE_FIELDS:
            setattr(profile, key, value)
    profile.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(profile)
    return profile


def profile_preferences(profile: Profile | None) -> dict[str, Any]:
    if profile is None:
        return {}
    return {key: getattr(profile, key) for key in PREFERENCE_FIELDS}


def profile_personal(profile: Profile) -> dict[str, Any]:
    return {key: getattr(profile, column) for key, column in PERSONAL_FIELDS.items()}


__all__ = [
    "PERSONAL_FIELDS",
    "PREFERENCE_FIELDS",
    "get_profile",
    "profile_personal",
    "profile_preferences",
    "upsert_profile",
]
