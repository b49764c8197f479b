from __future__ import annotations

import asyncio
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from pathway import db as db_module
from pathway.dependencies import ErrorResponse, Identity, require_user
from pathway.models import ErrorCode, Profile
from pathway.services.profiles import (
    get_profile,
    profile_personal,
    profile_preferences,
    upsert_profile,
)

router = APIRouter(prefix="/profile", tags=["profile"])


class ExtracurricularActivity(BaseModel):
    name: str | None = None
    organization: str | None = None
    position: str | None = None
    description: str | None = None
    start_date: str | None = None
    end_date: str | None = None


class ProfilePreferences(BaseModel):
    intended_major: str | None = None
    budget: int | None = Field(None, ge=0)
    preferred_country: str | None = None
    preferred_university_type: str | None = None
    study_level: str | None = None
    sat_score: int | None = Field(None, ge=400, le=1600)
    act_score: int | None = Field(None, ge=1, le=36)
    english_test_type: str | None = None
    english_test_score: float | None = Field(None, ge=0)
    high_school_curriculum: str | None = None
    curriculum_grades: dict[str, str] | None = None
    curriculum_subjects: list[str] | None = None
    selected_domains: list[str] | None = None
    extracurricular_activities: list[ExtracurricularActivity] | None = None


class ProfileUpdate(BaseModel):
    name: str | None = Field(None, max_length=200)
    phone: str | None = Field(None, max_length=50)
    address: str | None = Field(None, max_length=500)
    date_of_birth: str | None = None
    nationality: str | None = None
    country_of_residence: str | None = None
    preferences: ProfilePreferences | None = None

    @field_validator("date_of_birth")
    @classmethod
    def _iso_date(cls, value: str | None) -> str | None:
        if value:
            date.fromisoformat(value)
        return value


class ProfileResponse(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    address: str | None = None
    date_of_birth: str | None = None
    nationality: str | None = None
    country_of_residence: str | None = None
    preferences: ProfilePreferences


def _response(profile: Profile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        email=profile.email,
        preferences=ProfilePreferences(**profile_preferences(profile)),
        **profile_personal(profile),
    )


@router.get(
    "",
    response_model=ProfileResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def read_profile(identity: Identity = Depends(require_user)):
    def _db():
        with db_module.SessionLocal() as db:
            profile = get_profile(db, identity.user_id)
            return _response(profile) if profile else None

    result = await asyncio.to_thread(_db)
    if result is None:
        err = ErrorResponse(code=ErrorCode.NOT_FOUND, message="Profile not found")
        raise HTTPException(status_code=404, detail=err.model_dump())
    return result


@router.put("", response_model=ProfileResponse, responses={401: {"model": ErrorResponse}})
async def update_profile(body: ProfileUpdate, identity: Identity = Depends(require_user)):
    personal = body.model_dump(exclude_unset=True, exclude={"preferences"})
    preferences = (
        body.preferences.model_dump(mode="json", exclude_unset=True) if body.preferences else None
    )

    def _db():
        with db_module.SessionLocal() as db:
            profile = upsert_profile(
                db,
                user_id=identity.user_id,
                email=identity.email,
                personal=personal,
                preferences=preferences,
            )
            return _response(profile)

    return await asyncio.to_thread(_db)
