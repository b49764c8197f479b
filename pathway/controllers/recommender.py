from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from pathway import db as db_module
from pathway.controllers.limits import UsageResponse, limit_reached_response, usage_response
from pathway.dependencies import ErrorResponse, Identity, rate_limit, require_user
from pathway.models import ErrorCode
from pathway.services.events import track_event_sync
from pathway.services.profiles import get_profile, profile_preferences
from pathway.services.recommender import (
    DEFAULT_COUNT,
    MAX_COUNT,
    delete_saved_university,
    list_saved_universities,
    recommend_universities,
    save_university,
)
from pathway.services.usage_limits import Feature, check_and_update_limits

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recommender", tags=["recommender"])


class RecommendRequest(BaseModel):
    notes: str | None = Field(None, max_length=2000)
    count: int = Field(DEFAULT_COUNT, ge=1, le=MAX_COUNT)
    # Overrides or stands in for the stored profile.
    preferences: dict[str, Any] | None = None


class UniversityResponse(BaseModel):
    name: str
    country: str | None = None
    city: str | None = None
    programs: list[str] = Field(default_factory=list)
    tuition: str | None = None
    acceptance_rate: str | None = None
    category: str | None = None
    match_score: int | None = None
    reason: str | None = None


class RecommendResponse(BaseModel):
    universities: list[UniversityResponse]
    usage: UsageResponse | None = None


class SaveUniversityRequest(BaseModel):
    university_name: str = Field(..., min_length=1, max_length=300)
    university_data: dict[str, Any] = Field(default_factory=dict)


class SavedUniversityResponse(BaseModel):
    id: str
    university_name: str
    university_data: dict[str, Any]
    created_at: datetime


def _saved(row) -> SavedUniversityResponse:
    return SavedUniversityResponse(
        id=row.id,
        university_name=row.university_name,
        university_data=row.university_data or {},
        created_at=row.created_at,
    )


def _load_preferences(user_id: str | None) -> dict[str, Any]:
    if user_id is None:
        return {}
    with db_module.SessionLocal() as db:
        return profile_preferences(get_profile(db, user_id))


@router.post(
    "/recommend",
    response_model=RecommendResponse,
    responses={
        401: {"model": ErrorResponse},
        402: {"description": "Recommender quota exhausted"},
        502: {"model": ErrorResponse},
    },
)
async def recommend(body: RecommendRequest, identity: Identity = Depends(rate_limit)):
    usage = await check_and_update_limits(
        identity.user_id, Feature.RECOMMENDER, client_id=identity.client_id
    )
    if not usage.can_use:
        return limit_reached_response(Feature.RECOMMENDER, usage)

    preferences = await asyncio.to_thread(_load_preferences, identity.user_id)
    if body.preferences:
        preferences.update(body.preferences)

    try:
        universities = await asyncio.to_thread(
            recommend_universities, preferences, notes=body.notes, count=body.count
        )
    except TimeoutError as exc:
        logger.error("recommender timed out for %s", identity.subject)
        err = ErrorResponse(code=ErrorCode.LLM_TIMEOUT, message="Recommender timed out")
        raise HTTPException(status_code=502, detail=err.model_dump()) from exc
    except (RuntimeError, ValueError) as exc:
        logger.error("recommender failed for %s: %s", identity.subject, exc)
        err = ErrorResponse(code=ErrorCode.LLM_ERROR, message="Recommender is unavailable")
        raise HTTPException(status_code=502, detail=err.model_dump()) from exc

    await asyncio.to_thread(track_event_sync, identity.user_id, "recommendations_generated")
    return RecommendResponse(
        universities=[UniversityResponse(**u.to_dict()) for u in universities],
        usage=usage_response(Feature.RECOMMENDER, usage),
    )


@router.get(
    "/saved",
    response_model=list[SavedUniversityResponse],
    responses={401: {"model": ErrorResponse}},
)
async def list_saved(identity: Identity = Depends(require_user)):
    def _db():
        with db_module.SessionLocal() as db:
            return [_saved(row) for row in list_saved_universities(db, user_id=identity.user_id)]

    return await asyncio.to_thread(_db)


@router.post(
    "/saved",
    status_code=201,
    response_model=SavedUniversityResponse,
    responses={401: {"model": ErrorResponse}},
)
async def save(body: SaveUniversityRequest, identity: Identity = Depends(require_user)):
    def _db():
        with db_module.SessionLocal() as db:
            row = save_university(
                db,
                user_id=identity.user_id,
                name=body.university_name.strip(),
                data=body.university_data,
            )
            return _saved(row)

    return await asyncio.to_thread(_db)


@router.delete(
    "/saved/{saved_id}",
    status_code=204,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_saved(saved_id: str, identity: Identity = Depends(require_user)):
    def _db() -> bool:
        with db_module.SessionLocal() as db:
            return delete_saved_university(db, user_id=identity.user_id, saved_id=saved_id)

    if not await asyncio.to_thread(_db):
        err = ErrorResponse(code=ErrorCode.NOT_FOUND, message="Saved university not found")
        raise HTTPException(status_code=404, detail=err.model_dump())
    return Response(status_code=204)
