from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from pathway import db as db_module
from pathway.controllers.limits import UsageResponse, limit_reached_response, usage_response
from pathway.dependencies import ErrorResponse, Identity, rate_limit, require_user
from pathway.models import ErrorCode, EssayAnalysis
from pathway.services.essay_analysis import (
    EssayAnalysisResult,
    parse_essay_response,
    request_essay_review,
)
from pathway.services.essay_pdf import pdf_data_from_analysis, render_essay_pdf
from pathway.services.events import track_event_sync
from pathway.services.usage_limits import Feature, check_and_update_limits

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/essays", tags=["essays"])

MAX_ESSAY_LENGTH = 20000


class EssayAnalyzeRequest(BaseModel):
    essay_type: str = Field(..., min_length=1, max_length=100)
    prompt: str = Field(..., min_length=1, max_length=2000)
    essay: str = Field(..., min_length=1, max_length=MAX_ESSAY_LENGTH)


class SegmentResponse(BaseModel):
    text: str
    highlighted: bool = False
    comment: str | None = None


class RatingCategoryResponse(BaseModel):
    name: str
    score: int
    description: str


class RatingsResponse(BaseModel):
    overall: int
    categories: list[RatingCategoryResponse]


class EssayAnalysisResponse(BaseModel):
    id: str | None = None
    highlighted_essay: list[SegmentResponse]
    feedback: str
    ratings: RatingsResponse | None = None
    error: str | None = None
    usage: UsageResponse | None = None


class EssaySummary(BaseModel):
    id: str
    essay_type: str
    prompt: str
    overall_score: int | None = None
    created_at: datetime


class EssayDetail(EssaySummary):
    essay: str
    feedback: str
    ratings: RatingsResponse | None = None
    highlighted_essay: list[SegmentResponse] = Field(default_factory=list)


def _not_found() -> HTTPException:
    err = ErrorResponse(code=ErrorCode.NOT_FOUND, message="Essay analysis not found")
    return HTTPException(status_code=404, detail=err.model_dump())


def _llm_failure(exc: Exception) -> HTTPException:
    if isinstance(exc, TimeoutError):
        err = ErrorResponse(code=ErrorCode.LLM_TIMEOUT, message="Essay review timed out")
    else:
        err = ErrorResponse(code=ErrorCode.LLM_ERROR, message=f"Error analyzing essay: {exc}")
    return HTTPException(status_code=502, detail=err.model_dump())


def _save_analysis(user_id: str, body: EssayAnalyzeRequest, result: EssayAnalysisResult) -> str:
    data = result.to_dict()
    with db_module.SessionLocal() as db:
        row = EssayAnalysis(
            user_id=user_id,
            essay_type=body.essay_type,
            prompt=body.prompt,
            essay=body.essay,
            feedback=result.feedback,
            overall_score=result.ratings.overall if result.ratings else None,
            ratings=data["ratings"],
            highlights=data["highlighted_essay"],
        )
        db.add(row)
        db.commit()
        return row.id


def _detail(row: EssayAnalysis) -> EssayDetail:
    return EssayDetail(
        id=row.id,
        essay_type=row.essay_type,
        prompt=row.prompt,
        overall_score=row.overall_score,
        created_at=row.created_at,
        essay=row.essay,
        feedback=row.feedback,
        ratings=row.ratings,
        highlighted_essay=row.highlights or [],
    )


@router.post(
    "/analyze",
    response_model=EssayAnalysisResponse,
    responses={
        401: {"model": ErrorResponse},
        402: {"description": "Essay quota exhausted"},
        502: {"model": ErrorResponse},
    },
)
async def analyze(body: EssayAnalyzeRequest, identity: Identity = Depends(rate_limit)):
    usage = await check_and_update_limits(
        identity.user_id, Feature.ESSAY, client_id=identity.client_id
    )
    if not usage.can_use:
        return limit_reached_response(Feature.ESSAY, usage)

    try:
        reply = await asyncio.to_thread(
            request_essay_review, body.essay_type, body.prompt, body.essay
        )
    except (TimeoutError, RuntimeError, ValueError) as exc:
        logger.error("essay review failed for %s: %s", identity.subject, exc)
        raise _llm_failure(exc) from exc

    result = parse_essay_response(reply, body.essay)
    analysis_id = None
    if identity.is_authenticated and not result.error:
        analysis_id = await asyncio.to_thread(_save_analysis, identity.user_id, body, result)
    await asyncio.to_thread(track_event_sync, identity.user_id, "essay_analyzed")

    data = result.to_dict()
    return EssayAnalysisResponse(
        id=analysis_id,
        highlighted_essay=data["highlighted_essay"],
        feedback=data["feedback"],
        ratings=data["ratings"],
        error=data["error"],
        usage=usage_response(Feature.ESSAY, usage),
    )


@router.get("", response_model=list[EssaySummary], responses={401: {"model": ErrorResponse}})
async def list_essays(identity: Identity = Depends(require_user)):
    def _db():
        with db_module.SessionLocal() as db:
            rows = (
                db.query(EssayAnalysis)
                .filter(EssayAnalysis.user_id == identity.user_id)
                .order_by(EssayAnalysis.created_at.desc())
                .all()
            )
            return [
                EssaySummary(
                    id=row.id,
                    essay_type=row.essay_type,
                    prompt=row.prompt,
                    overall_score=row.overall_score,
                    created_at=row.created_at,
                )
                for row in rows
            ]

    return await asyncio.to_thread(_db)


def _load(user_id: str, analysis_id: str) -> EssayAnalysis | None:
    with db_module.SessionLocal() as db:
        return (
            db.query(EssayAnalysis)
            .filter(EssayAnalysis.id == analysis_id, EssayAnalysis.user_id == user_id)
            .one_or_none()
        )


@router.get(
    "/{analysis_id}",
    response_model=EssayDetail,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_essay(analysis_id: str, identity: Identity = Depends(require_user)):
    row = await asyncio.to_thread(_load, identity.user_id, analysis_id)
    if row is None:
        raise _not_found()
    return _detail(row)


@router.delete(
    "/{analysis_id}",
    status_code=204,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_essay(analysis_id: str, identity: Identity = Depends(require_user)):
    def _db() -> bool:
        with db_module.SessionLocal() as db:
            deleted = (
                db.query(EssayAnalysis)
                .filter(
                    EssayAnalysis.id == analysis_id,
                    EssayAnalysis.user_id == identity.user_id,
                )
                .delete(synchronize_session=False)
            )
            db.commit()
            return bool(deleted)

    if not await asyncio.to_thread(_db):
        raise _not_found()
    return Response(status_code=204)


@router.get(
    "/{analysis_id}/pdf",
    response_class=Response,
    responses={
        200: {"content": {"application/pdf": {}}},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def export_essay_pdf(analysis_id: str, identity: Identity = Depends(require_user)):
    row = await asyncio.to_thread(_load, identity.user_id, analysis_id)
    if row is None:
        raise _not_found()
    pdf_bytes = await asyncio.to_thread(render_essay_pdf, pdf_data_from_analysis(row))
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="essay-analysis-{row.id}.pdf"'},
    )
