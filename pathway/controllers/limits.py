from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pathway.dependencies import ErrorResponse, Identity, rate_limit
from pathway.services.usage_limits import (
    Feature,
    UsageResult,
    check_limits_only,
    get_usage_summary,
)

router = APIRouter(prefix="/limits", tags=["limits"])


class UsageResponse(BaseModel):
    feature: Feature
    can_use: bool
    remaining: int
    limit: int
    reset_time: str | None = None
    reset_at: datetime | None = None
    is_admin: bool = False


class UsageSummaryResponse(BaseModel):
    authenticated: bool
    features: list[UsageResponse]


def usage_response(feature: Feature, result: UsageResult) -> UsageResponse:
    return UsageResponse(
        feature=feature,
        can_use=result.can_use,
        remaining=result.remaining,
        limit=result.limit,
        reset_time=result.reset_time,
        reset_at=result.reset_at,
        is_admin=result.is_admin,
    )


def limit_reached_response(feature: Feature, result: UsageResult) -> JSONResponse:
    """402 body returned when a quota-gated call is refused."""
    return JSONResponse(
        status_code=402,
        content={
            "error": "limit_reached",
            "feature": feature.value,
            "limit": result.limit,
            "remaining": 0,
            "reset_time": result.reset_time,
        },
    )


@router.get("", response_model=UsageSummaryResponse, responses={401: {"model": ErrorResponse}})
async def get_limits(identity: Identity = Depends(rate_limit)):
    summary = await get_usage_summary(identity.user_id, client_id=identity.client_id)
    return UsageSummaryResponse(
        authenticated=identity.is_authenticated,
        features=[usage_response(feature, result) for feature, result in summary.items()],
    )


@router.get(
    "/{feature}",
    response_model=UsageResponse,
    responses={401: {"model": ErrorResponse}},
)
async def get_feature_limits(feature: Feature, identity: Identity = Depends(rate_limit)):
    result = await check_limits_only(identity.user_id, feature, client_id=identity.client_id)
    return usage_response(feature, result)
