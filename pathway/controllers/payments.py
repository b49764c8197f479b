import asyncio
import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from pathway import db as db_module
from pathway.dependencies import ErrorResponse, Identity, require_user
from pathway.models import ErrorCode
from pathway.services import create_checkout_session, create_portal_session
from pathway.services.checkout import CheckoutError, get_subscription, sync_subscription
from pathway.services.events import track_event_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


class CheckoutRequest(BaseModel):
    plan: Literal["pro", "yearly"]


class SessionUrlResponse(BaseModel):
    url: str


class SubscriptionResponse(BaseModel):
    plan_type: Literal["basic", "pro", "yearly"]
    stripe_customer_id: str | None = None
    current_period_end: datetime | None = None


def _origin(request: Request) -> str:
    return (request.headers.get("origin") or str(request.base_url)).rstrip("/")


def _payment_error(exc: Exception) -> HTTPException:
    err = ErrorResponse(code=ErrorCode.PAYMENT_ERROR, message=str(exc))
    return HTTPException(status_code=502, detail=err.model_dump())


def _customer_id(user_id: str) -> str | None:
    with db_module.SessionLocal() as db:
        record = get_subscription(db, user_id)
        return record.stripe_customer_id if record else None


@router.post(
    "/checkout",
    response_model=SessionUrlResponse,
    responses={401: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def checkout(
    body: CheckoutRequest, request: Request, identity: Identity = Depends(require_user)
):
    customer_id = await asyncio.to_thread(_customer_id, identity.user_id)
    try:
        url = await asyncio.to_thread(
            lambda: create_checkout_session(
                user_id=identity.user_id,
                email=identity.email,
                plan=body.plan,
                origin=_origin(request),
                customer_id=customer_id,
            )
        )
    except CheckoutError as exc:
        raise _payment_error(exc) from exc
    await asyncio.to_thread(track_event_sync, identity.user_id, f"checkout_{body.plan}")
    logger.info("checkout session created user=%s plan=%s", identity.user_id, body.plan)
    return SessionUrlResponse(url=url)


@router.post(
    "/portal",
    response_model=SessionUrlResponse,
    responses={401: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def portal(request: Request, identity: Identity = Depends(require_user)):
    customer_id = await asyncio.to_thread(_customer_id, identity.user_id)
    try:
        url = await asyncio.to_thread(
            lambda: create_portal_session(customer_id=customer_id, origin=_origin(request))
        )
    except CheckoutError as exc:
        raise _payment_error(exc) from exc
    return SessionUrlResponse(url=url)


@router.get(
    "/subscription",
    response_model=SubscriptionResponse,
    responses={401: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def subscription(identity: Identity = Depends(require_user)):
    def _db():
        with db_module.SessionLocal() as db:
            record = sync_subscription(db, user_id=identity.user_id, email=identity.email)
            return SubscriptionResponse(
                plan_type=record.plan_type,
                stripe_customer_id=record.stripe_customer_id,
                current_period_end=record.current_period_end,
            )

    try:
        return await asyncio.to_thread(_db)
    except CheckoutError as exc:
        raise _payment_error(exc) from exc
