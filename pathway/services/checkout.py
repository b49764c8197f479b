"""Subscription checkout and customer portal sessions.

Outside production (or without a Stripe key) sandbox URLs are returned and
the stored plan is used as-is.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal

import httpx
from sqlalchemy.orm import Session

from pathway.config import Settings
from pathway.metrics import checkout_fail_total
from pathway.models import Subscription

settings = Settings()
logger = logging.getLogger(__name__)

PlanType = Literal["basic", "pro", "yearly"]

# plan -> (amount in cents, billing interval, product name)
PLAN_PRICES: dict[str, tuple[int, str, str]] = {
    "pro": (700, "month", "Pro Plan - Monthly"),
    "yearly": (5000, "year", "Yearly Plan"),
}


class CheckoutError(RuntimeError):
    pass


def _live() -> bool:
    return settings.app_env.lower() == "production" and bool(settings.stripe_secret_key)


def _stripe_request(method: str, path: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    url = f"{settings.stripe_api_url.rstrip('/')}/{path.lstrip('/')}"
    try:
        with httpx.Client(timeout=10) as client:
            if method == "GET":
                resp = client.get(url, params=data, auth=(settings.stripe_secret_key, ""))
            else:
                resp = client.post(url, data=data, auth=(settings.stripe_secret_key, ""))
            resp.raise_for_status()
            return resp.json()
    except httpx.HTTPError as exc:
        checkout_fail_total.inc()
        logger.error("Stripe API request failed: %s", exc)
        raise CheckoutError("Payment provider request failed") from exc
    except ValueError as exc:
        checkout_fail_total.inc()
        logger.error("Stripe API response parsing failed: %s", exc)
        raise CheckoutError("Payment provider returned malformed data") from exc


def get_subscription(db: Session, user_id: str) -> Subscription | None:
    return db.query(Subscription).filter(Subscription.user_id == user_id).one_or_none()


def get_plan(db: Session, user_id: str) -> str:
    record = get_subscription(db, user_id)
    return record.plan_type if record and record.plan_type else "basic"


def create_checkout_session(
    *,
    user_id: str,
    email: str | None,
    plan: str,
    origin: str,
    customer_id: str | None = None,
) -> str:
    """Return the URL of a hosted checkout page for ``plan``."""
    if plan not in PLAN_PRICES:
        raise ValueError(f"Invalid plan selected: {plan}")
    if not _live():
        return f"https://sandbox.checkout/pay?plan={plan}&user={user_id}"

    amount, interval, product = PLAN_PRICES[plan]
    form: dict[str, Any] = {
        "mode": "subscription",
        "client_reference_id": user_id,
        "success_url": f"{origin}/dashboard?payment=success",
        "cancel_url": f"{origin}/pricing?payment=canceled",
        "line_items[0][quantity]": 1,
        "line_items[0][price_data][currency]": "usd",
        "line_items[0][price_data][unit_amount]": amount,
        "line_items[0][price_data][recurring][interval]": interval,
        "line_items[0][price_data][product_data][name]": product,
        "metadata[user_id]": user_id,
        "metadata[plan_type]": plan,
    }
    if customer_id:
        form["customer"] = customer_id
    elif email:
        form["customer_email"] = email
    session = _stripe_request("POST", "checkout/sessions", form)
    url = session.get("url")
    if not url:
        checkout_fail_total.inc()
        raise CheckoutError("Checkout session has no URL")
    return url


def create_portal_session(*, customer_id: str | None, origin: str) -> str:
    if not _live():
        return f"https://sandbox.checkout/portal?customer={customer_id or ''}"
    if not customer_id:
        raise CheckoutError("No billing account for this user")
    session = _stripe_request(
        "POST",
        "billing_portal/sessions",
        {"customer": customer_id, "return_url": f"{origin}/dashboard"},
    )
    url = session.get("url")
    if not url:
        checkout_fail_total.inc()
        raise CheckoutError("Portal session has no URL")
    return url


def _plan_from_subscription(sub: dict[str, Any]) -> str:
    try:
        interval = sub["items"]["data"][0]["price"]["recurring"]["interval"]
    except (KeyError, IndexError, TypeError):
        interval = "month"
    return "yearly" if interval == "year" else "pro"


def sync_subscription(db: Session, *, user_id: str, email: str | None) -> Subscription:
    """Refresh the stored plan from the payment provider."""
    record = get_subscription(db, user_id)
    if record is None:
        record = Subscription(user_id=user_id, plan_type="basic")
        db.add(record)
    if not _live() or not email:
        db.commit()
        db.refresh(record)
        return record

    customers = _stripe_request("GET", "customers", {"email": email, "limit": 1}).get("data") or []
    plan = "basic"
    customer_id = None
    subscription_id = None
    period_end = None
    if customers:
        customer_id = customers[0].get("id")
        subs = _stripe_request(
            "GET",
            "subscriptions",
            {"customer": customer_id, "status": "active", "limit": 1},
        ).get("data") or []
        if subs:
            sub = subs[0]
            plan = _plan_from_subscription(sub)
            subscription_id = sub.get("id")
            if sub.get("current_period_end"):
                period_end = datetime.fromtimestamp(int(sub["current_period_end"]), timezone.utc)

    record.plan_type = plan
    record.stripe_customer_id = customer_id or record.stripe_customer_id
    record.stripe_subscription_id = subscription_id
    record.current_period_end = period_end
    record.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(record)
    logger.info("subscription synced user=%s plan=%s", user_id, plan)
    return record


__all__ = [
    "CheckoutError",
    "PLAN_PRICES",
    "create_checkout_session",
    "create_portal_session",
    "get_plan",
    "get_subscription",
    "sync_subscription",
]
