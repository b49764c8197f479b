"""Per-feature usage quotas.

Authenticated users get daily windows that open at UTC midnight and are
stored in ``message_limits``. Anonymous browsers get a weekly window (seven
days from their first use) kept in Redis. The admin account bypasses every
quota. Any storage failure is logged and answered with "allow" so that an
infrastructure hiccup never blocks a user.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import NamedTuple

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pathway import db as db_module
from pathway.config import Settings
from pathway.metrics import quota_reject_total, usage_fail_open_total
from pathway.models import MessageLimits, Profile, Subscription
from pathway.services import anonymous_usage

settings = Settings()
logger = logging.getLogger(__name__)

ADMIN_REMAINING = 999
ANONYMOUS_WINDOW = timedelta(days=7)
SIGN_IN_REQUIRED = "Sign in required"


class Feature(str, Enum):
    CHAT = "chat"
    ESSAY = "essay"
    RECOMMENDER = "recommender"


# (count column, last reset column) per feature
_COLUMNS: dict[Feature, tuple[str, str]] = {
    Feature.CHAT: ("message_count", "last_reset"),
    Feature.ESSAY: ("essay_count", "last_reset_essays"),
    Feature.RECOMMENDER: ("recommender_count", "last_reset_recommender"),
}

# Subscription-based quotas; ``None`` means unlimited.
PLAN_LIMITS: dict[str, dict[Feature, int | None]] = {
    "basic": {Feature.CHAT: 10, Feature.ESSAY: 3, Feature.RECOMMENDER: 5},
    "pro": {Feature.CHAT: 30, Feature.ESSAY: 30, Feature.RECOMMENDER: 5},
    "yearly": {Feature.CHAT: None, Feature.ESSAY: 360, Feature.RECOMMENDER: 5},
}


class UsageResult(NamedTuple):
    can_use: bool
    remaining: int
    reset_time: str | None
    limit: int
    is_admin: bool = False
    reset_at: datetime | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def utc_midnight(moment: datetime) -> datetime:
    """Start of the UTC calendar day containing ``moment``."""
    return moment.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def format_reset_time(reset_at: datetime) -> str:
    return f"{reset_at.astimezone(timezone.utc):%Y-%m-%d %H:%M} UTC"


def daily_limit(feature: Feature) -> int:
    return {
        Feature.CHAT: settings.chat_daily_limit,
        Feature.ESSAY: settings.essay_daily_limit,
        Feature.RECOMMENDER: settings.recommender_daily_limit,
    }[feature]


def _as_utc(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def is_admin(db: Session, user_id: str) -> bool:
    admin_email = (settings.admin_email or "").strip().lower()
    if not admin_email:
        return False
    email = db.execute(select(Profile.email).where(Profile.id == user_id)).scalar()
    return bool(email) and email.strip().lower() == admin_email


def resolve_limit(db: Session, user_id: str, feature: Feature) -> int | None:
    if settings.usage_limits_source == "plan":
        plan = db.execute(
            select(Subscription.plan_type).where(Subscription.user_id == user_id)
        ).scalar()
        return PLAN_LIMITS.get(plan or "basic", PLAN_LIMITS["basic"])[feature]
    return daily_limit(feature)


def _bypass(limit: int | None, *, admin: bool) -> UsageResult:
    return UsageResult(
        can_use=True,
        remaining=ADMIN_REMAINING,
        reset_time=None,
        limit=limit if limit is not None else ADMIN_REMAINING,
        is_admin=admin,
    )


def _ensure_row(db: Session, user_id: str, today: datetime) -> None:
    if db.get(MessageLimits, user_id) is not None:
        return
    db.add(
        MessageLimits(
            user_id=user_id,
            message_count=0,
            essay_count=0,
            recommender_count=0,
            last_reset=today,
            last_reset_essays=today,
            last_reset_recommender=today,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        # another request created the row first
        db.rollback()


def check_limits_only_sync(user_id: str, feature: Feature) -> UsageResult:
    """Report the quota state without touching stored counters."""
    today = utc_midnight(_now())
    reset_at = today + timedelta(days=1)
    count_attr, reset_attr = _COLUMNS[feature]
    with db_module.SessionLocal() as db:
        limit = resolve_limit(db, user_id, feature)
        if is_admin(db, user_id):
            return _bypass(limit, admin=True)
        if limit is None:
            return _bypass(None, admin=False)

        row = db.get(MessageLimits, user_id)
        count = 0
        if row is not None:
            last_reset = _as_utc(getattr(row, reset_attr))
            if last_reset is not None and last_reset >= today:
                count = getattr(row, count_attr) or 0

    remaining = max(0, limit - count)
    return UsageResult(
        can_use=remaining > 0,
        remaining=remaining,
        reset_time=format_reset_time(reset_at),
        limit=limit,
        reset_at=reset_at,
    )


def check_and_update_limits_sync(user_id: str, feature: Feature) -> UsageResult:
    """Consume one use of ``feature`` if the daily quota allows it.

    Both the rollover and the increment are conditional UPDATEs, so two
    concurrent requests cannot both take the last remaining use.
    """
    today = utc_midnight(_now())
    reset_at = today + timedelta(days=1)
    reset_time = format_reset_time(reset_at)
    count_attr, reset_attr = _COLUMNS[feature]
    count_col = getattr(MessageLimits, count_attr)
    reset_col = getattr(MessageLimits, reset_attr)

    with db_module.SessionLocal() as db:
        limit = resolve_limit(db, user_id, feature)
        if is_admin(db, user_id):
            return _bypass(limit, admin=True)
        if limit is None:
            return _bypass(None, admin=False)

        denied = UsageResult(
            can_use=False,
            remaining=0,
            reset_time=reset_time,
            limit=limit,
            reset_at=reset_at,
        )
        if limit <= 0:
            quota_reject_total.labels(feature=feature.value).inc()
            return denied

        _ensure_row(db, user_id, today)

        rolled = db.execute(
            update(MessageLimits)
            .where(
                MessageLimits.user_id == user_id,
                or_(reset_col.is_(None), reset_col < today),
            )
            .values({count_attr: 1, reset_attr: today})
            .execution_options(synchronize_session=False)
        )
        if rolled.rowcount:
            db.commit()
            logger.info("usage window reset user=%s feature=%s", user_id, feature.value)
            return UsageResult(
                can_use=True,
                remaining=limit - 1,
                reset_time=reset_time,
                limit=limit,
                reset_at=reset_at,
            )

        bumped = db.execute(
            update(MessageLimits)
            .where(MessageLimits.user_id == user_id, count_col < limit)
            .values({count_attr: count_col + 1})
            .execution_options(synchronize_session=False)
        )
        if not bumped.rowcount:
            db.rollback()
            quota_reject_total.labels(feature=feature.value).inc()
            return denied

        count = db.execute(
            select(count_col).where(MessageLimits.user_id == user_id)
        ).scalar_one()
        db.commit()

    return UsageResult(
        can_use=True,
        remaining=max(0, limit - count),
        reset_time=reset_time,
        limit=limit,
        reset_at=reset_at,
    )


def _anonymous_denied(limit: int) -> UsageResult:
    return UsageResult(can_use=False, remaining=0, reset_time=SIGN_IN_REQUIRED, limit=limit)


def _anonymous_window(first_use: datetime | None, now: datetime) -> datetime | None:
    """Start of the still-open anonymous window, ``None`` when it expired."""
    if first_use is None or now - first_use >= ANONYMOUS_WINDOW:
        return None
    return first_use


async def _anonymous_check(client_id: str | None, feature: Feature, *, consume: bool) -> UsageResult:
    limit = settings.anonymous_weekly_limit
    if not client_id:
        return _anonymous_denied(limit)

    now = _now()
    count, first_use = await anonymous_usage.load_usage(client_id, feature.value)
    window_start = _anonymous_window(first_use, now)
    if window_start is None:
        count = 0

    if count >= limit:
        if consume:
            quota_reject_total.labels(feature=feature.value).inc()
        reset_at = window_start + ANONYMOUS_WINDOW if window_start else None
        return UsageResult(
            can_use=False,
            remaining=0,
            reset_time=format_reset_time(reset_at) if reset_at else None,
            limit=limit,
            reset_at=reset_at,
        )

    if consume:
        count += 1
        window_start = window_start or now
        await anonymous_usage.store_usage(
            client_id, feature.value, count, window_start, ANONYMOUS_WINDOW
        )

    reset_at = window_start + ANONYMOUS_WINDOW if window_start else None
    remaining = max(0, limit - count)
    return UsageResult(
        can_use=consume or remaining > 0,
        remaining=remaining,
        reset_time=format_reset_time(reset_at) if reset_at else None,
        limit=limit,
        reset_at=reset_at,
    )


def _fail_open(user_id: str | None, feature: Feature) -> UsageResult:
    usage_fail_open_total.labels(feature=feature.value).inc()
    if user_id is None:
        limit = settings.anonymous_weekly_limit
    elif settings.usage_limits_source == "plan":
        # The plan lives in the store that just failed, so the limit is unknown.
        limit = ADMIN_REMAINING
    else:
        limit = daily_limit(feature)
    return UsageResult(can_use=True, remaining=limit, reset_time=None, limit=limit)


async def check_limits_only(
    user_id: str | None,
    feature: Feature | str,
    *,
    client_id: str | None = None,
) -> UsageResult:
    feature = Feature(feature)
    try:
        if user_id is None:
            return await _anonymous_check(client_id, feature, consume=False)
        return await asyncio.to_thread(check_limits_only_sync, user_id, feature)
    except Exception:
        logger.exception(
            "usage check failed, allowing feature=%s",
            feature.value,
            extra={"feature": feature.value, "subject": user_id or client_id},
        )
        return _fail_open(user_id, feature)


async def check_and_update_limits(
    user_id: str | None,
    feature: Feature | str,
    *,
    client_id: str | None = None,
) -> UsageResult:
    feature = Feature(feature)
    try:
        if user_id is None:
            return await _anonymous_check(client_id, feature, consume=True)
        return await asyncio.to_thread(check_and_update_limits_sync, user_id, feature)
    except Exception:
        logger.exception(
            "usage update failed, allowing feature=%s",
            feature.value,
            extra={"feature": feature.value, "subject": user_id or client_id},
        )
        return _fail_open(user_id, feature)


async def get_usage_summary(
    user_id: str | None, *, client_id: str | None = None
) -> dict[Feature, UsageResult]:
    results = await asyncio.gather(
        *(check_limits_only(user_id, feature, client_id=client_id) for feature in Feature)
    )
    return dict(zip(Feature, results))


__all__ = [
    "ADMIN_REMAINING",
    "ANONYMOUS_WINDOW",
    "Feature",
    "PLAN_LIMITS",
    "UsageResult",
    "check_limits_only",
    "check_and_update_limits",
    "check_limits_only_sync",
    "check_and_update_limits_sync",
    "daily_limit",
    "format_reset_time",
    "get_usage_summary",
    "utc_midnight",
]
