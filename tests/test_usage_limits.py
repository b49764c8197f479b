from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from pathway import db as db_module
from pathway.models import MessageLimits, Profile, Subscription
from pathway.services import usage_limits
from pathway.services.usage_limits import (
    ADMIN_REMAINING,
    Feature,
    check_and_update_limits,
    check_and_update_limits_sync,
    check_limits_only,
    check_limits_only_sync,
)

NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)
TODAY = datetime(2026, 3, 10, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def frozen_now(monkeypatch):
    monkeypatch.setattr(usage_limits, "_now", lambda: NOW)
    monkeypatch.setattr(usage_limits.settings, "usage_limits_source", "daily")
    monkeypatch.setattr(usage_limits.settings, "admin_email", None)
    monkeypatch.setattr(usage_limits.settings, "essay_daily_limit", 5)


def _user() -> str:
    return str(uuid.uuid4())


def _seed(user_id: str, *, essay_count: int, last_reset: datetime) -> None:
    with db_module.SessionLocal() as db:
        db.add(
            MessageLimits(
                user_id=user_id,
                message_count=0,
                essay_count=essay_count,
                recommender_count=0,
                last_reset=last_reset,
                last_reset_essays=last_reset,
                last_reset_recommender=last_reset,
            )
        )
        db.commit()


def _stored(user_id: str) -> MessageLimits:
    with db_module.SessionLocal() as db:
        return db.get(MessageLimits, user_id)


def test_first_use_creates_counter():
    user_id = _user()
    result = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert result.can_use is True
    assert result.remaining == 4
    assert result.limit == 5
    assert result.reset_time == "2026-03-11 00:00 UTC"
    assert result.reset_at == TODAY + timedelta(days=1)
    row = _stored(user_id)
    assert row.essay_count == 1
    assert row.message_count == 0


@pytest.mark.parametrize("count", [0, 1, 3])
def test_under_limit_increments_by_one(count):
    user_id = _user()
    _seed(user_id, essay_count=count, last_reset=TODAY)
    result = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert result.can_use is True
    assert result.remaining == 5 - count - 1
    assert _stored(user_id).essay_count == count + 1


@pytest.mark.parametrize("count", [5, 7])
def test_at_limit_denies_without_mutation(count):
    user_id = _user()
    _seed(user_id, essay_count=count, last_reset=TODAY)
    result = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert result.can_use is False
    assert result.remaining == 0
    assert _stored(user_id).essay_count == count


def test_example_scenario(monkeypatch):
    user_id = _user()
    _seed(user_id, essay_count=4, last_reset=TODAY)

    first = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert (first.can_use, first.remaining) == (True, 0)
    assert _stored(user_id).essay_count == 5

    second = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert (second.can_use, second.remaining) == (False, 0)
    assert _stored(user_id).essay_count == 5

    monkeypatch.setattr(usage_limits, "_now", lambda: NOW + timedelta(days=1))
    third = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert (third.can_use, third.remaining) == (True, 4)
    row = _stored(user_id)
    assert row.essay_count == 1
    assert row.last_reset_essays.replace(tzinfo=timezone.utc) == TODAY + timedelta(days=1)


def test_rollover_resets_over_limit_counter():
    user_id = _user()
    _seed(user_id, essay_count=42, last_reset=TODAY - timedelta(days=3))
    result = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert result.can_use is True
    assert result.remaining == 4
    assert _stored(user_id).essay_count == 1


def test_features_are_independent():
    user_id = _user()
    _seed(user_id, essay_count=5, last_reset=TODAY)
    assert check_and_update_limits_sync(user_id, Feature.ESSAY).can_use is False
    chat = check_and_update_limits_sync(user_id, Feature.CHAT)
    assert chat.can_use is True
    assert _stored(user_id).message_count == 1


def test_counter_never_exceeds_limit():
    user_id = _user()
    outcomes = [check_and_update_limits_sync(user_id, Feature.ESSAY).can_use for _ in range(8)]
    assert outcomes == [True] * 5 + [False] * 3
    assert _stored(user_id).essay_count == 5


@pytest.mark.parametrize("last_reset", [TODAY, TODAY - timedelta(days=1)])
def test_concurrent_requests_take_exactly_the_limit(last_reset):
    user_id = _user()
    _seed(user_id, essay_count=0, last_reset=last_reset)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(
            pool.map(lambda _: check_and_update_limits_sync(user_id, Feature.ESSAY), range(12))
        )

    assert sum(r.can_use for r in results) == 5
    assert all(r.remaining == 0 for r in results if not r.can_use)
    assert sorted(r.remaining for r in results if r.can_use) == [0, 1, 2, 3, 4]
    assert _stored(user_id).essay_count == 5


def test_check_only_does_not_mutate():
    user_id = _user()
    _seed(user_id, essay_count=2, last_reset=TODAY)
    result = check_limits_only_sync(user_id, Feature.ESSAY)
    assert result.can_use is True
    assert result.remaining == 3
    assert _stored(user_id).essay_count == 2


def test_check_only_sees_stale_window_as_empty():
    user_id = _user()
    _seed(user_id, essay_count=5, last_reset=TODAY - timedelta(days=1))
    result = check_limits_only_sync(user_id, Feature.ESSAY)
    assert result.remaining == 5
    assert _stored(user_id).essay_count == 5


def test_check_only_without_row():
    result = check_limits_only_sync(_user(), Feature.RECOMMENDER)
    assert result.can_use is True
    assert result.remaining == result.limit == 5


def test_zero_limit_denies(monkeypatch):
    monkeypatch.setattr(usage_limits.settings, "essay_daily_limit", 0)
    result = check_and_update_limits_sync(_user(), Feature.ESSAY)
    assert result.can_use is False
    assert result.remaining == 0


def test_admin_bypass(monkeypatch):
    user_id = _user()
    monkeypatch.setattr(usage_limits.settings, "admin_email", "Admin@Pathway.test")
    with db_module.SessionLocal() as db:
        db.add(Profile(id=user_id, email="admin@pathway.test"))
        db.commit()
    _seed(user_id, essay_count=100, last_reset=TODAY)

    result = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert result.can_use is True
    assert result.is_admin is True
    assert result.remaining == ADMIN_REMAINING
    assert _stored(user_id).essay_count == 100


def test_plan_limits(monkeypatch):
    monkeypatch.setattr(usage_limits.settings, "usage_limits_source", "plan")
    user_id = _user()
    with db_module.SessionLocal() as db:
        db.add(Subscription(user_id=user_id, plan_type="yearly"))
        db.commit()

    chat = check_and_update_limits_sync(user_id, Feature.CHAT)
    assert chat.can_use is True
    assert chat.remaining == ADMIN_REMAINING
    assert chat.is_admin is False

    essay = check_and_update_limits_sync(user_id, Feature.ESSAY)
    assert essay.limit == 360
    assert essay.remaining == 359


def test_plan_limits_default_to_basic(monkeypatch):
    monkeypatch.setattr(usage_limits.settings, "usage_limits_source", "plan")
    user_id = _user()
    results = [check_and_update_limits_sync(user_id, Feature.ESSAY) for _ in range(4)]
    assert [r.can_use for r in results] == [True, True, True, False]
    assert results[0].limit == 3


@pytest.mark.asyncio
async def test_storage_failure_fails_open(monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(db_module, "SessionLocal", _boom)
    result = await check_and_update_limits(_user(), Feature.CHAT)
    assert result.can_use is True
    assert result.remaining == usage_limits.settings.chat_daily_limit

    result = await check_limits_only(_user(), "essay")
    assert result.can_use is True


@pytest.mark.asyncio
async def test_storage_failure_in_plan_mode_reports_unknown_limit(monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(usage_limits.settings, "usage_limits_source", "plan")
    monkeypatch.setattr(db_module, "SessionLocal", _boom)
    result = await check_and_update_limits(_user(), Feature.ESSAY)
    assert result.can_use is True
    assert result.limit == ADMIN_REMAINING
    assert result.remaining == ADMIN_REMAINING
    assert result.reset_time is None


@pytest.mark.asyncio
async def test_async_wrapper_accepts_feature_name():
    user_id = _user()
    result = await check_and_update_limits(user_id, "recommender")
    assert result.can_use is True
    assert _stored(user_id).recommender_count == 1


@pytest.mark.asyncio
async def test_usage_summary_covers_all_features():
    summary = await usage_limits.get_usage_summary(_user())
    assert set(summary) == set(Feature)
    assert all(result.can_use for result in summary.values())
