"""Redis-backed usage counters for anonymous clients.

Each browser identifies itself with a random client id; counters are kept in
a hash ``usage:anon:<client_id>:<feature>`` holding ``count`` and
``first_use`` (ISO timestamp opening the current window).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pathway import dependencies

KEY_PREFIX = "usage:anon"
# keys outlive their window by a day so a late read still sees the old window
_KEY_GRACE = timedelta(days=1)


def usage_key(client_id: str, feature: str) -> str:
    return f"{KEY_PREFIX}:{client_id}:{feature}"


def _parse_ts(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


async def load_usage(client_id: str, feature: str) -> tuple[int, datetime | None]:
    """Return ``(count, first_use)`` for the client, ``(0, None)`` when unseen."""
    data = await dependencies.redis_client.hgetall(usage_key(client_id, feature))
    if not data:
        return 0, None
    try:
        count = max(0, int(data.get("count", 0)))
    except (TypeError, ValueError):
        count = 0
    return count, _parse_ts(data.get("first_use"))


async def store_usage(
    client_id: str,
    feature: str,
    count: int,
    first_use: datetime,
    window: timedelta,
) -> None:
    key = usage_key(client_id, feature)
    client = dependencies.redis_client
    await client.hset(key, mapping={"count": count, "first_use": first_use.isoformat()})
    await client.expire(key, int((window + _KEY_GRACE).total_seconds()))


__all__ = ["KEY_PREFIX", "usage_key", "load_usage", "store_usage"]
