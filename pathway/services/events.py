from __future__ import annotations

import logging

from pathway import db as db_module
from pathway.models import Event

logger = logging.getLogger(__name__)


def track_event_sync(user_id: str | None, event: str) -> None:
    """Record an analytics event; anonymous callers are only logged."""
    if user_id is None:
        logger.info("event %s (anonymous)", event)
        return
    with db_module.SessionLocal() as db:
        db.add(Event(user_id=user_id, event=event))
        db.commit()


__all__ = ["track_event_sync"]
