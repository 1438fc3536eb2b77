"""Periodic event status refresh."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from .database import get_session
from .models import Event
from .utils import utcnow

# Use uvicorn's error logger so refresh messages show up with level prefixes.
logger = logging.getLogger("uvicorn.error")

# How long after its end (or start, without an end date) an event is still ongoing.
COMPLETION_GRACE = timedelta(days=1)


def _mark_ongoing(session: Session, now: datetime) -> int:
    stmt = (
        update(Event)
        .where(Event.status == "upcoming", Event.date <= now)
        .values(status="ongoing", updated_at=now)
    )
    return session.execute(stmt).rowcount or 0


def _mark_completed(session: Session, now: datetime) -> int:
    cutoff = now - COMPLETION_GRACE
    finished = or_(
        and_(Event.end_date.is_not(None), Event.end_date <= cutoff),
        and_(Event.end_date.is_(None), Event.date <= cutoff),
    )
    stmt = (
        update(Event)
        .where(Event.status.in_(("upcoming", "ongoing")), finished)
        .values(status="completed", updated_at=now)
    )
    return session.execute(stmt).rowcount or 0


def refresh_event_statuses(*, now: datetime | None = None) -> dict[str, int]:
    """Move started events to ``ongoing`` and finished ones to ``completed``.

    Cancelled events are left alone.
    """
    now = now or utcnow()
    with get_session() as session:
        completed = _mark_completed(session, now)
        ongoing = _mark_ongoing(session, now)
    stats = {"completed": completed, "ongoing": ongoing}
    logger.info(
        "Event status refresh complete (ongoing=%d, completed=%d)",
        stats["ongoing"],
        stats["completed"],
    )
    return stats
