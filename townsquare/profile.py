"""Per-account views: own events, upcoming RSVPs, history and stats."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import RSVP, Event
from .notifications import unread_count
from .utils import utcnow


def events_created_by(session: Session, user_id: str) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.created_by_id == user_id)
        .order_by(Event.start_time.desc())
    )
    return session.scalars(stmt).all()


def upcoming_rsvps(
    session: Session, user_id: str, *, now: datetime | None = None
) -> list[tuple[RSVP, Event]]:
    now = now or utcnow()
    stmt = (
        select(RSVP, Event)
        .join(Event, Event.id == RSVP.event_id)
        .where(RSVP.user_id == user_id, Event.start_time >= now)
        .order_by(Event.start_time.asc())
    )
    return [(rsvp, event) for rsvp, event in session.execute(stmt).all()]


def event_history(
    session: Session, user_id: str, *, now: datetime | None = None
) -> list[tuple[RSVP, Event]]:
    now = now or utcnow()
    stmt = (
        select(RSVP, Event)
        .join(Event, Event.id == RSVP.event_id)
        .where(RSVP.user_id == user_id, Event.start_time < now)
        .order_by(Event.start_time.desc())
    )
    return [(rsvp, event) for rsvp, event in session.execute(stmt).all()]


def user_stats(
    session: Session, user_id: str, *, now: datetime | None = None
) -> dict[str, Any]:
    now = now or utcnow()

    def rsvp_count(*criteria) -> int:
        stmt = (
            select(func.count())
            .select_from(RSVP)
            .join(Event, Event.id == RSVP.event_id)
        )
        for condition in criteria:
            stmt = stmt.where(condition)
        return session.scalar(stmt) or 0

    events_created = session.scalar(
        select(func.count()).select_from(Event).where(Event.created_by_id == user_id)
    )
    favourite = session.execute(
        select(Event.category, func.count().label("total"))
        .join(RSVP, RSVP.event_id == Event.id)
        .where(RSVP.user_id == user_id)
        .group_by(Event.category)
        .order_by(func.count().desc(), Event.category.asc())
        .limit(1)
    ).first()
    return {
        "events_created": events_created or 0,
        "rsvps_received": rsvp_count(Event.created_by_id == user_id),
        "events_attended": rsvp_count(RSVP.user_id == user_id, Event.start_time < now),
        "upcoming_events": rsvp_count(RSVP.user_id == user_id, Event.start_time >= now),
        "favourite_category": favourite[0] if favourite else None,
        "favourite_category_count": favourite[1] if favourite else 0,
        "unread_notifications": unread_count(session, user_id),
    }
