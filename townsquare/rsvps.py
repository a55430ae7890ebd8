"""RSVP engine.

An RSVP and the notification it triggers are written in the caller's
transaction; the unique (event, user) constraint settles concurrent attempts.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .accounts import require_account
from .catalog import require_event
from .errors import AlreadyExists, NotFound
from .models import RSVP, Event, Notification, User
from .utils import truncate, utcnow

logger = logging.getLogger("uvicorn.error")

NOTIFICATION_MESSAGE_MAX = 240


class Attendee(NamedTuple):
    user_id: str
    display_name: str
    rsvp_at: datetime


def _is_unique_violation(exc: IntegrityError) -> bool:
    raw = str(getattr(exc, "orig", None) or exc).lower()
    return "unique" in raw or "duplicate" in raw


def find_rsvp(session: Session, event_id: str, user_id: str) -> RSVP | None:
    stmt = select(RSVP).where(RSVP.event_id == event_id, RSVP.user_id == user_id)
    return session.scalars(stmt).first()


def rsvp_message(display_name: str | None, event: Event) -> str:
    text = f"{display_name or 'Someone'} has RSVP'd to your event '{event.title}'"
    return truncate(text, NOTIFICATION_MESSAGE_MAX)


def _notify_owner(session: Session, *, event: Event, author: User) -> Notification | None:
    owner_id = event.created_by_id
    if not owner_id or owner_id == author.id:
        return None
    notification = Notification(
        recipient_id=owner_id,
        event_id=event.id,
        message=rsvp_message(author.display_name, event),
        is_read=False,
        created_at=utcnow(),
    )
    session.add(notification)
    session.flush()
    return notification


def create_rsvp(session: Session, event_id: str, user_id: str) -> RSVP:
    """Commit ``user_id`` to ``event_id`` and notify the event owner.

    Raises NotFound for an unknown event or account and AlreadyExists when the
    pair is already recorded, whether found up front or rejected by the
    unique constraint on insert.
    """
    event = require_event(session, event_id)
    author = require_account(session, user_id)
    if find_rsvp(session, event.id, author.id):
        raise AlreadyExists()

    rsvp = RSVP(event_id=event.id, user_id=author.id, created_at=utcnow())
    try:
        # Savepoint: a rejected insert must not discard the caller's other work.
        with session.begin_nested():
            session.add(rsvp)
            session.flush()
    except IntegrityError as exc:
        if _is_unique_violation(exc):
            logger.info(
                "Concurrent RSVP for event %s by %s rejected by unique constraint",
                event_id,
                user_id,
            )
            raise AlreadyExists() from exc
        raise

    _notify_owner(session, event=event, author=author)
    logger.info("RSVP %s created for event %s by %s", rsvp.id, event.id, author.id)
    return rsvp


def withdraw_rsvp(session: Session, event_id: str, user_id: str) -> None:
    """Remove the caller's RSVP. Notifications already sent stay in place."""
    rsvp = find_rsvp(session, event_id, user_id)
    if not rsvp:
        raise NotFound("RSVP not found")
    session.delete(rsvp)
    session.flush()
    logger.info("RSVP withdrawn for event %s by %s", event_id, user_id)


def list_attendees(session: Session, event_id: str) -> list[Attendee]:
    """Attendees in first-come-first-served order."""
    require_event(session, event_id)
    stmt = (
        select(User.id, User.display_name, RSVP.created_at)
        .join(User, User.id == RSVP.user_id)
        .where(RSVP.event_id == event_id)
        .order_by(RSVP.created_at.asc(), RSVP.id.asc())
    )
    return [Attendee(*row) for row in session.execute(stmt).all()]


def count_rsvps(session: Session, event_id: str | None) -> int:
    if not event_id:
        return 0
    stmt = select(func.count()).select_from(RSVP).where(RSVP.event_id == event_id)
    return session.scalar(stmt) or 0


def has_rsvp(session: Session, event_id: str | None, user_id: str | None) -> bool:
    if not event_id or not user_id:
        return False
    return find_rsvp(session, event_id, user_id) is not None
