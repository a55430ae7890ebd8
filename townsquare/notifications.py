"""Per-recipient notification mailbox."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import NotFound
from .models import Event, Notification

PAGE_SIZE = 50


def list_for_recipient(
    session: Session, user_id: str, limit: int | None = None
) -> list[tuple[Notification, Event | None]]:
    """Newest notifications first, each with its source event when it still exists."""
    page_size = PAGE_SIZE if not limit or limit <= 0 else min(limit, PAGE_SIZE)
    stmt = (
        select(Notification, Event)
        .outerjoin(Event, Event.id == Notification.event_id)
        .where(Notification.recipient_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(page_size)
    )
    return [(notification, event) for notification, event in session.execute(stmt).all()]


def _owned_notification(
    session: Session, notification_id: str, user_id: str | None
) -> Notification:
    # Someone else's notification reads exactly like a missing one.
    notification = session.get(Notification, notification_id) if notification_id else None
    if not notification or not user_id or notification.recipient_id != user_id:
        raise NotFound("Notification not found")
    return notification


def mark_read(session: Session, notification_id: str, user_id: str | None) -> Notification:
    notification = _owned_notification(session, notification_id, user_id)
    if not notification.is_read:
        notification.is_read = True
        session.add(notification)
        session.flush()
    return notification


def mark_all_read(session: Session, user_id: str) -> int:
    """Flag every unread notification as read and return how many changed."""
    stmt = select(Notification).where(
        Notification.recipient_id == user_id, Notification.is_read.is_(False)
    )
    unread = session.scalars(stmt).all()
    for notification in unread:
        notification.is_read = True
        session.add(notification)
    session.flush()
    return len(unread)


def delete_notification(session: Session, notification_id: str, user_id: str | None) -> None:
    notification = _owned_notification(session, notification_id, user_id)
    session.delete(notification)
    session.flush()


def unread_count(session: Session, user_id: str | None) -> int:
    if not user_id:
        return 0
    stmt = (
        select(func.count())
        .select_from(Notification)
        .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
    )
    return session.scalar(stmt) or 0
