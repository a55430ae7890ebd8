"""Administrator workflows: account removal, orphan repair and role grants.

Every operation here checks that the acting account holds the Admin role
before touching anything.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .accounts import (
    ADMIN_ROLE,
    KNOWN_ROLES,
    add_membership,
    ensure_role,
    remove_membership,
    require_account,
    require_admin,
    roles_for,
)
from .catalog import EVENT_CATEGORIES, remove_event
from .errors import InvalidOperation, NotFound
from .models import RSVP, Event, Notification, User, UserRole
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


def _canonical_role(role_name: str | None) -> str:
    lowered = (role_name or "").strip().lower()
    for known in KNOWN_ROLES:
        if known.lower() == lowered:
            return known
    raise InvalidOperation(f"Unknown role '{role_name}'")


def delete_account(session: Session, user_id: str, acting_admin_id: str) -> None:
    """Remove an account, orphaning its events instead of deleting them.

    Runs entirely inside the caller's transaction so a failure part way
    through leaves nothing behind.
    """
    require_admin(session, acting_admin_id)
    if user_id == acting_admin_id:
        raise InvalidOperation("You cannot delete your own account.")
    user = require_account(session, user_id)

    orphaned = session.execute(
        update(Event).where(Event.created_by_id == user.id).values(created_by_id=None)
    ).rowcount
    rsvps_removed = session.execute(delete(RSVP).where(RSVP.user_id == user.id)).rowcount
    notifications_removed = session.execute(
        delete(Notification).where(Notification.recipient_id == user.id)
    ).rowcount
    session.execute(delete(UserRole).where(UserRole.user_id == user.id))
    session.delete(user)
    session.flush()
    logger.info(
        "Account %s deleted by %s (%s events orphaned, %s RSVPs and %s notifications removed)",
        user_id,
        acting_admin_id,
        orphaned,
        rsvps_removed,
        notifications_removed,
    )


def list_orphaned_events(session: Session, *, actor_id: str) -> Sequence[Event]:
    require_admin(session, actor_id)
    stmt = (
        select(Event)
        .where(Event.created_by_id.is_(None))
        .order_by(Event.start_time.desc(), Event.id.asc())
    )
    return session.scalars(stmt).all()


def _require_orphaned_event(session: Session, event_id: str) -> Event:
    stmt = select(Event).where(Event.id == event_id, Event.created_by_id.is_(None))
    event = session.scalars(stmt).first()
    if not event:
        raise NotFound("Orphaned event not found")
    return event


def delete_orphaned_event(session: Session, event_id: str, *, actor_id: str) -> None:
    require_admin(session, actor_id)
    event = _require_orphaned_event(session, event_id)
    remove_event(session, event)
    logger.info("Orphaned event %s (%s) deleted by %s", event.id, event.title, actor_id)


def reassign_event(
    session: Session, event_id: str, new_owner_id: str, *, actor_id: str
) -> Event:
    require_admin(session, actor_id)
    event = _require_orphaned_event(session, event_id)
    owner = require_account(session, new_owner_id)
    event.created_by_id = owner.id
    event.last_modified = utcnow()
    session.add(event)
    session.flush()
    logger.info("Event %s reassigned to %s by %s", event.id, owner.id, actor_id)
    return event


def grant_role(session: Session, user_id: str, role_name: str, *, actor_id: str) -> bool:
    require_admin(session, actor_id)
    role = _canonical_role(role_name)
    user = require_account(session, user_id)
    ensure_role(session, role)
    added = add_membership(session, user.id, role)
    if added:
        logger.info("Role %s granted to %s by %s", role, user.id, actor_id)
    return added


def revoke_role(session: Session, user_id: str, role_name: str, *, actor_id: str) -> bool:
    require_admin(session, actor_id)
    role = _canonical_role(role_name)
    if user_id == actor_id and role == ADMIN_ROLE:
        raise InvalidOperation("You cannot remove your own Admin role.")
    user = require_account(session, user_id)
    removed = remove_membership(session, user.id, role)
    if removed:
        logger.info("Role %s revoked from %s by %s", role, user.id, actor_id)
    return removed


def dashboard_counts(session: Session, *, actor_id: str) -> dict[str, int]:
    require_admin(session, actor_id)

    def count(model, *criteria) -> int:
        stmt = select(func.count()).select_from(model)
        for condition in criteria:
            stmt = stmt.where(condition)
        return session.scalar(stmt) or 0

    return {
        "users": count(User),
        "events": count(Event),
        "rsvps": count(RSVP),
        "orphaned_events": count(Event, Event.created_by_id.is_(None)),
    }


def account_details(session: Session, user_id: str, *, actor_id: str) -> dict[str, Any]:
    require_admin(session, actor_id)
    user = require_account(session, user_id)
    events_created = session.scalar(
        select(func.count()).select_from(Event).where(Event.created_by_id == user.id)
    )
    rsvp_count = session.scalar(
        select(func.count()).select_from(RSVP).where(RSVP.user_id == user.id)
    )
    return {
        "user": user,
        "roles": sorted(roles_for(session, user.id)),
        "events_created": events_created or 0,
        "rsvps": rsvp_count or 0,
    }


def event_statistics(
    session: Session, *, actor_id: str, now: datetime | None = None
) -> dict[str, Any]:
    require_admin(session, actor_id)
    now = now or utcnow()
    by_category = {category: 0 for category in EVENT_CATEGORIES}
    rows = session.execute(
        select(Event.category, func.count()).group_by(Event.category)
    ).all()
    for category, total in rows:
        by_category[category] = total

    upcoming = session.scalar(
        select(func.count()).select_from(Event).where(Event.start_time >= now)
    )
    past = session.scalar(
        select(func.count()).select_from(Event).where(Event.start_time < now)
    )
    rsvp_total = func.count(RSVP.id)
    popular_row = session.execute(
        select(Event, rsvp_total)
        .outerjoin(RSVP, RSVP.event_id == Event.id)
        .group_by(Event.id)
        .order_by(rsvp_total.desc(), Event.start_time.asc())
        .limit(1)
    ).first()
    return {
        "by_category": by_category,
        "upcoming": upcoming or 0,
        "past": past or 0,
        "most_popular": popular_row[0] if popular_row else None,
        "most_popular_rsvps": popular_row[1] if popular_row else 0,
    }
