"""Event catalog: creation, ownership-checked edits and filtered listing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from .accounts import is_admin, require_account
from .errors import Forbidden, NotFound, ValidationError
from .models import RSVP, Event, Notification
from .utils import clean_text, to_naive_utc, utcnow

logger = logging.getLogger("uvicorn.error")

EVENT_CATEGORIES = ("concert", "market", "workshop", "sports", "other")
EDITABLE_FIELDS = ("title", "description", "start_time", "location", "category")

TITLE_MAX = 120
DESCRIPTION_MAX = 4000
LOCATION_MAX = 160


@dataclass(frozen=True)
class EventFilter:
    """Listing options; every field is optional and they combine with AND."""

    keyword: str | None = None
    category: str | None = None
    start_after: datetime | None = None
    start_before: datetime | None = None


def normalize_category(raw: Any) -> str | None:
    normalized = clean_text(str(raw) if raw is not None else None).lower()
    return normalized if normalized in EVENT_CATEGORIES else None


def _parse_start_time(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        return to_naive_utc(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            return to_naive_utc(datetime.fromisoformat(raw.strip()))
        except ValueError:
            return None
    return None


def _check_text(
    errors: dict[str, str], field: str, value: str, *, label: str, limit: int
) -> None:
    if not value:
        errors[field] = f"{label} is required"
    elif len(value) > limit:
        errors[field] = f"{label} must be at most {limit} characters"


def validate_event_fields(
    fields: Mapping[str, Any], *, partial: bool = False
) -> dict[str, Any]:
    """Return cleaned event values or raise ValidationError listing every failure.

    With ``partial`` only the fields present in ``fields`` are checked.
    """
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}

    def wanted(name: str) -> bool:
        return not partial or name in fields

    if wanted("title"):
        cleaned["title"] = clean_text(fields.get("title"))
        _check_text(errors, "title", cleaned["title"], label="Title", limit=TITLE_MAX)
    if wanted("description"):
        cleaned["description"] = clean_text(fields.get("description"))
        _check_text(
            errors,
            "description",
            cleaned["description"],
            label="Description",
            limit=DESCRIPTION_MAX,
        )
    if wanted("location"):
        cleaned["location"] = clean_text(fields.get("location"))
        _check_text(
            errors,
            "location",
            cleaned["location"],
            label="Location",
            limit=LOCATION_MAX,
        )
    if wanted("category"):
        category = normalize_category(fields.get("category"))
        if category is None:
            errors["category"] = (
                f"Category must be one of: {', '.join(EVENT_CATEGORIES)}"
            )
        cleaned["category"] = category
    if wanted("start_time"):
        start_time = _parse_start_time(fields.get("start_time"))
        if start_time is None:
            errors["start_time"] = "A valid start time is required"
        cleaned["start_time"] = start_time

    if errors:
        raise ValidationError(errors)
    return cleaned


def get_event(session: Session, event_id: str | None) -> Event | None:
    if not event_id:
        return None
    return session.get(Event, event_id)


def require_event(session: Session, event_id: str | None) -> Event:
    event = get_event(session, event_id)
    if not event:
        raise NotFound("Event not found")
    return event


def _require_owner_or_admin(session: Session, event: Event, actor_id: str | None) -> None:
    if actor_id and event.created_by_id == actor_id:
        return
    if is_admin(session, actor_id):
        return
    raise Forbidden("Only the event creator or an administrator may change this event")


def create_event(session: Session, owner_id: str, fields: Mapping[str, Any]) -> Event:
    """Create and persist a new event owned by ``owner_id``."""
    cleaned = validate_event_fields(fields)
    require_account(session, owner_id)
    event = Event(created_by_id=owner_id, **cleaned)
    session.add(event)
    session.flush()
    logger.info("Event %s (%s) created by %s", event.id, event.title, owner_id)
    return event


def update_event(
    session: Session, event_id: str, actor_id: str | None, fields: Mapping[str, Any]
) -> Event:
    """Apply a partial update; the creator reference is never touched here."""
    event = require_event(session, event_id)
    _require_owner_or_admin(session, event, actor_id)
    editable = {key: value for key, value in fields.items() if key in EDITABLE_FIELDS}
    cleaned = validate_event_fields(editable, partial=True)
    for key, value in cleaned.items():
        setattr(event, key, value)
    event.last_modified = utcnow()
    session.add(event)
    session.flush()
    return event


def delete_event(session: Session, event_id: str, actor_id: str | None) -> None:
    event = require_event(session, event_id)
    _require_owner_or_admin(session, event, actor_id)
    remove_event(session, event)
    logger.info("Event %s (%s) deleted by %s", event.id, event.title, actor_id)


def remove_event(session: Session, event: Event) -> None:
    """Delete ``event`` and its RSVPs; notifications keep their text."""
    session.execute(delete(RSVP).where(RSVP.event_id == event.id))
    session.execute(
        update(Notification)
        .where(Notification.event_id == event.id)
        .values(event_id=None)
    )
    session.delete(event)
    session.flush()


def _event_search_clause(keyword: str | None):
    cleaned = clean_text(keyword)
    if not cleaned:
        return None
    # Literal substring match: % and _ in the keyword are not wildcards.
    return or_(
        Event.title.icontains(cleaned, autoescape=True),
        Event.description.icontains(cleaned, autoescape=True),
        Event.location.icontains(cleaned, autoescape=True),
    )


def list_events(session: Session, event_filter: EventFilter | None = None) -> Sequence[Event]:
    event_filter = event_filter or EventFilter()
    stmt = select(Event)
    clause = _event_search_clause(event_filter.keyword)
    if clause is not None:
        stmt = stmt.where(clause)
    if event_filter.category:
        category = normalize_category(event_filter.category)
        if category is None:
            raise ValidationError({"category": "Unknown category"})
        stmt = stmt.where(Event.category == category)
    if event_filter.start_after:
        stmt = stmt.where(Event.start_time >= to_naive_utc(event_filter.start_after))
    if event_filter.start_before:
        stmt = stmt.where(Event.start_time <= to_naive_utc(event_filter.start_before))
    stmt = stmt.order_by(Event.start_time.asc(), Event.id.asc())
    return session.scalars(stmt).all()
