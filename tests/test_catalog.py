from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_event, make_user
from townsquare import catalog
from townsquare.catalog import EventFilter
from townsquare.errors import Forbidden, NotFound, ValidationError
from townsquare.models import RSVP, Notification
from townsquare.rsvps import create_rsvp
from townsquare.utils import utcnow


def test_create_event_records_owner_and_cleans_fields(session):
    owner = make_user(session, "Owner")
    event = make_event(session, owner, title="  Farmers Market ", category="MARKET")

    assert event.title == "Farmers Market"
    assert event.category == "market"
    assert event.created_by_id == owner.id
    assert not event.is_orphaned


def test_create_event_collects_field_errors(session):
    owner = make_user(session, "Owner")

    with pytest.raises(ValidationError) as excinfo:
        catalog.create_event(
            session,
            owner.id,
            {
                "title": "x" * 121,
                "description": "",
                "start_time": "not a date",
                "location": "Borås",
                "category": "rave",
            },
        )
    assert set(excinfo.value.errors) == {"title", "description", "start_time", "category"}


def test_create_event_accepts_iso_strings_and_normalizes_to_utc(session):
    owner = make_user(session, "Owner")
    event = catalog.create_event(
        session,
        owner.id,
        {
            "title": "Morning Run",
            "description": "5K around the lake.",
            "start_time": "2030-06-01T08:00:00+02:00",
            "location": "Borås Stadium",
            "category": "sports",
        },
    )

    assert event.start_time == datetime(2030, 6, 1, 6, 0)


def test_create_event_requires_existing_owner(session):
    with pytest.raises(NotFound):
        catalog.create_event(
            session,
            "missing",
            {
                "title": "Ghost Event",
                "description": "Nobody is hosting this.",
                "start_time": utcnow(),
                "location": "Nowhere",
                "category": "other",
            },
        )


def test_update_event_by_owner_changes_only_given_fields(session):
    owner = make_user(session, "Owner")
    event = make_event(session, owner)

    updated = catalog.update_event(
        session, event.id, owner.id, {"title": "Jazz Night II", "created_by_id": "x"}
    )
    session.commit()

    assert updated.title == "Jazz Night II"
    assert updated.location == "Stadsparken, Borås"
    assert updated.created_by_id == owner.id


def test_update_event_rejects_other_users_but_allows_admins(session):
    owner = make_user(session, "Owner")
    stranger = make_user(session, "Stranger")
    admin = make_user(session, "Root", admin=True)
    event = make_event(session, owner)

    with pytest.raises(Forbidden):
        catalog.update_event(session, event.id, stranger.id, {"title": "Mine now"})

    catalog.update_event(session, event.id, admin.id, {"category": "other"})
    session.commit()
    assert catalog.require_event(session, event.id).category == "other"


def test_update_event_validates_partial_fields(session):
    owner = make_user(session, "Owner")
    event = make_event(session, owner)

    with pytest.raises(ValidationError) as excinfo:
        catalog.update_event(session, event.id, owner.id, {"location": "  "})
    assert list(excinfo.value.errors) == ["location"]


def test_delete_event_removes_rsvps_and_keeps_notification_text(session):
    owner = make_user(session, "Owner")
    guest = make_user(session, "Guest")
    event = make_event(session, owner)
    create_rsvp(session, event.id, guest.id)
    session.commit()
    event_id = event.id

    catalog.delete_event(session, event_id, owner.id)
    session.commit()

    assert catalog.get_event(session, event_id) is None
    assert session.query(RSVP).filter_by(event_id=event_id).count() == 0
    notification = session.query(Notification).one()
    assert notification.event_id is None
    assert "Jazz Night" in notification.message


def test_delete_event_forbidden_for_non_owner(session):
    owner = make_user(session, "Owner")
    stranger = make_user(session, "Stranger")
    event = make_event(session, owner)

    with pytest.raises(Forbidden):
        catalog.delete_event(session, event.id, stranger.id)
    with pytest.raises(NotFound):
        catalog.delete_event(session, "missing", owner.id)


def test_list_events_orders_by_start_time_and_filters(session):
    owner = make_user(session, "Owner")
    later = make_event(session, owner, title="Later Concert", days_ahead=10)
    sooner = make_event(
        session,
        owner,
        title="Pottery Workshop",
        days_ahead=2,
        category="workshop",
        description="Hands-on clay session.",
    )

    assert [e.id for e in catalog.list_events(session)] == [sooner.id, later.id]
    assert [e.id for e in catalog.list_events(session, EventFilter(keyword="clay"))] == [
        sooner.id
    ]
    assert [
        e.id for e in catalog.list_events(session, EventFilter(category="Concert"))
    ] == [later.id]

    cutoff = utcnow() + timedelta(days=5)
    assert [
        e.id for e in catalog.list_events(session, EventFilter(start_after=cutoff))
    ] == [later.id]
    aware_cutoff = cutoff.replace(tzinfo=timezone.utc)
    assert [
        e.id for e in catalog.list_events(session, EventFilter(start_before=aware_cutoff))
    ] == [sooner.id]


def test_list_events_keyword_wildcards_match_literally(session):
    owner = make_user(session, "Owner")
    make_event(session, owner, title="Jazz Night")
    sale = make_event(session, owner, title="Market: 50% off crafts", category="market")

    # Only the event that literally contains a percent sign.
    assert [e.id for e in catalog.list_events(session, EventFilter(keyword="%"))] == [
        sale.id
    ]
    assert catalog.list_events(session, EventFilter(keyword="_")) == []
    assert catalog.list_events(session, EventFilter(keyword="5_%")) == []
    titles = [e.title for e in catalog.list_events(session, EventFilter(keyword="JAZZ"))]
    assert titles == ["Jazz Night"]


def test_list_events_rejects_unknown_category(session):
    with pytest.raises(ValidationError):
        catalog.list_events(session, EventFilter(category="rave"))
