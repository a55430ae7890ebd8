"""Development helpers for populating fake accounts, events and RSVPs."""

from __future__ import annotations

import random
from datetime import timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .accounts import create_account, get_account_by_email
from .catalog import create_event
from .database import get_session
from .models import Event, User
from .rsvps import create_rsvp
from .storage import init_db
from .utils import utcnow

SAMPLE_EVENTS = (
    {
        "title": "Jazz Concert in the Park",
        "description": "Enjoy an evening of smooth jazz with local musicians. Bring "
        "your blankets and picnic baskets for a relaxing night under the stars.",
        "location": "Central Park, Borås",
        "category": "concert",
        "days_ahead": 7,
    },
    {
        "title": "Farmers Market",
        "description": "Fresh local produce, artisan crafts, and homemade goods. "
        "Support local farmers and craftspeople while enjoying the community "
        "atmosphere.",
        "location": "Town Square, Borås",
        "category": "market",
        "days_ahead": 3,
    },
    {
        "title": "Coding Workshop: Python Web Services",
        "description": "Learn the fundamentals of building web services. Suitable "
        "for beginners with some programming experience. Laptops required.",
        "location": "Tech Hub, Allégatan 1, Borås",
        "category": "workshop",
        "days_ahead": 14,
    },
    {
        "title": "Charity Run for Children",
        "description": "5K and 10K runs to raise funds for local children's "
        "charities. All fitness levels welcome. Registration includes a t-shirt "
        "and refreshments.",
        "location": "Borås Stadium",
        "category": "sports",
        "days_ahead": 21,
    },
    {
        "title": "Summer Food Festival",
        "description": "Taste dishes from around the world prepared by local "
        "restaurants and food trucks. Live music and family activities "
        "throughout the day.",
        "location": "Stadsparken, Borås",
        "category": "other",
        "days_ahead": 30,
    },
    {
        "title": "Photography Exhibition Opening",
        "description": "Opening night of 'Urban Perspectives', a collection of "
        "street photography from Borås and surrounding areas. Meet the artists "
        "and enjoy complimentary refreshments.",
        "location": "Borås Art Museum",
        "category": "other",
        "days_ahead": 10,
    },
)


def seed_fake_data(*, user_count: int = 8, max_rsvps_per_event: int = 4) -> dict[str, int]:
    """Populate the database with synthetic accounts and the sample events."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if max_rsvps_per_event < 0:
        raise ValueError("max_rsvps_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"users": 0, "events": 0, "rsvps": 0}

    with get_session() as session:
        users = [_create_user(session, fake) for _ in range(user_count)]
        stats["users"] = len(users)
        for sample in SAMPLE_EVENTS:
            event = _create_event(session, sample, owner=random.choice(users))
            stats["events"] += 1
            stats["rsvps"] += _create_rsvps(session, event, users, max_rsvps_per_event)

    return stats


def _create_user(session: Session, fake: Faker) -> User:
    for _ in range(20):
        email = fake.unique.email()
        if get_account_by_email(session, email):
            continue
        return create_account(session, display_name=fake.name(), email=email)
    raise RuntimeError("Failed to create a unique account email")


def _create_event(session: Session, sample: dict, *, owner: User) -> Event:
    start_time = (utcnow() + timedelta(days=sample["days_ahead"])).replace(
        hour=18, minute=0, second=0, microsecond=0
    )
    fields = {key: value for key, value in sample.items() if key != "days_ahead"}
    return create_event(session, owner.id, {**fields, "start_time": start_time})


def _create_rsvps(
    session: Session, event: Event, users: list[User], max_rsvps: int
) -> int:
    if max_rsvps <= 0:
        return 0
    total = random.randint(0, min(max_rsvps, len(users)))
    for user in random.sample(users, total):
        create_rsvp(session, event.id, user.id)
    return total
