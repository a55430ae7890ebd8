from __future__ import annotations

from townsquare import seed
from townsquare.database import get_session
from townsquare.models import Event, RSVP, User


def test_seed_fake_data_creates_sample_events(monkeypatch):
    monkeypatch.setattr(seed, "init_db", lambda: None)

    stats = seed.seed_fake_data(user_count=3, max_rsvps_per_event=2)

    assert stats["users"] == 3
    assert stats["events"] == len(seed.SAMPLE_EVENTS)
    with get_session() as session:
        assert session.query(User).count() == 3
        assert session.query(Event).count() == len(seed.SAMPLE_EVENTS)
        assert session.query(RSVP).count() == stats["rsvps"]
        assert stats["rsvps"] <= 2 * len(seed.SAMPLE_EVENTS)
