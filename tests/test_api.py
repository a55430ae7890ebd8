from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from townsquare import api, storage
from townsquare.utils import utcnow
from townsquare.weather import Forecast


class FixedWeather:
    def __init__(self):
        self.calls = []

    def get_forecast(self, location, on):
        self.calls.append((location, on))
        return Forecast(
            temperature=21.0,
            humidity=55.0,
            wind_speed=3.5,
            description="Clear sky",
            icon="☀️",
        )


@pytest.fixture()
def weather_provider():
    provider = FixedWeather()
    api.app.dependency_overrides[api.get_weather_provider] = lambda: provider
    yield provider
    api.app.dependency_overrides.pop(api.get_weather_provider, None)


@pytest.fixture()
def client(weather_provider):
    with TestClient(api.app) as test_client:
        yield test_client


@pytest.fixture()
def admin_id(client):
    return storage.bootstrap()


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def _register(client, name: str) -> str:
    response = client.post(
        "/api/v1/accounts",
        json={"display_name": name, "email": f"{name.lower()}@example.com"},
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _event_payload(**overrides):
    payload = {
        "title": "Farmers Market",
        "description": "Fresh local produce.",
        "start_time": (utcnow() + timedelta(days=3)).replace(microsecond=0).isoformat(),
        "location": "Town Square, Borås",
        "category": "market",
    }
    payload.update(overrides)
    return payload


def _create_event(client, owner_id: str, **overrides) -> dict:
    response = client.post("/api/v1/events", json=_event_payload(**overrides), headers=_as(owner_id))
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_event_crud_flow(client):
    owner = _register(client, "Owner")
    stranger = _register(client, "Stranger")
    event = _create_event(client, owner)

    listed = client.get("/api/v1/events", params={"category": "market"}).json()["events"]
    assert [e["id"] for e in listed] == [event["id"]]
    assert listed[0]["rsvp_count"] == 0

    forbidden = client.patch(
        f"/api/v1/events/{event['id']}", json={"title": "Hijacked"}, headers=_as(stranger)
    )
    assert forbidden.status_code == 403

    updated = client.patch(
        f"/api/v1/events/{event['id']}", json={"title": "Evening Market"}, headers=_as(owner)
    )
    assert updated.status_code == 200
    assert updated.json()["title"] == "Evening Market"

    deleted = client.delete(f"/api/v1/events/{event['id']}", headers=_as(owner))
    assert deleted.status_code == 204
    assert client.get(f"/api/v1/events/{event['id']}").status_code == 404


def test_create_event_requires_identity_and_valid_fields(client):
    owner = _register(client, "Owner")

    assert client.post("/api/v1/events", json=_event_payload()).status_code == 401

    response = client.post(
        "/api/v1/events",
        json=_event_payload(title="", category="rave"),
        headers=_as(owner),
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "ValidationError"
    assert set(body["errors"]) == {"title", "category"}


def test_event_detail_includes_weather_and_rsvp_state(client, weather_provider):
    owner = _register(client, "Owner")
    guest = _register(client, "Guest")
    event = _create_event(client, owner)
    client.post(f"/api/v1/events/{event['id']}/rsvps", headers=_as(guest))

    detail = client.get(f"/api/v1/events/{event['id']}", headers=_as(guest)).json()

    assert detail["creator_name"] == "Owner"
    assert detail["rsvp_count"] == 1
    assert detail["has_rsvp"] is True
    assert detail["is_event_creator"] is False
    assert detail["weather"]["description"] == "Clear sky"
    assert weather_provider.calls[0][0] == "Town Square, Borås"


def test_rsvp_flow_and_duplicate(client):
    owner = _register(client, "Owner")
    guest = _register(client, "Guest")
    event = _create_event(client, owner, title="Charity Run", category="sports")
    rsvp_url = f"/api/v1/events/{event['id']}/rsvps"

    first = client.post(rsvp_url, headers=_as(guest))
    assert first.status_code == 201
    duplicate = client.post(rsvp_url, headers=_as(guest))
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "AlreadyExists"

    count = client.get(f"{rsvp_url}/count").json()["count"]
    assert count == 1
    assert client.get(f"{rsvp_url}/self", headers=_as(guest)).json() == {"has_rsvp": True}

    attendees = client.get(
        f"/api/v1/events/{event['id']}/attendees", headers=_as(owner)
    ).json()["attendees"]
    assert [a["display_name"] for a in attendees] == ["Guest"]

    inbox = client.get("/api/v1/notifications", headers=_as(owner)).json()
    assert inbox["unread"] == 1
    assert inbox["notifications"][0]["message"] == (
        "Guest has RSVP'd to your event 'Charity Run'"
    )

    assert client.delete(f"{rsvp_url}/self", headers=_as(guest)).status_code == 204
    assert client.delete(f"{rsvp_url}/self", headers=_as(guest)).status_code == 404
    assert client.post(
        "/api/v1/events/missing/rsvps", headers=_as(guest)
    ).status_code == 404


def test_notification_endpoints(client):
    owner = _register(client, "Owner")
    first_guest = _register(client, "Anna")
    second_guest = _register(client, "Bert")
    event = _create_event(client, owner)
    for guest in (first_guest, second_guest):
        client.post(f"/api/v1/events/{event['id']}/rsvps", headers=_as(guest))

    notifications = client.get("/api/v1/notifications", headers=_as(owner)).json()[
        "notifications"
    ]
    assert len(notifications) == 2
    target = notifications[0]["id"]

    assert client.post(
        f"/api/v1/notifications/{target}/read", headers=_as(first_guest)
    ).status_code == 404
    marked = client.post(f"/api/v1/notifications/{target}/read", headers=_as(owner))
    assert marked.json() == {"id": target, "is_read": True}

    all_read = client.post("/api/v1/notifications/read-all", headers=_as(owner))
    assert all_read.json() == {"updated": 1}

    assert client.delete(
        f"/api/v1/notifications/{target}", headers=_as(owner)
    ).status_code == 204
    remaining = client.get("/api/v1/notifications", headers=_as(owner)).json()
    assert len(remaining["notifications"]) == 1
    assert remaining["unread"] == 0


def test_profile_endpoints(client):
    owner = _register(client, "Owner")
    guest = _register(client, "Guest")
    event = _create_event(client, owner)
    client.post(f"/api/v1/events/{event['id']}/rsvps", headers=_as(guest))

    mine = client.get("/api/v1/me/events", headers=_as(owner)).json()["events"]
    assert [e["id"] for e in mine] == [event["id"]]
    upcoming = client.get("/api/v1/me/rsvps", headers=_as(guest)).json()["events"]
    assert [e["id"] for e in upcoming] == [event["id"]]
    assert client.get("/api/v1/me/history", headers=_as(guest)).json()["events"] == []
    stats = client.get("/api/v1/me/stats", headers=_as(owner)).json()
    assert stats["events_created"] == 1
    assert stats["rsvps_received"] == 1


def test_admin_account_deletion_and_orphan_repair(client, admin_id):
    host = _register(client, "Host")
    heir = _register(client, "Heir")
    event = _create_event(client, host)

    assert client.delete(
        f"/api/v1/admin/users/{host}", headers=_as(heir)
    ).status_code == 403
    assert client.delete(
        f"/api/v1/admin/users/{admin_id}", headers=_as(admin_id)
    ).status_code == 400
    assert client.delete(
        f"/api/v1/admin/users/{host}", headers=_as(admin_id)
    ).status_code == 204

    orphans = client.get("/api/v1/admin/orphaned-events", headers=_as(admin_id)).json()
    assert [e["id"] for e in orphans["events"]] == [event["id"]]
    assert orphans["events"][0]["is_orphaned"] is True

    reassigned = client.post(
        f"/api/v1/admin/orphaned-events/{event['id']}/reassign",
        json={"new_owner_id": heir},
        headers=_as(admin_id),
    )
    assert reassigned.status_code == 200
    assert reassigned.json()["created_by_id"] == heir

    assert client.delete(
        f"/api/v1/admin/orphaned-events/{event['id']}", headers=_as(admin_id)
    ).status_code == 404


def test_admin_roles_and_summaries(client, admin_id):
    user = _register(client, "Member")
    _create_event(client, user)

    granted = client.post(
        f"/api/v1/admin/users/{user}/roles", json={"role": "admin"}, headers=_as(admin_id)
    )
    assert granted.json() == {"changed": True}
    details = client.get(f"/api/v1/admin/users/{user}", headers=_as(admin_id)).json()
    assert details["roles"] == ["Admin", "User"]
    assert details["user"]["email"] == "member@example.com"

    revoked = client.delete(f"/api/v1/admin/users/{user}/roles/Admin", headers=_as(admin_id))
    assert revoked.json() == {"changed": True}
    unknown = client.post(
        f"/api/v1/admin/users/{user}/roles", json={"role": "Wizard"}, headers=_as(admin_id)
    )
    assert unknown.status_code == 400

    summary = client.get("/api/v1/admin/summary", headers=_as(admin_id)).json()
    assert summary["users"] == 2
    assert summary["events"] == 1

    stats = client.get("/api/v1/admin/event-statistics", headers=_as(admin_id)).json()
    assert stats["by_category"]["market"] == 1
    assert stats["most_popular"]["title"] == "Farmers Market"

    users = client.get(
        "/api/v1/admin/users", params={"q": "member"}, headers=_as(admin_id)
    ).json()["users"]
    assert [u["id"] for u in users] == [user]
    assert client.get("/api/v1/admin/summary", headers=_as(user)).status_code == 403
