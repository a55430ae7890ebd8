"""FastAPI application for Townsquare.

A thin JSON surface over the services. The fronting identity layer passes the
authenticated account id in the ``X-User-Id`` header.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import accounts, admin, catalog, notifications, profile, rsvps
from .catalog import EventFilter
from .database import SessionLocal, run_in_transaction
from .errors import (
    AlreadyExists,
    Forbidden,
    InvalidOperation,
    NotFound,
    TownsquareError,
    ValidationError,
)
from .models import Event, Notification, User
from .storage import init_db
from .weather import OpenMeteoProvider, WeatherProvider, forecast_for_event

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    try:
        return pkg_version("townsquare")
    except PackageNotFoundError:
        return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="Townsquare", version=APP_VERSION, lifespan=lifespan)

ERROR_STATUS: dict[type[TownsquareError], int] = {
    NotFound: 404,
    Forbidden: 403,
    ValidationError: 422,
    AlreadyExists: 409,
    InvalidOperation: 400,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_weather_provider() -> WeatherProvider:
    return OpenMeteoProvider()


def current_user_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str | None:
    cleaned = (x_user_id or "").strip()
    return cleaned or None


def require_user_id(user_id: str | None = Depends(current_user_id)) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


@app.exception_handler(TownsquareError)
async def domain_error_handler(request: Request, exc: TownsquareError):
    status = ERROR_STATUS.get(type(exc), 400)
    payload: dict[str, Any] = {"error": type(exc).__name__, "detail": exc.message}
    if isinstance(exc, ValidationError):
        payload["errors"] = exc.errors
    return JSONResponse(payload, status_code=status)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


class AccountCreatePayload(BaseModel):
    display_name: str
    email: str


class EventCreatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    start_time: str | None = None
    location: str | None = None
    category: str | None = None


class EventUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    start_time: str | None = None
    location: str | None = None
    category: str | None = None


class ReassignPayload(BaseModel):
    new_owner_id: str


class RolePayload(BaseModel):
    role: str


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize_user(user: User) -> dict[str, Any]:
    return {"id": user.id, "display_name": user.display_name, "email": user.email}


def _serialize_event(event: Event) -> dict[str, Any]:
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "start_time": _iso(event.start_time),
        "location": event.location,
        "category": event.category,
        "created_by_id": event.created_by_id,
        "is_orphaned": event.is_orphaned,
    }


def _serialize_notification(notification: Notification, event: Event | None) -> dict[str, Any]:
    return {
        "id": notification.id,
        "message": notification.message,
        "is_read": notification.is_read,
        "created_at": _iso(notification.created_at),
        "event": _serialize_event(event) if event else None,
    }


def _parse_iso_datetime_param(name: str, raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid {name}; use ISO8601 format"
        ) from exc


@app.get("/api/health")
def health_check():
    return {"status": "ok", "version": APP_VERSION}


# -------- Accounts --------


@app.post("/api/v1/accounts", status_code=201)
def api_create_account(payload: AccountCreatePayload):
    user = run_in_transaction(
        lambda session: accounts.create_account(
            session, display_name=payload.display_name, email=payload.email
        )
    )
    return _serialize_user(user)


# -------- Events --------


@app.get("/api/v1/events")
def api_list_events(
    q: str | None = Query(None),
    category: str | None = Query(None),
    start_after: str | None = Query(None),
    start_before: str | None = Query(None),
    db: Session = Depends(get_db),
):
    event_filter = EventFilter(
        keyword=q,
        category=category,
        start_after=_parse_iso_datetime_param("start_after", start_after),
        start_before=_parse_iso_datetime_param("start_before", start_before),
    )
    events = catalog.list_events(db, event_filter)
    return {
        "events": [
            {**_serialize_event(event), "rsvp_count": rsvps.count_rsvps(db, event.id)}
            for event in events
        ]
    }


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload, user_id: str = Depends(require_user_id)
):
    event = run_in_transaction(
        lambda session: catalog.create_event(session, user_id, payload.model_dump())
    )
    return _serialize_event(event)


@app.get("/api/v1/events/{event_id}")
def api_get_event(
    event_id: str,
    user_id: str | None = Depends(current_user_id),
    weather: WeatherProvider = Depends(get_weather_provider),
    db: Session = Depends(get_db),
):
    event = catalog.require_event(db, event_id)
    forecast = forecast_for_event(weather, event)
    return {
        **_serialize_event(event),
        "creator_name": accounts.display_name_for(db, event.created_by_id),
        "rsvp_count": rsvps.count_rsvps(db, event.id),
        "has_rsvp": rsvps.has_rsvp(db, event.id, user_id),
        "is_event_creator": bool(user_id) and event.created_by_id == user_id,
        "weather": forecast.as_dict() if forecast else None,
    }


@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    user_id: str = Depends(require_user_id),
):
    updates = payload.model_dump(exclude_unset=True)
    event = run_in_transaction(
        lambda session: catalog.update_event(session, event_id, user_id, updates)
    )
    return _serialize_event(event)


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(event_id: str, user_id: str = Depends(require_user_id)):
    run_in_transaction(lambda session: catalog.delete_event(session, event_id, user_id))
    return Response(status_code=204)


# -------- RSVPs --------


@app.post("/api/v1/events/{event_id}/rsvps", status_code=201)
def api_create_rsvp(event_id: str, user_id: str = Depends(require_user_id)):
    rsvp = run_in_transaction(
        lambda session: rsvps.create_rsvp(session, event_id, user_id)
    )
    return {
        "id": rsvp.id,
        "event_id": rsvp.event_id,
        "user_id": rsvp.user_id,
        "created_at": _iso(rsvp.created_at),
    }


@app.delete("/api/v1/events/{event_id}/rsvps/self", status_code=204)
def api_withdraw_rsvp(event_id: str, user_id: str = Depends(require_user_id)):
    run_in_transaction(lambda session: rsvps.withdraw_rsvp(session, event_id, user_id))
    return Response(status_code=204)


@app.get("/api/v1/events/{event_id}/rsvps/self")
def api_has_rsvp(
    event_id: str,
    user_id: str | None = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return {"has_rsvp": rsvps.has_rsvp(db, event_id, user_id)}


@app.get("/api/v1/events/{event_id}/rsvps/count")
def api_count_rsvps(event_id: str, db: Session = Depends(get_db)):
    return {"count": rsvps.count_rsvps(db, event_id)}


@app.get("/api/v1/events/{event_id}/attendees")
def api_list_attendees(
    event_id: str,
    _: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    attendees = rsvps.list_attendees(db, event_id)
    return {
        "attendees": [
            {"display_name": attendee.display_name, "rsvp_at": _iso(attendee.rsvp_at)}
            for attendee in attendees
        ]
    }


# -------- Notifications --------


@app.get("/api/v1/notifications")
def api_list_notifications(
    limit: int = Query(notifications.PAGE_SIZE, ge=1),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    rows = notifications.list_for_recipient(db, user_id, limit)
    return {
        "notifications": [
            _serialize_notification(notification, event) for notification, event in rows
        ],
        "unread": notifications.unread_count(db, user_id),
    }


@app.post("/api/v1/notifications/read-all")
def api_mark_all_read(user_id: str = Depends(require_user_id)):
    updated = run_in_transaction(
        lambda session: notifications.mark_all_read(session, user_id)
    )
    return {"updated": updated}


@app.post("/api/v1/notifications/{notification_id}/read")
def api_mark_read(notification_id: str, user_id: str = Depends(require_user_id)):
    notification = run_in_transaction(
        lambda session: notifications.mark_read(session, notification_id, user_id)
    )
    return {"id": notification.id, "is_read": notification.is_read}


@app.delete("/api/v1/notifications/{notification_id}", status_code=204)
def api_delete_notification(
    notification_id: str, user_id: str = Depends(require_user_id)
):
    run_in_transaction(
        lambda session: notifications.delete_notification(
            session, notification_id, user_id
        )
    )
    return Response(status_code=204)


# -------- Profile --------


@app.get("/api/v1/me/events")
def api_my_events(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    return {
        "events": [
            {**_serialize_event(event), "rsvp_count": rsvps.count_rsvps(db, event.id)}
            for event in profile.events_created_by(db, user_id)
        ]
    }


@app.get("/api/v1/me/rsvps")
def api_my_rsvps(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    return {
        "events": [
            {**_serialize_event(event), "rsvp_at": _iso(rsvp.created_at)}
            for rsvp, event in profile.upcoming_rsvps(db, user_id)
        ]
    }


@app.get("/api/v1/me/history")
def api_my_history(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    return {
        "events": [
            {**_serialize_event(event), "rsvp_at": _iso(rsvp.created_at)}
            for rsvp, event in profile.event_history(db, user_id)
        ]
    }


@app.get("/api/v1/me/stats")
def api_my_stats(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    return profile.user_stats(db, user_id)


# -------- Admin --------


@app.get("/api/v1/admin/summary")
def api_admin_summary(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    return admin.dashboard_counts(db, actor_id=user_id)


@app.get("/api/v1/admin/event-statistics")
def api_admin_event_statistics(
    user_id: str = Depends(require_user_id), db: Session = Depends(get_db)
):
    stats = admin.event_statistics(db, actor_id=user_id)
    popular = stats["most_popular"]
    return {**stats, "most_popular": _serialize_event(popular) if popular else None}


@app.get("/api/v1/admin/users")
def api_admin_users(
    q: str | None = Query(None),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    accounts.require_admin(db, user_id)
    return {
        "users": [
            {**_serialize_user(user), "roles": sorted(accounts.roles_for(db, user.id))}
            for user in accounts.search_accounts(db, q)
        ]
    }


@app.get("/api/v1/admin/users/{target_id}")
def api_admin_user_details(
    target_id: str,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    details = admin.account_details(db, target_id, actor_id=user_id)
    return {**details, "user": _serialize_user(details["user"])}


@app.delete("/api/v1/admin/users/{target_id}", status_code=204)
def api_admin_delete_user(target_id: str, user_id: str = Depends(require_user_id)):
    run_in_transaction(
        lambda session: admin.delete_account(session, target_id, user_id)
    )
    return Response(status_code=204)


@app.post("/api/v1/admin/users/{target_id}/roles")
def api_admin_grant_role(
    target_id: str, payload: RolePayload, user_id: str = Depends(require_user_id)
):
    added = run_in_transaction(
        lambda session: admin.grant_role(
            session, target_id, payload.role, actor_id=user_id
        )
    )
    return {"changed": added}


@app.delete("/api/v1/admin/users/{target_id}/roles/{role_name}")
def api_admin_revoke_role(
    target_id: str, role_name: str, user_id: str = Depends(require_user_id)
):
    removed = run_in_transaction(
        lambda session: admin.revoke_role(session, target_id, role_name, actor_id=user_id)
    )
    return {"changed": removed}


@app.get("/api/v1/admin/orphaned-events")
def api_admin_orphaned_events(
    user_id: str = Depends(require_user_id), db: Session = Depends(get_db)
):
    return {
        "events": [
            {**_serialize_event(event), "rsvp_count": rsvps.count_rsvps(db, event.id)}
            for event in admin.list_orphaned_events(db, actor_id=user_id)
        ]
    }


@app.delete("/api/v1/admin/orphaned-events/{event_id}", status_code=204)
def api_admin_delete_orphaned_event(
    event_id: str, user_id: str = Depends(require_user_id)
):
    run_in_transaction(
        lambda session: admin.delete_orphaned_event(session, event_id, actor_id=user_id)
    )
    return Response(status_code=204)


@app.post("/api/v1/admin/orphaned-events/{event_id}/reassign")
def api_admin_reassign_event(
    event_id: str, payload: ReassignPayload, user_id: str = Depends(require_user_id)
):
    event = run_in_transaction(
        lambda session: admin.reassign_event(
            session, event_id, payload.new_owner_id, actor_id=user_id
        )
    )
    return _serialize_event(event)
