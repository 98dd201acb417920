"""Event operations: listing, reads, mutations and attendance.

Each operation takes the session and the acting ``Actor`` explicitly, checks
the access policy and raises from ``errors`` on failure. Toggle and update
are plain read-modify-write: there is no version check, so two concurrent
writers on one event race and the last commit wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from . import crud
from .crud import UserSummary
from .errors import FieldError, Forbidden, NotFound, ValidationError
from .models import VISIBILITIES, VISIBILITY_PUBLIC, Event
from .policy import Actor, can_delete, can_read, can_write
from .queries import build_event_query, build_pagination
from .utils import to_naive_utc, utcnow

logger = logging.getLogger("uvicorn.error")

TEXT_LIMITS = {
    "title": 100,
    "description": 1000,
    "location": 200,
}
EDITABLE_FIELDS = {"title", "description", "start_date", "end_date", "location", "visibility"}
IMMUTABLE_FIELDS = {"id", "created_by_id", "attendee_ids", "created_at", "updated_at"}


@dataclass
class EventView:
    """An event with its user references resolved to display summaries."""

    event: Event
    created_by: UserSummary | None
    attendees: list[UserSummary] = field(default_factory=list)


@dataclass
class EventPage:
    events: list[EventView]
    pagination: dict[str, int]


def _resolve_views(session: Session, events: list[Event]) -> list[EventView]:
    ids: set[str] = set()
    for event in events:
        ids.add(event.created_by_id)
        ids.update(event.attendee_ids or [])
    summaries = crud.resolve_user_summaries(session, ids)
    return [
        EventView(
            event=event,
            created_by=summaries.get(event.created_by_id),
            attendees=[
                summaries[user_id]
                for user_id in event.attendee_ids or []
                if user_id in summaries
            ],
        )
        for event in events
    ]


def resolve_event(session: Session, event: Event) -> EventView:
    return _resolve_views(session, [event])[0]


def _ensure_event(session: Session, event_id: str) -> Event:
    event = crud.get_event(session, event_id)
    if event is None:
        raise NotFound("Event not found")
    return event


def _deny(actor: Actor, action: str, event_id: str) -> Forbidden:
    logger.warning("Denied %s on event %s for user %s", action, event_id, actor.id)
    return Forbidden(f"You are not allowed to {action} this event")


def _clean_text(name: str, raw: Any, errors: list[FieldError]) -> str | None:
    if raw is None:
        errors.append(FieldError(name, "required", f"{name.capitalize()} is required"))
        return None
    if not isinstance(raw, str):
        errors.append(FieldError(name, "type", f"{name.capitalize()} must be text"))
        return None
    cleaned = raw.strip()
    if not cleaned:
        errors.append(FieldError(name, "required", f"{name.capitalize()} is required"))
        return None
    if len(cleaned) > TEXT_LIMITS[name]:
        errors.append(
            FieldError(
                name,
                "max_length",
                f"{name.capitalize()} must be at most {TEXT_LIMITS[name]} characters",
            )
        )
        return None
    return cleaned


def _clean_datetime(name: str, raw: Any, errors: list[FieldError]) -> datetime | None:
    if raw is None:
        errors.append(FieldError(name, "required", f"{name} is required"))
        return None
    if isinstance(raw, str):
        try:
            raw = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            errors.append(FieldError(name, "format", f"Invalid {name} format"))
            return None
    if not isinstance(raw, datetime):
        errors.append(FieldError(name, "format", f"Invalid {name} format"))
        return None
    return to_naive_utc(raw)


def _clean_visibility(raw: Any, errors: list[FieldError]) -> str | None:
    normalized = raw.strip().lower() if isinstance(raw, str) else None
    if normalized not in VISIBILITIES:
        errors.append(
            FieldError(
                "visibility", "choice", "Visibility must be 'public' or 'private'"
            )
        )
        return None
    return normalized


def _check_date_order(
    start: datetime | None, end: datetime | None, errors: list[FieldError]
) -> None:
    if start is None or end is None:
        return
    if end <= start:
        errors.append(
            FieldError("end_date", "after_start", "End date must be after start date")
        )


def _clean_fields(data: dict[str, Any]) -> tuple[dict[str, Any], list[FieldError]]:
    errors: list[FieldError] = []
    for name in sorted(set(data) - EDITABLE_FIELDS):
        if name in IMMUTABLE_FIELDS:
            errors.append(FieldError(name, "immutable", f"{name} cannot be changed"))
        else:
            errors.append(FieldError(name, "unknown", f"Unknown field {name}"))
    cleaned: dict[str, Any] = {}
    for name in ("title", "description", "location"):
        if name in data:
            cleaned[name] = _clean_text(name, data[name], errors)
    for name in ("start_date", "end_date"):
        if name in data:
            cleaned[name] = _clean_datetime(name, data[name], errors)
    if "visibility" in data:
        cleaned["visibility"] = _clean_visibility(data["visibility"], errors)
    return cleaned, errors


def list_events(
    session: Session,
    actor: Actor,
    *,
    page: int | str = 1,
    limit: int | str = 10,
    visibility: str | None = None,
    search: str | None = None,
) -> EventPage:
    query = build_event_query(
        actor, page=page, limit=limit, visibility=visibility, search=search
    )
    total = crud.count_events(session, query)
    events = list(crud.find_events(session, query))
    return EventPage(
        events=_resolve_views(session, events),
        pagination=build_pagination(page=query.page, limit=query.limit, total=total),
    )


def get_event(session: Session, actor: Actor, event_id: str) -> EventView:
    event = _ensure_event(session, event_id)
    if not can_read(actor, event):
        raise _deny(actor, "view", event_id)
    return resolve_event(session, event)


def create_event(session: Session, actor: Actor, fields: dict[str, Any]) -> EventView:
    """Create an event owned by ``actor``; any authenticated user may do this."""
    data = dict(fields)
    data.setdefault("visibility", VISIBILITY_PUBLIC)
    for name in ("title", "description", "location", "start_date", "end_date"):
        data.setdefault(name, None)
    cleaned, errors = _clean_fields(data)
    _check_date_order(cleaned.get("start_date"), cleaned.get("end_date"), errors)
    if errors:
        raise ValidationError(errors)

    event = Event(
        title=cleaned["title"],
        description=cleaned["description"],
        start_date=cleaned["start_date"],
        end_date=cleaned["end_date"],
        location=cleaned["location"],
        visibility=cleaned["visibility"],
        created_by_id=actor.id,
        attendee_ids=[],
    )
    crud.save_event(session, event)
    logger.info("User %s created event %s (%s)", actor.id, event.id, event.visibility)
    return resolve_event(session, event)


def update_event(
    session: Session, actor: Actor, event_id: str, changes: dict[str, Any]
) -> EventView:
    event = _ensure_event(session, event_id)
    if not can_write(actor, event):
        raise _deny(actor, "edit", event_id)

    cleaned, errors = _clean_fields(changes)
    if "start_date" in cleaned or "end_date" in cleaned:
        _check_date_order(
            cleaned.get("start_date", event.start_date),
            cleaned.get("end_date", event.end_date),
            errors,
        )
    if errors:
        raise ValidationError(errors)

    for name, value in cleaned.items():
        setattr(event, name, value)
    event.updated_at = utcnow()
    crud.save_event(session, event)
    logger.info(
        "User %s updated event %s fields=%s", actor.id, event.id, sorted(cleaned)
    )
    return resolve_event(session, event)


def delete_event(session: Session, actor: Actor, event_id: str) -> str:
    _ensure_event(session, event_id)
    if not can_delete(actor):
        raise _deny(actor, "delete", event_id)
    crud.delete_event_by_id(session, event_id)
    logger.info("User %s deleted event %s", actor.id, event_id)
    return event_id


def toggle_attendance(session: Session, actor: Actor, event_id: str) -> EventView:
    """Join the event if the actor is not attending, otherwise leave it."""
    event = _ensure_event(session, event_id)
    if not can_read(actor, event):
        raise _deny(actor, "attend", event_id)

    current = list(event.attendee_ids or [])
    if actor.id in current:
        updated = [user_id for user_id in current if user_id != actor.id]
        action = "left"
    else:
        updated = current + [actor.id]
        action = "joined"
    crud.set_attendees(session, event, updated)
    logger.info("User %s %s event %s", actor.id, action, event.id)
    return resolve_event(session, event)
