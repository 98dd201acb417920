"""FastAPI application for EventBoard."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .crud import UserSummary
from .database import get_db
from .errors import EventBoardError
from .identity import get_profile, resolve_actor, sync_user
from .models import User
from .policy import Actor
from .services import (
    EventView,
    create_event,
    delete_event,
    get_event,
    list_events,
    toggle_attendance,
    update_event,
)
from .storage import init_db
from .utils import isoformat_utc

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")

EVENTS_PER_PAGE = settings.events_per_page


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventboard")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="EventBoard", version=APP_VERSION, lifespan=lifespan)


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def get_actor(request: Request, db: Session = Depends(get_db)) -> Actor:
    return resolve_actor(db, _get_bearer_token(request))


@app.exception_handler(EventBoardError)
async def eventboard_error_handler(request: Request, exc: EventBoardError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [
            str(part)
            for part in error.get("loc", ())
            if part not in ("body", "query", "path")
        ]
        errors.append(
            {
                "field": ".".join(location) or "body",
                "rule": error.get("type", "invalid"),
                "message": error.get("msg", "Invalid value"),
            }
        )
    return JSONResponse(
        {
            "error": "ValidationError",
            "detail": "Some of the fields were invalid.",
            "errors": errors,
        },
        status_code=422,
    )


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
    return JSONResponse({"error": "DatabaseError", "detail": detail}, status_code=status)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse(
        {"error": "InternalError", "detail": "Internal server error"}, status_code=500
    )


class RegisterPayload(BaseModel):
    external_id: str | None = None
    email: str | None = None
    display_name: str | None = None


class EventCreatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    location: str | None = None
    visibility: str = "public"


class EventUpdatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    location: str | None = None
    visibility: str | None = None


def _serialize_summary(summary: UserSummary | None):
    if summary is None:
        return None
    return {
        "id": summary.id,
        "display_name": summary.display_name,
        "email": summary.email,
    }


def _serialize_event(view: EventView):
    event = view.event
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "start_date": isoformat_utc(event.start_date),
        "end_date": isoformat_utc(event.end_date),
        "location": event.location,
        "visibility": event.visibility,
        "created_by": _serialize_summary(view.created_by),
        "attendees": [_serialize_summary(s) for s in view.attendees],
        "attendee_count": event.attendee_count,
        "created_at": isoformat_utc(event.created_at),
        "updated_at": isoformat_utc(event.updated_at),
    }


def _serialize_user(user: User, *, include_token: bool = False):
    payload = {
        "id": user.id,
        "external_id": user.external_id,
        "email": user.email,
        "display_name": user.display_name,
        "role": user.role,
        "created_at": isoformat_utc(user.created_at),
        "updated_at": isoformat_utc(user.updated_at),
    }
    if include_token:
        payload["api_token"] = user.api_token
    return payload


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


# -------- Auth --------


@app.post("/api/v1/auth/register")
def api_register(
    payload: RegisterPayload,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    result = sync_user(
        db,
        external_id=payload.external_id,
        email=payload.email,
        display_name=payload.display_name,
        token=_get_bearer_token(request),
    )
    response.status_code = 201 if result.created else 200
    # The token is only handed out once; re-syncs already hold it.
    return {"user": _serialize_user(result.user, include_token=result.created)}


@app.get("/api/v1/auth/profile")
def api_profile(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return {"user": _serialize_user(get_profile(db, actor))}


# -------- Events --------


@app.get("/api/v1/events")
def api_list_events(
    page: str = Query("1"),
    limit: str = Query(str(EVENTS_PER_PAGE)),
    visibility: str | None = Query(None),
    search: str | None = Query(None),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    result = list_events(
        db, actor, page=page, limit=limit, visibility=visibility, search=search
    )
    return {
        "events": [_serialize_event(view) for view in result.events],
        "pagination": result.pagination,
    }


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    view = create_event(db, actor, payload.model_dump())
    return {"event": _serialize_event(view)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(
    event_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    return {"event": _serialize_event(get_event(db, actor, event_id))}


@app.patch("/api/v1/events/{event_id}")
@app.put("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    view = update_event(db, actor, event_id, changes)
    return {"event": _serialize_event(view)}


@app.delete("/api/v1/events/{event_id}")
def api_delete_event(
    event_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    deleted_id = delete_event(db, actor, event_id)
    return {"deleted": True, "id": deleted_id}


@app.post("/api/v1/events/{event_id}/attend")
def api_toggle_attendance(
    event_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    view = toggle_attendance(db, actor, event_id)
    return {
        "event": _serialize_event(view),
        "attending": view.event.has_attendee(actor.id),
    }
