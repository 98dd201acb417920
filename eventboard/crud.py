"""Persistence helpers for events and users."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Iterable, Sequence

from sqlalchemy import and_, func, or_, select, true
from sqlalchemy.orm import Session

from .models import VISIBILITY_PRIVATE, VISIBILITY_PUBLIC, Event, User
from .queries import (
    SEARCH_FIELDS,
    EventQuery,
    PublicOrOwnedBy,
    SearchClause,
    Unrestricted,
    VisibilityEquals,
)
from .utils import escape_like, normalize_email, utcnow


@dataclass(frozen=True)
class UserSummary:
    id: str
    display_name: str
    email: str


def _visibility_condition(clause):
    if isinstance(clause, Unrestricted):
        return true()
    if isinstance(clause, VisibilityEquals):
        return Event.visibility == clause.visibility
    if isinstance(clause, PublicOrOwnedBy):
        return or_(
            Event.visibility == VISIBILITY_PUBLIC,
            and_(
                Event.visibility == VISIBILITY_PRIVATE,
                Event.created_by_id == clause.user_id,
            ),
        )
    raise TypeError(f"Unsupported visibility clause: {clause!r}")


def _search_condition(clause: SearchClause):
    like = f"%{escape_like(clause.text.lower())}%"
    return or_(
        *(
            func.unicode_lower(getattr(Event, name)).like(like, escape="\\")
            for name in SEARCH_FIELDS
        )
    )


def event_filters(query: EventQuery) -> list:
    """Compile the descriptor's clauses; all returned conditions are AND-ed."""
    filters = [_visibility_condition(query.visibility)]
    if query.search is not None:
        filters.append(_search_condition(query.search))
    return filters


def _order_by(query: EventQuery):
    column = getattr(Event, query.sort_field)
    if query.sort_ascending:
        return (column.asc(), Event.id.asc())
    return (column.desc(), Event.id.asc())


def find_events(session: Session, query: EventQuery) -> Sequence[Event]:
    stmt = select(Event).where(*event_filters(query))
    stmt = stmt.order_by(*_order_by(query)).offset(query.skip).limit(query.limit)
    return session.scalars(stmt).all()


def count_events(session: Session, query: EventQuery) -> int:
    stmt = select(func.count()).select_from(Event).where(*event_filters(query))
    return session.scalar(stmt) or 0


def get_event(session: Session, event_id: str) -> Event | None:
    return session.get(Event, event_id)


def save_event(session: Session, event: Event) -> Event:
    session.add(event)
    session.flush()
    return event


def delete_event_by_id(session: Session, event_id: str) -> bool:
    event = session.get(Event, event_id)
    if event is None:
        return False
    session.delete(event)
    session.flush()
    return True


def set_attendees(session: Session, event: Event, attendee_ids: Iterable[str]) -> Event:
    """Replace the whole attendee set; the last writer wins."""
    unique: list[str] = []
    for user_id in attendee_ids:
        if user_id not in unique:
            unique.append(user_id)
    # Assign a new list so the JSON column is flagged as modified.
    event.attendee_ids = unique
    event.updated_at = utcnow()
    return save_event(session, event)


def resolve_user_summaries(
    session: Session, user_ids: Iterable[str]
) -> dict[str, UserSummary]:
    ids = {user_id for user_id in user_ids if user_id}
    if not ids:
        return {}
    stmt = select(User.id, User.display_name, User.email).where(User.id.in_(ids))
    return {
        row.id: UserSummary(id=row.id, display_name=row.display_name, email=row.email)
        for row in session.execute(stmt)
    }


def get_user(session: Session, user_id: str) -> User | None:
    return session.get(User, user_id)


def get_user_by_token(session: Session, token: str) -> User | None:
    if not token:
        return None
    stmt = select(User).where(User.api_token == token)
    return session.scalars(stmt).first()


def get_user_by_external_id(session: Session, external_id: str) -> User | None:
    stmt = select(User).where(User.external_id == external_id)
    return session.scalars(stmt).first()


def get_user_by_email(session: Session, email: str) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    stmt = select(User).where(User.email == normalized)
    return session.scalars(stmt).first()


def create_user(
    session: Session,
    *,
    external_id: str,
    email: str,
    display_name: str,
    role: str,
) -> User:
    user = User(
        external_id=external_id,
        email=normalize_email(email),
        display_name=display_name,
        role=role,
        api_token=secrets.token_urlsafe(32),
    )
    session.add(user)
    session.flush()
    return user


def update_user(
    session: Session, user: User, *, email: str, display_name: str
) -> User:
    user.email = normalize_email(email)
    user.display_name = display_name
    user.updated_at = utcnow()
    session.add(user)
    session.flush()
    return user


def rotate_user_token(session: Session, user: User) -> str:
    user.api_token = secrets.token_urlsafe(32)
    user.updated_at = utcnow()
    session.add(user)
    session.flush()
    return user.api_token
