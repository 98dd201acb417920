"""Event list query construction.

The builder turns an actor plus caller-supplied filters into an
``EventQuery``: a typed descriptor the repository compiles to SQL. Caller
text never reaches the repository except as the literal payload of a
``SearchClause``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union

from .errors import InvalidParameter
from .models import VISIBILITIES, VISIBILITY_PRIVATE, VISIBILITY_PUBLIC
from .policy import Actor

SEARCH_FIELDS = ("title", "description", "location")


@dataclass(frozen=True)
class Unrestricted:
    """No visibility restriction (admins without a filter)."""

    def matches(self, event) -> bool:
        return True


@dataclass(frozen=True)
class VisibilityEquals:
    """Literal visibility filter, only ever built for admins."""

    visibility: str

    def matches(self, event) -> bool:
        return event.visibility == self.visibility


@dataclass(frozen=True)
class PublicOrOwnedBy:
    """``public`` OR (``private`` AND created by ``user_id``)."""

    user_id: str

    def matches(self, event) -> bool:
        if event.visibility == VISIBILITY_PUBLIC:
            return True
        return (
            event.visibility == VISIBILITY_PRIVATE
            and event.created_by_id == self.user_id
        )


VisibilityClause = Union[Unrestricted, VisibilityEquals, PublicOrOwnedBy]


@dataclass(frozen=True)
class SearchClause:
    """Case-insensitive substring match on any of ``SEARCH_FIELDS``."""

    text: str

    def matches(self, event) -> bool:
        needle = self.text.lower()
        return any(needle in (getattr(event, name) or "").lower() for name in SEARCH_FIELDS)


@dataclass(frozen=True)
class EventQuery:
    visibility: VisibilityClause
    search: SearchClause | None
    page: int
    limit: int
    sort_field: str = "start_date"
    sort_ascending: bool = True

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def matches(self, event) -> bool:
        """Evaluate the filter clauses (not pagination) against one event."""
        if not self.visibility.matches(event):
            return False
        return self.search is None or self.search.matches(event)


def _require_positive(name: str, value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParameter(name, f"{name} must be an integer") from exc
    if number < 1:
        raise InvalidParameter(name, f"{name} must be at least 1")
    return number


def _normalize_visibility_filter(raw: str | None) -> str | None:
    if raw is None:
        return None
    cleaned = raw.strip().lower()
    if not cleaned:
        return None
    if cleaned not in VISIBILITIES:
        raise InvalidParameter(
            "visibility", "visibility must be either 'public' or 'private'"
        )
    return cleaned


def _normalize_search(raw: str | None) -> str | None:
    if not raw:
        return None
    cleaned = raw.strip()
    return cleaned or None


def build_event_query(
    actor: Actor,
    *,
    page: int | str = 1,
    limit: int | str = 10,
    visibility: str | None = None,
    search: str | None = None,
) -> EventQuery:
    """Combine the actor's visibility scope with the caller's filters."""
    page = _require_positive("page", page)
    limit = _require_positive("limit", limit)
    visibility_filter = _normalize_visibility_filter(visibility)

    clause: VisibilityClause
    if actor.is_admin:
        clause = (
            VisibilityEquals(visibility_filter) if visibility_filter else Unrestricted()
        )
    else:
        # The visibility knob is admin-only; non-admins always get their scope.
        clause = PublicOrOwnedBy(actor.id)

    text = _normalize_search(search)
    return EventQuery(
        visibility=clause,
        search=SearchClause(text) if text else None,
        page=page,
        limit=limit,
    )


def build_pagination(*, page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }
