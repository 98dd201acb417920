"""Access policy for events.

Every function here is pure: it looks only at the actor and the event it is
given and never touches the database. Callers decide what a ``False`` means
(filtering a list, raising ``Forbidden`` after a fetch, ...).
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import ROLE_ADMIN, VISIBILITY_PUBLIC


@dataclass(frozen=True)
class Actor:
    """The authenticated identity performing an operation."""

    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def _is_creator(actor: Actor, event) -> bool:
    return event.created_by_id == actor.id


def can_list(actor: Actor, event) -> bool:
    """Public events, the actor's own events, or anything for admins."""
    return event.visibility == VISIBILITY_PUBLIC or actor.is_admin or _is_creator(actor, event)


def can_read(actor: Actor, event) -> bool:
    return can_list(actor, event)


def can_write(actor: Actor, event) -> bool:
    """Field edits are limited to the creator and admins."""
    return actor.is_admin or _is_creator(actor, event)


def can_delete(actor: Actor) -> bool:
    """Only admins delete; owning the event is not enough."""
    return actor.is_admin
