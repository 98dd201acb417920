"""Identity resolution and user sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from . import crud
from .config import settings
from .errors import FieldError, Forbidden, NotFound, Unauthenticated, ValidationError
from .models import ROLE_ADMIN, ROLE_USER, ROLES, User
from .policy import Actor
from .utils import is_valid_email, normalize_email

logger = logging.getLogger("uvicorn.error")

DISPLAY_NAME_MAX_LENGTH = 50


@dataclass(frozen=True)
class SyncResult:
    user: User
    created: bool


def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


def resolve_actor(session: Session, token: str | None) -> Actor:
    """Map a bearer credential to an ``Actor`` or raise ``Unauthenticated``."""
    if not token:
        raise Unauthenticated("Missing bearer token")
    user = crud.get_user_by_token(session, token)
    if user is None:
        raise Unauthenticated("Invalid bearer token")
    return actor_for(user)


def _validate_registration(
    external_id: str | None, email: str | None, display_name: str | None
) -> tuple[str, str, str]:
    errors: list[FieldError] = []
    cleaned_external = (external_id or "").strip()
    cleaned_email = normalize_email(email)
    cleaned_name = (display_name or "").strip()
    if not cleaned_external:
        errors.append(FieldError("external_id", "required", "External id is required"))
    if not cleaned_email:
        errors.append(FieldError("email", "required", "Email is required"))
    elif not is_valid_email(cleaned_email):
        errors.append(FieldError("email", "format", "Invalid email format"))
    if not cleaned_name:
        errors.append(
            FieldError("display_name", "required", "Display name is required")
        )
    elif len(cleaned_name) > DISPLAY_NAME_MAX_LENGTH:
        errors.append(
            FieldError("display_name", "max_length", "Display name too long")
        )
    if errors:
        raise ValidationError(errors)
    return cleaned_external, cleaned_email, cleaned_name


def _initial_role(email: str) -> str:
    bootstrap = normalize_email(settings.bootstrap_admin_email)
    return ROLE_ADMIN if bootstrap and email == bootstrap else ROLE_USER


def sync_user(
    session: Session,
    *,
    external_id: str | None,
    email: str | None,
    display_name: str | None,
    token: str | None = None,
) -> SyncResult:
    """Create a user on first sync, or refresh email/display name afterwards.

    Re-syncing an existing identity requires that identity's own token. The
    role is decided once, at creation, and never taken from the caller.
    """
    external_id, email, display_name = _validate_registration(
        external_id, email, display_name
    )
    existing = crud.get_user_by_external_id(session, external_id)
    if existing is not None and (not token or token != existing.api_token):
        raise Forbidden("Re-syncing an identity requires its own bearer token")

    owner = crud.get_user_by_email(session, email)
    if owner is not None and (existing is None or owner.id != existing.id):
        raise ValidationError(
            [FieldError("email", "unique", "Email is already registered")]
        )

    if existing is not None:
        user = crud.update_user(
            session, existing, email=email, display_name=display_name
        )
        logger.info("Re-synced user %s (%s)", user.id, user.email)
        return SyncResult(user=user, created=False)

    user = crud.create_user(
        session,
        external_id=external_id,
        email=email,
        display_name=display_name,
        role=_initial_role(email),
    )
    logger.info("Created user %s (%s) with role %s", user.id, user.email, user.role)
    return SyncResult(user=user, created=True)


def get_profile(session: Session, actor: Actor) -> User:
    user = crud.get_user(session, actor.id)
    if user is None:
        raise NotFound("User not found")
    return user


def find_user(session: Session, identifier: str) -> User:
    """Look a user up by id, email or external id (CLI helper)."""
    user = (
        crud.get_user(session, identifier)
        or crud.get_user_by_email(session, identifier)
        or crud.get_user_by_external_id(session, identifier)
    )
    if user is None:
        raise NotFound(f"No user matches {identifier!r}")
    return user


def set_user_role(session: Session, identifier: str, role: str) -> User:
    normalized = (role or "").strip().lower()
    if normalized not in ROLES:
        raise ValidationError(
            [FieldError("role", "choice", "Role must be 'admin' or 'user'")]
        )
    user = find_user(session, identifier)
    user.role = normalized
    session.add(user)
    session.flush()
    logger.info("Set role of user %s to %s", user.id, normalized)
    return user
