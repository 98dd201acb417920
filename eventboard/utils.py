"""Utility helpers for EventBoard."""

from __future__ import annotations

from datetime import UTC, datetime
import re

_email_pattern = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_like_special = re.compile(r"([\\%_])")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def is_valid_email(value: str) -> bool:
    return bool(_email_pattern.match(value))


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user text matches literally (escape char ``\\``)."""
    return _like_special.sub(r"\\\1", value)


def isoformat_utc(value: datetime | None) -> str | None:
    """Render a stored naive UTC datetime as ISO 8601 with a ``Z`` suffix."""
    if value is None:
        return None
    return value.isoformat() + "Z"
