"""SQLAlchemy models for EventBoard."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import declarative_base

from .utils import utcnow

Base = declarative_base()

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = {ROLE_ADMIN, ROLE_USER}

VISIBILITY_PUBLIC = "public"
VISIBILITY_PRIVATE = "private"
VISIBILITIES = {VISIBILITY_PUBLIC, VISIBILITY_PRIVATE}


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    external_id = Column(String(128), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(50), nullable=False)
    role = Column(String(16), nullable=False, default=ROLE_USER)
    api_token = Column(String(128), nullable=False, unique=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    start_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=False)
    location = Column(String(200), nullable=False)
    visibility = Column(String(16), nullable=False, default=VISIBILITY_PUBLIC)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    # Embedded attendee set; stored as a JSON list without duplicates.
    attendee_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    @property
    def attendee_count(self) -> int:
        return len(self.attendee_ids or [])

    def has_attendee(self, user_id: str) -> bool:
        return user_id in (self.attendee_ids or [])
