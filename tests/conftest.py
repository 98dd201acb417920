"""Shared pytest fixtures for EventBoard."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventboard import crud, database, storage
from eventboard.identity import actor_for
from eventboard.models import ROLE_ADMIN, ROLE_USER, Base, Event

BASE_START = datetime(2030, 1, 1, 9, 0, 0)


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_user(session):
    counter = {"n": 0}

    def _make_user(name: str | None = None, *, role: str = ROLE_USER):
        counter["n"] += 1
        label = name or f"user{counter['n']}"
        user = crud.create_user(
            session,
            external_id=f"ext-{label}",
            email=f"{label}@example.com",
            display_name=label.capitalize(),
            role=role,
        )
        session.commit()
        return user

    return _make_user


@pytest.fixture()
def admin(make_user):
    return make_user("root", role=ROLE_ADMIN)


@pytest.fixture()
def alice(make_user):
    return make_user("alice")


@pytest.fixture()
def bob(make_user):
    return make_user("bob")


@pytest.fixture()
def make_event(session):
    counter = {"n": 0}

    def _make_event(owner, **overrides):
        counter["n"] += 1
        start = overrides.pop("start_date", BASE_START + timedelta(days=counter["n"]))
        values = {
            "title": f"Event {counter['n']}",
            "description": "A gathering",
            "location": "Town Hall",
            "visibility": "public",
            "start_date": start,
            "end_date": start + timedelta(hours=2),
            "created_by_id": owner.id,
            "attendee_ids": [],
        }
        values.update(overrides)
        event = Event(**values)
        session.add(event)
        session.commit()
        return event

    return _make_event


def as_actor(user):
    return actor_for(user)


def auth(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {user.api_token}"}
