"""Development helpers for populating fake users and events."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import get_user_by_email
from .database import get_session
from .identity import actor_for, sync_user
from .models import VISIBILITY_PRIVATE, VISIBILITY_PUBLIC, User
from .services import create_event, toggle_attendance
from .storage import init_db
from .utils import utcnow

_event_types = [
    "Mixer",
    "Hangout",
    "Workshop",
    "Field Trip",
    "Meet & Greet",
    "Dinner",
    "Discussion",
    "Hackathon",
]


def seed_fake_data(
    *,
    user_count: int = 5,
    max_events_per_user: int = 3,
    private_percentage: int = 20,
    seed: int | None = None,
) -> dict[str, int]:
    """Populate the database with synthetic users, events and attendance."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if max_events_per_user < 0:
        raise ValueError("max_events_per_user must be >= 0")
    if not 0 <= private_percentage <= 100:
        raise ValueError("private_percentage must be between 0 and 100")

    init_db()
    fake = Faker()
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)
    stats = {"users": 0, "events": 0, "attendances": 0}

    with get_session() as session:
        users = [_create_user(session, fake) for _ in range(user_count)]
        stats["users"] = len(users)
        for user in users:
            for _ in range(rng.randint(0, max_events_per_user)):
                stats["attendances"] += _create_event(
                    session,
                    fake,
                    rng,
                    owner=user,
                    users=users,
                    private_percentage=private_percentage,
                )
                stats["events"] += 1

    return stats


def _create_user(session: Session, fake: Faker) -> User:
    for _ in range(20):
        email = fake.unique.email()
        if get_user_by_email(session, email):
            continue
        result = sync_user(
            session,
            external_id=fake.unique.uuid4(),
            email=email,
            display_name=fake.name()[:50],
        )
        return result.user
    raise RuntimeError("Failed to create a unique seed user")


def _create_event(
    session: Session,
    fake: Faker,
    rng: random.Random,
    *,
    owner: User,
    users: list[User],
    private_percentage: int,
) -> int:
    start_date = _random_start_date(rng)
    visibility = (
        VISIBILITY_PRIVATE
        if rng.randint(1, 100) <= private_percentage
        else VISIBILITY_PUBLIC
    )
    view = create_event(
        session,
        actor_for(owner),
        {
            "title": f"{fake.city()} {rng.choice(_event_types)}"[:100],
            "description": "\n\n".join(fake.paragraphs(nb=2))[:1000],
            "start_date": start_date,
            "end_date": start_date + timedelta(hours=rng.randint(1, 6)),
            "location": fake.address().replace("\n", ", ")[:200],
            "visibility": visibility,
        },
    )
    attendees = 0
    for user in users:
        if user.id == owner.id or rng.random() < 0.5:
            continue
        if visibility == VISIBILITY_PRIVATE and not user.is_admin:
            continue
        toggle_attendance(session, actor_for(user), view.event.id)
        attendees += 1
    return attendees


def _random_start_date(rng: random.Random) -> datetime:
    day_offset = rng.randint(-7, 30)
    minute_offset = rng.randint(0, 23 * 60)
    return utcnow().replace(second=0, microsecond=0) + timedelta(
        days=day_offset, minutes=minute_offset
    )
