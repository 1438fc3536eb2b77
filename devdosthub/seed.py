"""Development helpers for populating fake users, events, and RSVPs."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import create_event, create_rsvp, get_user_by_email, register_user
from .database import get_session
from .errors import CapacityExceeded
from .models import EVENT_CATEGORIES, Event, User
from .storage import init_db
from .utils import utcnow

SEED_PASSWORD = "devdost123"

_seed_roles = ["student", "student", "student", "speaker", "organizer", "mentor"]
_event_topics = [
    "Intro to Kubernetes",
    "Serverless on AWS",
    "Rust for Pythonistas",
    "Building RAG Apps",
    "Open Source Sprint",
    "System Design Basics",
    "Frontend Performance",
    "Career Q&A",
]
_tag_pool = ["python", "cloud", "ai", "web", "devops", "career", "rust", "data"]
_skill_pool = ["python", "react", "aws", "docker", "sql", "go", "ml", "figma"]


def seed_fake_data(
    *,
    user_count: int = 12,
    event_count: int = 8,
    max_rsvps_per_event: int = 5,
) -> dict[str, int]:
    """Populate the database with synthetic accounts, events, and RSVPs.

    Every seeded account uses :data:`SEED_PASSWORD`.
    """
    if user_count < 0:
        raise ValueError("user_count must be >= 0")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_rsvps_per_event < 0:
        raise ValueError("max_rsvps_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"users": 0, "events": 0, "rsvps": 0}

    with get_session() as session:
        users = [_create_user(session, fake) for _ in range(user_count)]
        stats["users"] = len(users)
        for _ in range(event_count):
            creator = random.choice(users) if users else None
            event = _create_event(session, fake, creator=creator)
            stats["events"] += 1
            stats["rsvps"] += _create_rsvps(session, event, users, max_rsvps_per_event)

    return stats


def _create_user(session: Session, fake: Faker) -> User:
    for _ in range(20):
        email = fake.unique.email()
        if get_user_by_email(session, email):
            continue
        return register_user(
            session,
            name=fake.name(),
            email=email,
            password=SEED_PASSWORD,
            role=random.choice(_seed_roles),
            skills=random.sample(_skill_pool, k=random.randint(1, 4)),
            bio=fake.sentence(nb_words=12),
            github=f"https://github.com/{fake.user_name()}",
        )
    raise RuntimeError("Failed to create a unique seed email")


def _create_event(session: Session, fake: Faker, *, creator: User | None) -> Event:
    start = _random_start_time()
    is_online = random.random() < 0.4
    return create_event(
        session,
        title=random.choice(_event_topics),
        description=fake.paragraph(nb_sentences=4),
        date=start,
        end_date=start + timedelta(hours=random.randint(1, 6)),
        location="Online" if is_online else fake.city(),
        speaker=fake.name(),
        category=random.choice(EVENT_CATEGORIES),
        capacity=random.choice([0, 0, 10, 25, 50]),
        tags=random.sample(_tag_pool, k=random.randint(1, 3)),
        is_online=is_online,
        meeting_link=fake.url() if is_online else "",
        creator=creator,
    )


def _random_start_time() -> datetime:
    now = utcnow()
    day_offset = random.randint(-14, 45)
    minute_offset = random.randint(8 * 60, 20 * 60)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=day_offset, minutes=minute_offset)


def _create_rsvps(
    session: Session, event: Event, users: list[User], max_rsvps: int
) -> int:
    if max_rsvps <= 0 or not users:
        return 0
    total = random.randint(0, min(max_rsvps, len(users)))
    created = 0
    for user in random.sample(users, k=total):
        try:
            create_rsvp(session, event_id=event.id, user_id=user.id)
        except CapacityExceeded:
            break
        created += 1
    return created
