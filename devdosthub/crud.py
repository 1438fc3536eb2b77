"""CRUD helpers for users, events, and RSVPs."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import String, cast, func, insert, literal, or_, select
from sqlalchemy.orm import Session

from .config import settings
from .errors import (
    CapacityExceeded,
    DuplicateEmail,
    DuplicateRSVP,
    InvalidCredential,
    LegacyAccount,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from .models import EVENT_CATEGORIES, EVENT_STATUSES, USER_ROLES, Event, RSVP, User
from .security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from .utils import normalize_email, normalize_skills, normalize_tags, to_naive_utc, utcnow

PROFILE_FIELDS = ("name", "skills", "bio", "avatar", "github", "linkedin")
EVENT_FIELDS = (
    "title",
    "description",
    "date",
    "end_date",
    "location",
    "speaker",
    "category",
    "capacity",
    "tags",
    "is_online",
    "meeting_link",
    "status",
)
MIN_PASSWORD_LENGTH = 6
MAX_DESCRIPTION_LENGTH = 2000
_email_pattern = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _now() -> datetime:
    return utcnow()


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _require_text(value: str | None, message: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(message)
    return cleaned


def _require_choice(value: str, choices: Sequence[str], label: str) -> str:
    if value not in choices:
        allowed = ", ".join(choices)
        raise ValidationError(f"`{value}` is not a valid {label}; use one of: {allowed}")
    return value


# -------- Users --------


def get_user(session: Session, user_id: str | None) -> User | None:
    if not user_id:
        return None
    return session.get(User, user_id)


def get_user_by_email(session: Session, email: str) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    stmt = select(User).where(User.email == normalized)
    return session.scalars(stmt).first()


def require_user(session: Session, user_id: str) -> User:
    user = get_user(session, user_id)
    if not user:
        raise NotFound("User not found")
    return user


def register_user(
    session: Session,
    *,
    name: str,
    email: str,
    password: str,
    role: str | None = None,
    skills: Sequence[str] | str | None = None,
    bio: str | None = None,
    avatar: str | None = None,
    github: str | None = None,
    linkedin: str | None = None,
) -> User:
    """Create an account, storing only a hash of the password."""
    cleaned_name = _require_text(name, "Name is required")
    normalized_email = normalize_email(email)
    if not _email_pattern.match(normalized_email):
        raise ValidationError("Please provide a valid email")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    resolved_role = _require_choice(role or "student", USER_ROLES, "role")
    if get_user_by_email(session, normalized_email):
        raise DuplicateEmail()

    user = User(
        name=cleaned_name,
        email=normalized_email,
        password_hash=hash_password(password),
        role=resolved_role,
        skills=normalize_skills(skills),
        bio=bio or "",
        avatar=avatar or "",
        github=github or "",
        linkedin=linkedin or "",
    )
    session.add(user)
    session.flush()
    return user


def login_user(session: Session, *, email: str, password: str) -> tuple[str, User]:
    """Check credentials and return a fresh bearer token with the user."""
    if not email or not password:
        raise ValidationError("Please provide email and password")
    user = get_user_by_email(session, email)
    if not user:
        raise NotFound("No account found with this email")
    if not user.password_hash:
        raise LegacyAccount()
    if not verify_password(password, user.password_hash):
        raise InvalidCredential()
    return create_access_token(user.id), user


def user_from_token(session: Session, token: str | None) -> User:
    user_id = decode_access_token(token)
    user = get_user(session, user_id)
    if not user:
        raise Unauthenticated("User no longer exists")
    return user


def list_users(session: Session) -> Sequence[User]:
    stmt = select(User).order_by(User.created_at.desc())
    return session.scalars(stmt).all()


def update_profile(session: Session, user: User, updates: dict[str, Any]) -> User:
    """Apply self-service profile changes; other keys are ignored."""
    for field in PROFILE_FIELDS:
        if field not in updates or updates[field] is None:
            continue
        value = updates[field]
        if field == "name":
            value = _require_text(value, "Name is required")
        elif field == "skills":
            value = normalize_skills(value)
        setattr(user, field, value)
    user.updated_at = _now()
    session.add(user)
    session.flush()
    return user


def set_user_role(session: Session, user_id: str, role: str | None) -> User:
    _require_choice(role or "", USER_ROLES, "role")
    user = require_user(session, user_id)
    user.role = role
    user.updated_at = _now()
    session.add(user)
    session.flush()
    return user


def delete_user(session: Session, user_id: str) -> None:
    """Hard-delete a user along with their RSVPs; their events lose the creator."""
    user = require_user(session, user_id)
    session.delete(user)
    session.flush()


# -------- Events --------


def _validate_event(event: Event) -> None:
    event.title = _require_text(event.title, "Event title is required")
    event.location = _require_text(event.location, "Location is required")
    event.speaker = _require_text(event.speaker, "Speaker name is required")
    if event.date is None:
        raise ValidationError("Event date is required")
    if event.end_date is not None and event.end_date < event.date:
        raise ValidationError("End date must not be before the start date")
    if len(event.description or "") > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    _require_choice(event.category, EVENT_CATEGORIES, "category")
    _require_choice(event.status, EVENT_STATUSES, "status")
    try:
        capacity = int(event.capacity or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Capacity must be a whole number") from exc
    if capacity < 0:
        raise ValidationError("Capacity cannot be negative")
    event.capacity = capacity


def create_event(
    session: Session,
    *,
    title: str,
    date: datetime | None,
    location: str,
    speaker: str,
    description: str | None = None,
    end_date: datetime | None = None,
    category: str | None = None,
    capacity: int | None = None,
    tags: Sequence[str] | str | None = None,
    is_online: bool = False,
    meeting_link: str | None = None,
    status: str | None = None,
    creator: User | None = None,
) -> Event:
    """Create and persist a new event."""
    event = Event(
        title=title,
        description=description or "",
        date=to_naive_utc(date),
        end_date=to_naive_utc(end_date),
        location=location,
        speaker=speaker,
        category=category or "meetup",
        capacity=capacity or 0,
        tags=normalize_tags(tags),
        is_online=bool(is_online),
        meeting_link=meeting_link or "",
        status=status or "upcoming",
        creator=creator,
    )
    _validate_event(event)
    session.add(event)
    session.flush()
    return event


def get_event(session: Session, event_id: str) -> Event:
    event = session.get(Event, event_id) if event_id else None
    if not event:
        raise NotFound("Event not found")
    return event


def event_attendees(event: Event) -> list[User]:
    return [rsvp.user for rsvp in event.rsvps if rsvp.user is not None]


def _tag_match_clause(dialect: str, pattern: str):
    """EXISTS over the individual tag values of the correlated event."""
    if dialect == "postgresql":
        elements = func.json_array_elements_text(Event.tags)
    elif dialect == "sqlite":
        elements = func.json_each(Event.tags)
    else:
        # No portable JSON array expansion; match the serialized list instead.
        return cast(Event.tags, String).ilike(pattern, escape="\\")
    tag = elements.table_valued("value", joins_implicitly=True)
    return select(tag.c.value).where(tag.c.value.ilike(pattern, escape="\\")).exists()


def _event_search_clause(term: str, *, dialect: str):
    pattern = _like_pattern(term)
    return or_(
        Event.title.ilike(pattern, escape="\\"),
        Event.speaker.ilike(pattern, escape="\\"),
        Event.location.ilike(pattern, escape="\\"),
        _tag_match_clause(dialect, pattern),
    )


def list_events(
    session: Session,
    *,
    search: str | None = None,
    category: str | None = None,
    status: str | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> tuple[Sequence[Event], int]:
    """Return one page of events ordered by start date plus the total match count."""
    per_page = per_page or settings.events_per_page
    filters = []
    if search and search.strip():
        dialect = session.get_bind().dialect.name
        filters.append(_event_search_clause(search.strip(), dialect=dialect))
    if category:
        filters.append(Event.category == category)
    if status:
        filters.append(Event.status == status)

    count_stmt = select(func.count()).select_from(Event)
    stmt = select(Event).order_by(Event.date.asc(), Event.created_at.asc())
    for condition in filters:
        count_stmt = count_stmt.where(condition)
        stmt = stmt.where(condition)
    total = session.scalar(count_stmt) or 0

    offset = (max(page, 1) - 1) * per_page
    events = session.scalars(stmt.offset(offset).limit(per_page)).all()
    return events, total


def update_event(session: Session, event_id: str, updates: dict[str, Any]) -> Event:
    """Merge ``updates`` into the stored event and re-validate the result."""
    event = get_event(session, event_id)
    for field in EVENT_FIELDS:
        if field not in updates:
            continue
        value = updates[field]
        if field in {"date", "end_date"}:
            value = to_naive_utc(value)
        elif field == "tags":
            value = normalize_tags(value)
        elif field in {"description", "meeting_link"}:
            value = value or ""
        elif field == "is_online":
            value = bool(value)
        elif field == "capacity" and value is None:
            value = 0
        setattr(event, field, value)
    _validate_event(event)
    event.updated_at = _now()
    session.add(event)
    session.flush()
    return event


def delete_event(session: Session, event_id: str) -> None:
    """Delete an event and every RSVP that references it."""
    event = get_event(session, event_id)
    session.delete(event)
    session.flush()


def category_counts(session: Session) -> list[dict[str, Any]]:
    stmt = (
        select(Event.category, func.count(Event.id).label("count"))
        .group_by(Event.category)
        .order_by(func.count(Event.id).desc(), Event.category.asc())
    )
    return [{"_id": category, "count": count} for category, count in session.execute(stmt)]


def event_stats(session: Session, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or _now()
    total_events = session.scalar(select(func.count()).select_from(Event)) or 0
    upcoming_events = (
        session.scalar(select(func.count()).select_from(Event).where(Event.date >= now))
        or 0
    )
    total_rsvps = session.scalar(select(func.count()).select_from(RSVP)) or 0
    return {
        "totalEvents": total_events,
        "upcomingEvents": upcoming_events,
        "totalRSVPs": total_rsvps,
        "categoryCounts": category_counts(session),
    }


# -------- RSVPs --------


def _find_rsvp(session: Session, event_id: str, user_id: str) -> RSVP | None:
    stmt = select(RSVP).where(RSVP.event_id == event_id, RSVP.user_id == user_id)
    return session.scalars(stmt).first()


def _rsvp_count(session: Session, event_id: str) -> int:
    stmt = select(func.count()).select_from(RSVP).where(RSVP.event_id == event_id)
    return session.scalar(stmt) or 0


def _insert_rsvp_if_allowed(session: Session, event: Event, user_id: str) -> RSVP:
    """Insert with a single conditional statement so concurrent callers cannot
    both take the last seat or both register the same user."""
    session.flush()
    rsvp_id = str(uuid.uuid4())
    now = _now()
    taken = (
        select(func.count(RSVP.id))
        .where(RSVP.event_id == Event.id)
        .scalar_subquery()
    )
    duplicate = (
        select(RSVP.id)
        .where(RSVP.event_id == Event.id, RSVP.user_id == user_id)
        .exists()
    )
    source = select(
        literal(rsvp_id),
        Event.id,
        literal(user_id),
        literal(now),
        literal(now),
    ).where(
        Event.id == event.id,
        ~duplicate,
        or_(Event.capacity == 0, taken < Event.capacity),
    )
    stmt = insert(RSVP.__table__).from_select(
        ["id", "event_id", "user_id", "created_at", "updated_at"], source
    )
    result = session.execute(stmt)
    session.expire(event, ["rsvps", "rsvp_count"])
    if result.rowcount == 0:
        if event.capacity > 0 and _rsvp_count(session, event.id) >= event.capacity:
            raise CapacityExceeded()
        raise DuplicateRSVP()
    return session.get(RSVP, rsvp_id)


def create_rsvp(
    session: Session, *, event_id: str, user_id: str, atomic: bool | None = None
) -> RSVP:
    """Register ``user_id`` for ``event_id``.

    By default the capacity and duplicate checks are separate reads followed by
    an insert, so two concurrent requests can both pass them. With ``atomic``
    (or the ``atomic_rsvp`` setting) the checks and insert run as one
    conditional statement instead.
    """
    event = get_event(session, event_id)
    if atomic is None:
        atomic = settings.atomic_rsvp
    if atomic:
        return _insert_rsvp_if_allowed(session, event, user_id)

    if event.capacity > 0 and _rsvp_count(session, event.id) >= event.capacity:
        raise CapacityExceeded()
    if _find_rsvp(session, event.id, user_id):
        raise DuplicateRSVP()
    rsvp = RSVP(event=event, user_id=user_id)
    session.add(rsvp)
    session.flush()
    session.expire(event, ["rsvp_count"])
    return rsvp


def cancel_rsvp(session: Session, *, event_id: str, user_id: str) -> None:
    rsvp = _find_rsvp(session, event_id, user_id)
    if not rsvp:
        raise NotFound("RSVP not found")
    event = rsvp.event
    session.delete(rsvp)
    session.flush()
    if event is not None:
        session.expire(event, ["rsvps", "rsvp_count"])


def has_rsvped(session: Session, *, event_id: str, user_id: str) -> bool:
    return _find_rsvp(session, event_id, user_id) is not None


def list_event_rsvps(session: Session, event_id: str) -> Sequence[RSVP]:
    stmt = select(RSVP).where(RSVP.event_id == event_id)
    return session.scalars(stmt).all()


def list_user_rsvps(session: Session, user_id: str) -> Sequence[RSVP]:
    """RSVPs for ``user_id``, newest first, skipping any whose event is gone."""
    stmt = (
        select(RSVP)
        .join(Event, Event.id == RSVP.event_id)
        .where(RSVP.user_id == user_id)
        .order_by(RSVP.created_at.desc())
    )
    return session.scalars(stmt).all()
