from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import event as sa_event

from devdosthub import database
from devdosthub.crud import (
    cancel_rsvp,
    category_counts,
    create_event,
    create_rsvp,
    delete_event,
    delete_user,
    event_attendees,
    event_stats,
    get_event,
    has_rsvped,
    list_event_rsvps,
    list_events,
    list_user_rsvps,
    list_users,
    login_user,
    register_user,
    set_user_role,
    update_event,
    update_profile,
    user_from_token,
)
from devdosthub.errors import (
    CapacityExceeded,
    DuplicateEmail,
    DuplicateRSVP,
    InvalidCredential,
    LegacyAccount,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from devdosthub.security import decode_access_token, verify_password
from devdosthub.utils import utcnow


# -------- Users --------


def test_register_hashes_password_and_defaults_role(session):
    user = register_user(
        session,
        name="  Ada  ",
        email="Ada@Example.com ",
        password="secret123",
        skills=["python", " rust ", ""],
    )
    assert user.name == "Ada"
    assert user.email == "ada@example.com"
    assert user.role == "student"
    assert user.skills == ["python", "rust"]
    assert user.password_hash != "secret123"
    assert verify_password("secret123", user.password_hash)


def test_register_rejects_duplicate_email(session, make_user):
    make_user(email="grace@example.com")
    with pytest.raises(DuplicateEmail):
        register_user(
            session, name="Grace Again", email="GRACE@example.com", password="secret123"
        )


@pytest.mark.parametrize(
    "fields",
    [
        {"name": "", "email": "a@example.com", "password": "secret123"},
        {"name": "A", "email": "not-an-email", "password": "secret123"},
        {"name": "A", "email": "a@example.com", "password": "123"},
        {"name": "A", "email": "a@example.com", "password": "secret123", "role": "root"},
    ],
)
def test_register_validation(session, fields):
    with pytest.raises(ValidationError):
        register_user(session, **fields)


def test_login_returns_token_for_user(session, make_user):
    user = make_user(email="linus@example.com")
    token, logged_in = login_user(session, email="linus@example.com", password="secret123")
    assert logged_in.id == user.id
    assert decode_access_token(token) == user.id


def test_login_failures(session, make_user):
    user = make_user(email="linus@example.com")
    with pytest.raises(InvalidCredential):
        login_user(session, email="linus@example.com", password="wrong-password")
    with pytest.raises(NotFound):
        login_user(session, email="nobody@example.com", password="secret123")

    user.password_hash = None
    session.commit()
    with pytest.raises(LegacyAccount):
        login_user(session, email="linus@example.com", password="secret123")


def test_user_from_token_requires_existing_user(session, make_user):
    user = make_user()
    token, _ = login_user(session, email=user.email, password="secret123")
    assert user_from_token(session, token).id == user.id

    delete_user(session, user.id)
    session.commit()
    with pytest.raises(Unauthenticated):
        user_from_token(session, token)
    with pytest.raises(Unauthenticated):
        user_from_token(session, None)


def test_update_profile_only_touches_allowed_fields(session, make_user):
    user = make_user(email="me@example.com")
    update_profile(
        session,
        user,
        {
            "name": "New Name",
            "bio": "Builder",
            "skills": "go, sql",
            "role": "admin",
            "email": "hijack@example.com",
        },
    )
    assert user.name == "New Name"
    assert user.bio == "Builder"
    assert user.skills == ["go", "sql"]
    assert user.role == "student"
    assert user.email == "me@example.com"


def test_set_user_role(session, make_user):
    user = make_user()
    assert set_user_role(session, user.id, "mentor").role == "mentor"
    with pytest.raises(ValidationError):
        set_user_role(session, user.id, "overlord")
    with pytest.raises(NotFound):
        set_user_role(session, "missing", "mentor")


def test_list_users_newest_first(session, make_user):
    first = make_user()
    second = make_user()
    first.created_at = utcnow() - timedelta(days=1)
    session.commit()
    assert [user.id for user in list_users(session)] == [second.id, first.id]


def test_delete_user_removes_rsvps_and_orphans_events(session, make_user, make_event):
    organizer = make_user()
    attendee = make_user()
    event = make_event(creator=organizer)
    create_rsvp(session, event_id=event.id, user_id=organizer.id)
    create_rsvp(session, event_id=event.id, user_id=attendee.id)
    session.commit()

    delete_user(session, organizer.id)
    session.commit()
    session.expire_all()

    stored = get_event(session, event.id)
    assert stored.creator is None
    assert [r.user_id for r in list_event_rsvps(session, event.id)] == [attendee.id]


# -------- Events --------


def test_create_event_round_trips_with_defaults(session, make_user):
    creator = make_user()
    start = utcnow().replace(microsecond=0) + timedelta(days=10)
    event = create_event(
        session,
        title="Cloud Bootcamp",
        date=start,
        location="Bengaluru",
        speaker="Grace Hopper",
        creator=creator,
    )
    session.commit()
    session.expire_all()

    stored = get_event(session, event.id)
    assert stored.title == "Cloud Bootcamp"
    assert stored.date == start
    assert stored.end_date is None
    assert stored.location == "Bengaluru"
    assert stored.speaker == "Grace Hopper"
    assert stored.description == ""
    assert stored.category == "meetup"
    assert stored.capacity == 0
    assert stored.tags == []
    assert stored.is_online is False
    assert stored.meeting_link == ""
    assert stored.status == "upcoming"
    assert stored.creator.id == creator.id
    assert stored.rsvp_count == 0


def test_create_event_normalizes_tags(make_event):
    event = make_event(tags=[" python ", "ai", "python", "", "ai "])
    assert event.tags == ["python", "ai"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "   "},
        {"location": ""},
        {"speaker": ""},
        {"date": None},
        {"category": "party"},
        {"status": "postponed"},
        {"capacity": -1},
        {"description": "x" * 2001},
    ],
)
def test_create_event_validation(session, overrides):
    fields = {
        "title": "Meetup",
        "date": utcnow(),
        "location": "Delhi",
        "speaker": "Ada",
    }
    fields.update(overrides)
    with pytest.raises(ValidationError):
        create_event(session, **fields)


def test_create_event_rejects_end_before_start(session):
    start = utcnow()
    with pytest.raises(ValidationError):
        create_event(
            session,
            title="Backwards",
            date=start,
            end_date=start - timedelta(hours=1),
            location="Delhi",
            speaker="Ada",
        )


def test_update_event_merges_fields(session, make_event):
    event = make_event(capacity=10, tags=["python"])
    updated = update_event(
        session,
        event.id,
        {"title": "Renamed", "category": "workshop", "tags": "web, web, ai"},
    )
    assert updated.title == "Renamed"
    assert updated.category == "workshop"
    assert updated.tags == ["web", "ai"]
    assert updated.capacity == 10
    assert updated.location == "Pune"


def test_update_event_validation_and_missing(session, make_event):
    event = make_event()
    with pytest.raises(ValidationError):
        update_event(session, event.id, {"status": "someday"})
    session.rollback()
    with pytest.raises(NotFound):
        update_event(session, "missing", {"title": "Nope"})


def test_list_events_search_filters_and_pages(session, make_event):
    base = utcnow().replace(microsecond=0) + timedelta(days=1)
    make_event(title="Rust Workshop", date=base + timedelta(days=2), category="workshop")
    make_event(title="AI Night", date=base + timedelta(days=1), tags=["Machine-Learning"])
    make_event(title="Cloud Conf", date=base, speaker="Werner", category="conference")
    make_event(
        title="Old Meetup",
        date=base - timedelta(days=30),
        location="Werner Hall",
        status="completed",
    )

    events, total = list_events(session)
    assert total == 4
    assert [e.title for e in events] == [
        "Old Meetup",
        "Cloud Conf",
        "AI Night",
        "Rust Workshop",
    ]

    events, total = list_events(session, search="werner")
    assert total == 2
    assert {e.title for e in events} == {"Cloud Conf", "Old Meetup"}

    events, _ = list_events(session, search="machine")
    assert [e.title for e in events] == ["AI Night"]

    events, total = list_events(session, category="workshop")
    assert total == 1 and events[0].title == "Rust Workshop"

    events, total = list_events(session, status="completed")
    assert total == 1 and events[0].title == "Old Meetup"

    events, total = list_events(session, page=2, per_page=3)
    assert total == 4
    assert [e.title for e in events] == ["Rust Workshop"]


def test_list_events_search_treats_wildcards_literally(make_event, session):
    make_event(title="100% Python")
    make_event(title="Plain Python")
    events, total = list_events(session, search="100%")
    assert total == 1
    assert events[0].title == "100% Python"


@pytest.mark.parametrize("term", ["[", '"', ","])
def test_list_events_search_ignores_tag_list_syntax(make_event, session, term):
    make_event(title="Rust Workshop", tags=["python", "rust"])
    make_event(title="Cloud Conf")
    events, total = list_events(session, search=term)
    assert total == 0
    assert events == []


def test_list_events_search_matches_non_ascii_tags(make_event, session):
    make_event(title="Coffee Chat", tags=["café", "Networking"])
    make_event(title="Plain Meetup", tags=["cafe"])

    events, total = list_events(session, search="café")
    assert total == 1
    assert events[0].title == "Coffee Chat"

    events, _ = list_events(session, search="NETWORK")
    assert [e.title for e in events] == ["Coffee Chat"]


def test_event_attendees_resolve_users(session, make_user, make_event):
    event = make_event()
    user = make_user(name="Attendee")
    create_rsvp(session, event_id=event.id, user_id=user.id)
    session.commit()
    session.expire_all()
    assert [u.name for u in event_attendees(get_event(session, event.id))] == ["Attendee"]


def test_get_event_missing(session):
    with pytest.raises(NotFound):
        get_event(session, "does-not-exist")


def test_delete_event_cascades_rsvps(session, make_user, make_event):
    event = make_event()
    other = make_event(title="Other")
    users = [make_user() for _ in range(3)]
    for user in users:
        create_rsvp(session, event_id=event.id, user_id=user.id)
    create_rsvp(session, event_id=other.id, user_id=users[0].id)
    session.commit()

    delete_event(session, event.id)
    session.commit()

    assert list_event_rsvps(session, event.id) == []
    assert len(list_event_rsvps(session, other.id)) == 1
    with pytest.raises(NotFound):
        get_event(session, event.id)
    with pytest.raises(NotFound):
        delete_event(session, event.id)


def test_event_stats_and_category_counts(session, make_user, make_event):
    now = utcnow()
    make_event(date=now + timedelta(days=1), category="workshop")
    make_event(date=now + timedelta(days=2), category="workshop")
    past = make_event(date=now - timedelta(days=2), category="webinar")
    create_rsvp(session, event_id=past.id, user_id=make_user().id)
    session.commit()

    stats = event_stats(session, now=now)
    assert stats["totalEvents"] == 3
    assert stats["upcomingEvents"] == 2
    assert stats["totalRSVPs"] == 1
    assert category_counts(session) == [
        {"_id": "workshop", "count": 2},
        {"_id": "webinar", "count": 1},
    ]


# -------- RSVPs --------


@pytest.mark.parametrize("atomic", [False, True])
def test_capacity_scenario(session, make_user, make_event, atomic):
    event = make_event(capacity=2)
    alice, bob, carol = make_user(), make_user(), make_user()

    create_rsvp(session, event_id=event.id, user_id=alice.id, atomic=atomic)
    create_rsvp(session, event_id=event.id, user_id=bob.id, atomic=atomic)
    with pytest.raises(CapacityExceeded):
        create_rsvp(session, event_id=event.id, user_id=carol.id, atomic=atomic)

    cancel_rsvp(session, event_id=event.id, user_id=alice.id)
    rsvp = create_rsvp(session, event_id=event.id, user_id=carol.id, atomic=atomic)
    session.commit()

    assert rsvp.user_id == carol.id
    assert {r.user_id for r in list_event_rsvps(session, event.id)} == {bob.id, carol.id}


@pytest.mark.parametrize("atomic", [False, True])
def test_duplicate_rsvp_rejected(session, make_user, make_event, atomic):
    event = make_event()
    user = make_user()
    create_rsvp(session, event_id=event.id, user_id=user.id, atomic=atomic)
    with pytest.raises(DuplicateRSVP):
        create_rsvp(session, event_id=event.id, user_id=user.id, atomic=atomic)
    session.commit()
    assert len(list_event_rsvps(session, event.id)) == 1


def test_full_event_reports_capacity_before_duplicate(session, make_user, make_event):
    event = make_event(capacity=1)
    user = make_user()
    create_rsvp(session, event_id=event.id, user_id=user.id)
    with pytest.raises(CapacityExceeded):
        create_rsvp(session, event_id=event.id, user_id=user.id)


def test_unlimited_capacity(session, make_user, make_event):
    event = make_event(capacity=0)
    for _ in range(5):
        create_rsvp(session, event_id=event.id, user_id=make_user().id)
    session.commit()
    assert len(list_event_rsvps(session, event.id)) == 5


def test_rsvp_for_missing_event(session, make_user):
    with pytest.raises(NotFound):
        create_rsvp(session, event_id="missing", user_id=make_user().id)


def test_cancel_and_has_rsvped(session, make_user, make_event):
    event = make_event()
    user = make_user()
    assert has_rsvped(session, event_id=event.id, user_id=user.id) is False
    create_rsvp(session, event_id=event.id, user_id=user.id)
    assert has_rsvped(session, event_id=event.id, user_id=user.id) is True
    cancel_rsvp(session, event_id=event.id, user_id=user.id)
    assert has_rsvped(session, event_id=event.id, user_id=user.id) is False
    with pytest.raises(NotFound):
        cancel_rsvp(session, event_id=event.id, user_id=user.id)


def test_list_user_rsvps_newest_first(session, make_user, make_event):
    user = make_user()
    older_event = make_event(title="Older")
    newer_event = make_event(title="Newer")
    older = create_rsvp(session, event_id=older_event.id, user_id=user.id)
    create_rsvp(session, event_id=newer_event.id, user_id=user.id)
    older.created_at = utcnow() - timedelta(days=1)
    session.commit()

    titles = [rsvp.event.title for rsvp in list_user_rsvps(session, user.id)]
    assert titles == ["Newer", "Older"]

    delete_event(session, newer_event.id)
    session.commit()
    titles = [rsvp.event.title for rsvp in list_user_rsvps(session, user.id)]
    assert titles == ["Older"]


def test_rsvp_counts_load_with_event_listing(session, make_user, make_event):
    users = [make_user() for _ in range(3)]
    for capacity in (0, 5, 10):
        event = make_event(capacity=capacity)
        for user in users[: capacity // 5 + 1]:
            create_rsvp(session, event_id=event.id, user_id=user.id)
    session.commit()
    session.expire_all()

    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    sa_event.listen(database.engine, "before_cursor_execute", _record)
    try:
        events, total = list_events(session)
        counts = sorted(event.rsvp_count for event in events)
    finally:
        sa_event.remove(database.engine, "before_cursor_execute", _record)

    assert total == 3
    assert counts == [1, 2, 3]
    assert len(statements) == 2


def test_rsvp_count_tracks_create_and_cancel(session, make_user, make_event):
    event = make_event()
    user = make_user()
    assert event.rsvp_count == 0
    create_rsvp(session, event_id=event.id, user_id=user.id)
    assert event.rsvp_count == 1
    cancel_rsvp(session, event_id=event.id, user_id=user.id)
    assert event.rsvp_count == 0
