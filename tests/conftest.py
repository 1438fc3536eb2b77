"""Shared pytest fixtures for DevDostHub."""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from passlib.context import CryptContext
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from devdosthub import api, database, security, storage
from devdosthub.crud import create_event, register_user
from devdosthub.models import Base
from devdosthub.utils import utcnow


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
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(scope="session", autouse=True)
def fast_password_hashing():
    """Use the minimum bcrypt work factor so registrations stay quick."""

    original = security.pwd_context
    security.pwd_context = CryptContext(schemes=["bcrypt"], bcrypt__rounds=4)
    yield
    security.pwd_context = original


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_user(session):
    counter = {"value": 0}

    def _make_user(*, email: str | None = None, role: str | None = None, **fields):
        counter["value"] += 1
        user = register_user(
            session,
            name=fields.pop("name", f"Member {counter['value']}"),
            email=email or f"member{counter['value']}@example.com",
            password=fields.pop("password", "secret123"),
            role=role,
            **fields,
        )
        session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_event(session):
    def _make_event(**overrides):
        fields = {
            "title": "Python Pune Meetup",
            "date": utcnow().replace(microsecond=0) + timedelta(days=3),
            "location": "Pune",
            "speaker": "Ada Lovelace",
        }
        fields.update(overrides)
        event = create_event(session, **fields)
        session.commit()
        return event

    return _make_event
