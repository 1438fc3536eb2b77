"""SQLAlchemy models for DevDostHub."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    select,
)
from sqlalchemy.orm import column_property, declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

USER_ROLES = ("student", "speaker", "organizer", "mentor", "admin")
EVENT_CATEGORIES = (
    "workshop",
    "webinar",
    "hackathon",
    "meetup",
    "conference",
    "bootcamp",
    "other",
)
EVENT_STATUSES = ("upcoming", "ongoing", "completed", "cancelled")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    # Accounts imported before password login existed have no hash.
    password_hash = Column(String(255), nullable=True)
    role = Column(String(16), nullable=False, default="student")
    skills = Column(JSON, nullable=False, default=list)
    bio = Column(Text, nullable=False, default="")
    avatar = Column(String(512), nullable=False, default="")
    github = Column(String(255), nullable=False, default="")
    linkedin = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    events = relationship("Event", back_populates="creator")
    rsvps = relationship("RSVP", back_populates="user", cascade="all, delete-orphan")


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    location = Column(String(255), nullable=False)
    speaker = Column(String(255), nullable=False)
    category = Column(String(32), nullable=False, default="meetup")
    capacity = Column(Integer, nullable=False, default=0)
    tags = Column(JSON, nullable=False, default=list)
    is_online = Column(Boolean, nullable=False, default=False)
    meeting_link = Column(String(512), nullable=False, default="")
    created_by_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    status = Column(String(16), nullable=False, default="upcoming")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    creator = relationship("User", back_populates="events")
    rsvps = relationship("RSVP", back_populates="event", cascade="all, delete-orphan")


class RSVP(Base):
    __tablename__ = "rsvps"
    __table_args__ = (Index("ix_rsvps_event_user", "event_id", "user_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="rsvps")
    user = relationship("User", back_populates="rsvps")


# Loaded with the event row; expire it after adding or removing RSVPs.
Event.rsvp_count = column_property(
    select(func.count(RSVP.id))
    .where(RSVP.event_id == Event.id)
    .correlate_except(RSVP)
    .scalar_subquery()
)
