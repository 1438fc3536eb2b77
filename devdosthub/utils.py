"""Utility helpers for DevDostHub."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def normalize_tags(values: Iterable[str] | str | None) -> list[str]:
    """Trim tags, drop empties, and deduplicate while keeping first-seen order.

    A single comma separated string is accepted as well, which is what the
    console's create form submits.
    """
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(",")
    seen: set[str] = set()
    tags: list[str] = []
    for raw in values:
        tag = str(raw).strip()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        tags.append(tag)
    return tags


def normalize_skills(values: Iterable[str] | str | None) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(",")
    return [str(value).strip() for value in values if str(value).strip()]


def page_count(total: int, per_page: int) -> int:
    if per_page <= 0:
        return 0
    return math.ceil(total / per_page)
