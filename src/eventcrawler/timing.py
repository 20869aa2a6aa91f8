"""Timestamp parsing and event status derivation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from eventcrawler.enums import EventStatus

__all__ = [
    "DEFAULT_EVENT_DURATION",
    "default_end",
    "determine_status",
    "parse_timestamp",
    "utcnow",
]

DEFAULT_EVENT_DURATION = timedelta(hours=2)


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Return a timezone-aware datetime for ``value`` or ``None`` when unparseable.

    Accepts ``datetime`` objects, ISO-8601 strings (with or without ``Z``) and
    epoch numbers in seconds or milliseconds. Naive values are assumed to be UTC.
    """

    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            parsed = datetime.fromtimestamp(seconds, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def default_end(start: datetime, end: Any = None) -> datetime:
    """Return ``end`` parsed, or ``start`` plus the default duration.

    The fallback also applies when the parsed end lies before ``start`` so that
    ``start <= end`` always holds.
    """

    parsed = parse_timestamp(end)
    if parsed is None or parsed < start:
        return start + DEFAULT_EVENT_DURATION
    return parsed


def determine_status(start: datetime, end: datetime, now: datetime | None = None) -> EventStatus:
    """Classify an event relative to ``now``.

    COMPLETED when it ended before ``now``, ONGOING while ``start <= now <= end``
    and UPCOMING otherwise.
    """

    current = now if now is not None else utcnow()
    if end < current:
        return EventStatus.COMPLETED
    if start <= current <= end:
        return EventStatus.ONGOING
    return EventStatus.UPCOMING
