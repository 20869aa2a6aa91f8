"""Domain models used across the crawler pipeline."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from eventcrawler.enums import EventCategory, EventLocationType, EventStatus, EventType
from eventcrawler.timing import default_end, determine_status, parse_timestamp, utcnow

__all__ = [
    "CrawledEvent",
    "EventCategory",
    "EventLocationType",
    "EventStatus",
    "EventType",
    "ImportedEventRecord",
    "MAX_NAME_LENGTH",
    "PLACEHOLDER_DESCRIPTION",
    "PLACEHOLDER_NAMES",
    "RunSummary",
    "is_placeholder_name",
]

MAX_NAME_LENGTH = 100
PLACEHOLDER_DESCRIPTION = "No description available"
PLACEHOLDER_NAMES = frozenset({"untitled", "untitled event", "n/a", "tbd", "event"})


def is_placeholder_name(name: str | None) -> bool:
    """Return ``True`` for empty names and the generic names scrapers fall back to."""

    if not name or not name.strip():
        return True
    return name.strip().lower() in PLACEHOLDER_NAMES


class CrawledEvent(BaseModel):
    """Canonical event produced by an extractor and refined by later stages.

    Instances are mutated in place by the enricher and the categoriser; those
    stages only fill empty fields and never clobber populated values.
    """

    event_type: EventType = EventType.ONCE
    event_name: str
    event_desc: str = PLACEHOLDER_DESCRIPTION
    event_images: List[str] = Field(default_factory=list)
    event_price: float = 0
    event_currency: Optional[str] = None

    event_start_at: datetime
    event_end_at: Optional[datetime] = None
    event_status: Optional[EventStatus] = None

    location_type: EventLocationType = EventLocationType.ONLINE
    event_city: Optional[str] = None
    event_address: Optional[str] = None
    coordinate_latitude: Optional[float] = None
    coordinate_longitude: Optional[float] = None

    event_categories: List[EventCategory] = Field(default_factory=list)
    event_tags: List[str] = Field(default_factory=list)

    origin: Optional[str] = None
    external_id: Optional[str] = None
    external_url: Optional[str] = None

    attendee_count: int = 0
    event_capacity: Optional[int] = None

    raw_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_name", mode="before")
    @classmethod
    def _clean_name(cls, value: Any) -> str:
        text = " ".join(str(value or "").split())
        return text[:MAX_NAME_LENGTH]

    @field_validator("event_desc", mode="before")
    @classmethod
    def _default_description(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return PLACEHOLDER_DESCRIPTION
        return str(value).strip()

    @field_validator("event_images", "event_tags", mode="before")
    @classmethod
    def _drop_empty_entries(cls, value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip() for item in value if item and str(item).strip()]

    @field_validator("event_price", mode="before")
    @classmethod
    def _default_price(cls, value: Any) -> float:
        try:
            return float(value) if value is not None else 0.0
        except (TypeError, ValueError):
            return 0.0

    @field_validator("attendee_count", mode="before")
    @classmethod
    def _default_attendees(cls, value: Any) -> int:
        try:
            return max(int(value), 0) if value is not None else 0
        except (TypeError, ValueError):
            return 0

    @field_validator("event_capacity", mode="before")
    @classmethod
    def _capacity_unknown_when_zero(cls, value: Any) -> int | None:
        try:
            capacity = int(value) if value is not None else 0
        except (TypeError, ValueError):
            return None
        return capacity if capacity > 0 else None

    @field_validator("event_start_at", mode="before")
    @classmethod
    def _parse_start(cls, value: Any) -> datetime:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"unparseable start time: {value!r}")
        return parsed

    @field_validator("event_end_at", mode="before")
    @classmethod
    def _parse_end(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @model_validator(mode="after")
    def _derive_end_and_status(self) -> "CrawledEvent":
        self.event_end_at = default_end(self.event_start_at, self.event_end_at)
        if self.event_status is None:
            self.event_status = determine_status(self.event_start_at, self.event_end_at)
        return self

    @property
    def identity(self) -> str:
        """Deduplication identity: external id, then URL, then name and start."""

        if self.external_id:
            return f"id:{self.external_id}"
        if self.external_url:
            return f"url:{self.external_url}"
        return f"name:{self.event_name}|{self.event_start_at.isoformat()}"

    @property
    def category_key(self) -> str:
        return self.external_url or self.event_name

    @property
    def rejection_key(self) -> str:
        return self.external_id or self.event_name

    def audit_dump(self) -> Dict[str, Any]:
        """Return a JSON-safe dump without the bulky raw payload."""

        return self.model_dump(mode="json", exclude={"raw_data"})


class ImportedEventRecord(BaseModel):
    """Storage-side record for an externally sourced event.

    Imported events are never organiser-authored, so ``is_real_event`` is
    fixed to ``False``.
    """

    record_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    imported_at: datetime = Field(default_factory=utcnow)

    event_type: EventType = EventType.ONCE
    event_name: str
    event_desc: str
    event_images: List[str] = Field(default_factory=list)
    event_price: float = 0
    event_currency: Optional[str] = None

    event_start_at: datetime
    event_end_at: datetime
    event_status: EventStatus = EventStatus.UPCOMING

    location_type: EventLocationType = EventLocationType.ONLINE
    event_city: Optional[str] = None
    event_address: Optional[str] = None
    coordinate_latitude: Optional[float] = None
    coordinate_longitude: Optional[float] = None

    event_categories: List[EventCategory] = Field(default_factory=lambda: [EventCategory.OTHER])
    event_tags: List[str] = Field(default_factory=list)
    is_real_event: Literal[False] = False

    origin: str = "external"
    external_id: Optional[str] = None
    external_url: Optional[str] = None

    attendee_count: Optional[int] = None
    event_capacity: Optional[int] = None

    @classmethod
    def from_crawled(cls, event: CrawledEvent, *, now: datetime | None = None) -> "ImportedEventRecord":
        """Map a crawled event onto the storage schema."""

        end = event.event_end_at or default_end(event.event_start_at)
        return cls(
            event_type=EventType.ONCE,
            event_name=event.event_name,
            event_desc=event.event_desc,
            event_images=list(event.event_images),
            event_price=event.event_price or 0,
            event_currency=event.event_currency,
            event_start_at=event.event_start_at,
            event_end_at=end,
            event_status=determine_status(event.event_start_at, end, now),
            location_type=event.location_type,
            event_city=event.event_city,
            event_address=event.event_address,
            coordinate_latitude=event.coordinate_latitude,
            coordinate_longitude=event.coordinate_longitude,
            event_categories=list(event.event_categories) or [EventCategory.OTHER],
            event_tags=list(event.event_tags),
            origin=event.origin or "external",
            external_id=event.external_id,
            external_url=event.external_url,
            attendee_count=event.attendee_count or None,
            event_capacity=event.event_capacity,
        )


class RunSummary(BaseModel):
    """Aggregate counts produced by a single orchestration pass."""

    scraped: int = 0
    accepted: int = 0
    rejected: int = 0
    imported: int = 0
    skipped: int = 0
    per_source: Dict[str, int] = Field(default_factory=dict)
    source_failures: Dict[str, str] = Field(default_factory=dict)
    rejection_reasons: Dict[str, str] = Field(default_factory=dict)
    test_mode: bool = False
    events: List[CrawledEvent] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    audit_path: Optional[str] = None
