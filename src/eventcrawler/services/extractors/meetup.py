"""Meetup listing extraction from captured GraphQL responses and Apollo state."""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Optional, Union

from pydantic import Field, field_validator, model_validator

from eventcrawler.models import CrawledEvent, EventLocationType
from eventcrawler.services.extractors.base import EventExtractor, EventPayload, as_mapping

__all__ = ["MeetupEventPayload", "MeetupExtractor"]

SKIPPED_TYPENAMES = frozenset({"LocationSearch", "ConversationConnection"})
ONLINE_EVENT_TYPES = frozenset({"ONLINE", "VIRTUAL"})
FREE_KRW_THRESHOLD = 1000


class MeetupEventPayload(EventPayload):
    """A GraphQL ``Event`` node with a title and either a description or a URL."""

    typename: str = Field(alias="__typename")
    id: Optional[Union[str, int]] = None
    title: str
    description: Optional[str] = None
    eventUrl: Optional[str] = None

    @field_validator("typename")
    @classmethod
    def _is_event(cls, value: str) -> str:
        if value != "Event":
            raise ValueError("not an Event node")
        return value

    @field_validator("title")
    @classmethod
    def _has_title(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("blank title")
        return value

    @model_validator(mode="after")
    def _is_complete(self) -> "MeetupEventPayload":
        if not self.description and not self.eventUrl:
            raise ValueError("event stub without description or URL")
        return self


def _number(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class MeetupExtractor(EventExtractor):
    decoders = (MeetupEventPayload,)
    card_selectors: ClassVar = ('a[href*="/events/"]', '[data-testid="categoryResults-eventCard"]')
    location_selectors: ClassVar = ('[data-testid="venue-name"]', '[class*="venue"]')
    description_selectors: ClassVar = ("#event-details", '[data-testid="event-description"]', ".break-words")

    def skip_node(self, node: dict) -> bool:
        typename = node.get("__typename")
        return isinstance(typename, str) and typename in SKIPPED_TYPENAMES

    def is_same_event(self, payload: Dict[str, Any], event: CrawledEvent) -> bool:
        return payload.get("id") is not None and str(payload["id"]) == (event.external_id or "")

    def map_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event_id = payload.get("id")
        url = payload.get("eventUrl") or (
            f"{self.config.base_url.rstrip('/')}/events/{event_id}" if event_id is not None else None
        )
        photo = as_mapping(payload.get("featuredEventPhoto"))
        amount, currency = self._price(payload)
        location = self._location(payload)

        return {
            "event_name": payload.get("title"),
            "event_desc": payload.get("description"),
            "event_images": [photo.get("source")],
            "event_price": amount,
            "event_currency": currency,
            "event_start_at": payload.get("dateTime"),
            "event_end_at": payload.get("endTime"),
            "event_tags": self._tags(payload),
            "external_id": str(event_id) if event_id is not None else None,
            "external_url": url,
            "attendee_count": as_mapping(payload.get("goingCount")).get("totalCount"),
            "event_capacity": payload.get("maxTickets"),
            **location,
        }

    @staticmethod
    def _price(payload: Dict[str, Any]) -> tuple[float, Optional[str]]:
        fees = payload.get("feeSettings")
        if not isinstance(fees, dict):
            return 0.0, None
        amount = _number(fees.get("amount"))
        currency = fees.get("currency")
        if amount is None:
            return 0.0, None
        if currency == "KRW" and amount < FREE_KRW_THRESHOLD:
            return 0.0, None
        return amount, currency

    @staticmethod
    def _location(payload: Dict[str, Any]) -> Dict[str, Any]:
        event_type = payload.get("eventType")
        online = (
            event_type in ONLINE_EVENT_TYPES
            or bool(payload.get("isOnline"))
            or event_type != "PHYSICAL"
        )
        venue = as_mapping(payload.get("venue"))
        return {
            "location_type": EventLocationType.ONLINE if online else EventLocationType.OFFLINE,
            "event_city": None if online else venue.get("city"),
            "event_address": venue.get("address") or venue.get("name"),
            "coordinate_latitude": _number(venue.get("lat")) or None,
            "coordinate_longitude": _number(venue.get("lng")) or None,
        }

    @staticmethod
    def _tags(payload: Dict[str, Any]) -> list[str]:
        topics = as_mapping(payload.get("group")).get("topics") or payload.get("topics") or []
        if not isinstance(topics, list):
            return []
        return [topic["name"] for topic in topics if isinstance(topic, dict) and topic.get("name")]
