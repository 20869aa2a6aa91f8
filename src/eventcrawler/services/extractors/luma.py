"""Luma listing extraction from the Next.js page data and captured API responses."""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional, Union

from pydantic import model_validator

from eventcrawler.models import CrawledEvent, EventLocationType
from eventcrawler.services.extractors.base import EventExtractor, EventPayload, as_mapping

__all__ = ["LumaEventPayload", "LumaExtractor", "LumaListingEntry"]

DEFAULT_DESCRIPTION = "Event from luma.com"
ID_KEYS = ("api_id", "event_id", "id")
NAME_KEYS = ("name", "title")
START_KEYS = ("start_at", "startAt", "start", "start_time")
CONFIRMING_KEYS = ("description", "url", "cover_url", "timezone", "location_type", "calendar")
ENTRY_KEYS = ("ticket_info", "ticket_types", "tickets", "guest_count", "hosts", "calendar", "tags")


def _first(mapping: Dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


def _is_event_object(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and _first(data, ID_KEYS) is not None
        and _first(data, NAME_KEYS) is not None
        and _first(data, START_KEYS) is not None
        and _first(data, CONFIRMING_KEYS) is not None
    )


def _number(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class LumaEventPayload(EventPayload):
    """An event object with an id, a name, a start time and one confirming field."""

    @model_validator(mode="before")
    @classmethod
    def _is_complete(cls, data: Any) -> Any:
        if not _is_event_object(data):
            raise ValueError("not a complete Luma event")
        return data


class LumaListingEntry(EventPayload):
    """A listing entry wrapping an event object under ``event``."""

    event: Dict[str, Any]

    @model_validator(mode="before")
    @classmethod
    def _wraps_event(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not _is_event_object(data.get("event")):
            raise ValueError("not a Luma listing entry")
        return data

    def payload(self) -> Dict[str, Any]:
        raw = super().payload()
        merged = dict(raw["event"])
        for key in ENTRY_KEYS:
            if raw.get(key) is not None and not merged.get(key):
                merged[key] = raw[key]
        return merged


class LumaExtractor(EventExtractor):
    decoders = (LumaEventPayload, LumaListingEntry)
    card_selectors: ClassVar = ('a[href^="/"][class*="event"]', '[class*="event-card"]')
    location_selectors: ClassVar = ('[class*="location"]', '[class*="address"]')
    description_selectors: ClassVar = (".spark-content",)
    placeholder_descriptions: ClassVar = EventExtractor.placeholder_descriptions | {DEFAULT_DESCRIPTION}

    def is_same_event(self, payload: Dict[str, Any], event: CrawledEvent) -> bool:
        payload_id = _first(payload, ID_KEYS)
        if payload_id is not None and event.external_id:
            if str(payload_id) == event.external_id or event.external_id in str(payload_id):
                return True
        url = payload.get("url")
        return bool(url and event.external_id and event.external_id in str(url))

    def map_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event_id = payload.get("api_id") or payload.get("id") or payload.get("event_id")
        amount, currency = self._price(payload)
        cover = payload.get("cover_url")

        return {
            "event_name": _first(payload, NAME_KEYS),
            "event_desc": self._description(payload),
            "event_images": [cover] if cover else [],
            "event_price": amount,
            "event_currency": currency,
            "event_start_at": _first(payload, START_KEYS),
            "event_end_at": payload.get("end_at") or payload.get("endAt") or payload.get("end_time"),
            "event_tags": self._tags(payload),
            "external_id": str(event_id) if event_id is not None else None,
            "external_url": self._url(payload, event_id),
            "attendee_count": payload.get("guest_count")
            or payload.get("guests_count")
            or payload.get("attendee_count"),
            "event_capacity": payload.get("guest_limit"),
            **self._location(payload),
        }

    def _url(self, payload: Dict[str, Any], event_id: Any) -> Optional[str]:
        slug = payload.get("url") or payload.get("event_url")
        if slug:
            return self.absolute_url(str(slug))
        if event_id is not None:
            return f"{self.config.base_url.rstrip('/')}/event/{event_id}"
        return None

    @staticmethod
    def _description(payload: Dict[str, Any]) -> str:
        for value in (
            payload.get("description"),
            payload.get("summary"),
            as_mapping(payload.get("geo_address_info")).get("description"),
        ):
            if isinstance(value, str) and value.strip():
                return value.strip()
        return DEFAULT_DESCRIPTION

    @staticmethod
    def _price(payload: Dict[str, Any]) -> tuple[float, Optional[str]]:
        """Return the cheapest positive ticket price, then the plain price field."""

        tickets = payload.get("ticket_types") or payload.get("tickets") or []
        priced: List[tuple[float, Optional[str]]] = []
        if isinstance(tickets, list):
            for ticket in tickets:
                if not isinstance(ticket, dict):
                    continue
                amount = _number(ticket.get("price") or ticket.get("amount"))
                if amount is not None and amount > 0:
                    priced.append((amount, ticket.get("currency")))
        if priced:
            return min(priced, key=lambda item: item[0])

        price: Union[Dict[str, Any], Any] = payload.get("price")
        if isinstance(price, dict):
            cents = _number(price.get("cents"))
            if cents is not None and cents > 0:
                return cents / 100, price.get("currency")
        else:
            amount = _number(price)
            if amount is not None and amount > 0:
                return amount, payload.get("currency")

        ticket_info = as_mapping(payload.get("ticket_info"))
        if isinstance(ticket_info.get("price"), dict):
            cents = _number(ticket_info["price"].get("cents"))
            if cents is not None and cents > 0:
                return cents / 100, ticket_info["price"].get("currency")
        return 0.0, None

    @staticmethod
    def _location(payload: Dict[str, Any]) -> Dict[str, Any]:
        online = payload.get("location_type") != "offline"
        geo = as_mapping(payload.get("geo_address_info"))
        if geo.get("mode") == "obfuscated":
            address = None
        else:
            address = geo.get("full_address") or geo.get("short_address") or geo.get("address")
        coordinate = as_mapping(payload.get("coordinate"))
        return {
            "location_type": EventLocationType.ONLINE if online else EventLocationType.OFFLINE,
            "event_city": None if online else geo.get("city"),
            "event_address": address,
            "coordinate_latitude": _number(coordinate.get("latitude")) or None,
            "coordinate_longitude": _number(coordinate.get("longitude")) or None,
        }

    @staticmethod
    def _tags(payload: Dict[str, Any]) -> List[str]:
        sources = payload.get("tags") or payload.get("topics") or payload.get("categories") or []
        if not isinstance(sources, list):
            return []
        tags = []
        for tag in sources:
            name = tag if isinstance(tag, str) else as_mapping(tag).get("name")
            if name:
                tags.append(name)
        return tags
