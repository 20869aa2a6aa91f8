"""Shared listing-page extraction flow used by every event source."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence, Type
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from pydantic import BaseModel, ConfigDict, ValidationError

from eventcrawler.blobstore import store_json
from eventcrawler.config import ScraperConfig
from eventcrawler.errors import FetchError
from eventcrawler.models import PLACEHOLDER_DESCRIPTION, CrawledEvent
from eventcrawler.services.fetcher import DocumentHandle, PageFetcher
from eventcrawler.services.jsonsearch import DecoderChain, collect_matches, find_first
from eventcrawler.timing import utcnow

__all__ = ["EventExtractor", "EventPayload", "MAX_WIDEN_DEPTH", "MIN_CONTAINER_TEXT", "as_mapping"]

logger = logging.getLogger(__name__)

MAX_WIDEN_DEPTH = 5
MIN_CONTAINER_TEXT = 30


def as_mapping(value: Any) -> Dict[str, Any]:
    """Return ``value`` when it is a JSON object, otherwise an empty dict."""

    return value if isinstance(value, dict) else {}


class EventPayload(BaseModel):
    """Base for decoders that recognise an event-shaped JSON node.

    Decoders only check the shape; :meth:`payload` hands the original keys back
    to the mapper untouched.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EventExtractor(ABC):
    """Fetch a listing page and turn it into :class:`CrawledEvent` objects.

    Subclasses provide the decoder chain, the mapping from a decoded payload to
    event fields and the CSS selectors used when a page carries no usable JSON.
    """

    decoders: ClassVar[Sequence[Type[EventPayload]]] = ()
    card_selectors: ClassVar[Sequence[str]] = ()
    location_selectors: ClassVar[Sequence[str]] = ()
    description_selectors: ClassVar[Sequence[str]] = ()
    placeholder_descriptions: ClassVar[frozenset[str]] = frozenset({PLACEHOLDER_DESCRIPTION})

    def __init__(
        self,
        config: ScraperConfig,
        fetcher: PageFetcher | None = None,
        *,
        audit_root: Path | str | None = None,
    ) -> None:
        self.config = config
        self.fetcher = fetcher or PageFetcher(config.user_agent)
        self.audit_root = audit_root
        self._chain: DecoderChain[EventPayload] = DecoderChain(self.decoders)

    @property
    def name(self) -> str:
        return self.config.name

    def scrape_events(self, limit: int | None = None) -> List[CrawledEvent]:
        """Return the de-duplicated events found on the configured listing page."""

        document = self.fetch_listing()
        events = self.extract_from_document(document)
        if limit is not None:
            events = events[:limit]

        logger.info("%s: extracted %d events (%s fetch)", self.name, len(events), document.mode)
        self._write_audit(events, limit)
        return events

    def fetch_listing(self) -> DocumentHandle:
        """Render the listing page, falling back to a static GET when the browser fails."""

        url = self.config.search_url
        if self.config.use_browser:
            try:
                return self.fetcher.fetch_dynamic(url, self.config.listing_scroll, self.config.api_patterns)
            except FetchError as exc:
                logger.warning("%s: browser fetch failed, falling back to static fetch: %s", self.name, exc)
        return self.fetcher.fetch_static(url)

    def extract_from_document(self, document: DocumentHandle) -> List[CrawledEvent]:
        events = self._extract_json(document)
        if events:
            logger.info("%s: %d events from embedded JSON", self.name, len(events))
            return events

        events = self._extract_html(document)
        logger.info("%s: %d events from HTML fallback", self.name, len(events))
        return events

    # JSON path -----------------------------------------------------------------

    def skip_node(self, node: dict) -> bool:
        """Return ``True`` for subtrees that never contain events."""

        return False

    @abstractmethod
    def map_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Return :class:`CrawledEvent` keyword arguments for a decoded payload."""

    def build_event(self, payload: Dict[str, Any]) -> Optional[CrawledEvent]:
        try:
            fields = self.map_payload(payload)
            return CrawledEvent(origin=self.name, raw_data=payload, **fields)
        except ValidationError as exc:
            logger.warning(
                "%s: dropping event %r: %s",
                self.name,
                payload.get("title") or payload.get("name") or "?",
                exc.errors()[0].get("msg", exc),
            )
            return None
        except (TypeError, AttributeError, ValueError) as exc:
            logger.warning(
                "%s: dropping malformed event %r: %s",
                self.name,
                payload.get("title") or payload.get("name") or "?",
                exc,
            )
            return None

    def _extract_json(self, document: DocumentHandle) -> List[CrawledEvent]:
        matches = collect_matches(document.json_blobs(), self._chain, self.skip_node)
        events = (self.build_event(match.payload()) for match in matches)
        return self._dedupe(event for event in events if event is not None)

    def find_detail(self, blobs: Iterable[Any], event: CrawledEvent) -> Optional[Dict[str, Any]]:
        """Locate the full payload for ``event`` in a detail page's JSON blobs."""

        def _matches(node: dict) -> bool:
            decoded = self._chain.decode(node)
            return decoded is not None and self.is_same_event(decoded.payload(), event)

        for blob in blobs:
            node = find_first(blob, _matches, self.skip_node)
            if node is not None:
                return self._chain.decode(node).payload()  # type: ignore[union-attr]
        return None

    def is_same_event(self, payload: Dict[str, Any], event: CrawledEvent) -> bool:
        payload_id = payload.get("id")
        if event.external_id and payload_id is not None and str(payload_id) == event.external_id:
            return True
        url = payload.get("url") or payload.get("eventUrl")
        return bool(event.external_url and url and self.absolute_url(str(url)) == event.external_url)

    # HTML path -----------------------------------------------------------------

    def _extract_html(self, document: DocumentHandle) -> List[CrawledEvent]:
        soup = document.soup
        events: List[CrawledEvent] = []
        seen_elements: set[int] = set()
        for selector in self.card_selectors:
            for element in soup.select(selector):
                container = self.widen(element)
                if id(container) in seen_elements:
                    continue
                seen_elements.add(id(container))
                event = self._event_from_card(container, element)
                if event is not None:
                    events.append(event)
        return self._dedupe(events)

    @staticmethod
    def widen(element: Tag) -> Tag:
        """Walk up from ``element`` until the container carries enough text."""

        container = element
        for _ in range(MAX_WIDEN_DEPTH):
            if len(container.get_text(" ", strip=True)) > MIN_CONTAINER_TEXT:
                break
            parent = container.parent
            if parent is None or not isinstance(parent, Tag) or parent.name in {"body", "html", "[document]"}:
                break
            container = parent
        return container

    def _event_from_card(self, container: Tag, anchor: Tag) -> Optional[CrawledEvent]:
        heading = container.find(["h1", "h2", "h3", "h4"])
        name = (heading or anchor).get_text(" ", strip=True)

        link = anchor if anchor.name == "a" and anchor.get("href") else container.find("a", href=True)
        url = self.absolute_url(link["href"]) if link is not None else None

        time_tag = container.select_one("[datetime]")
        start = time_tag.get("datetime") if time_tag is not None else None
        if not name or not start:
            logger.debug("%s: skipping card without name or start time", self.name)
            return None

        image = container.find("img", src=True)
        location = self._first_text(container, self.location_selectors)
        payload = {"name": name, "url": url, "start": start, "html": True}
        try:
            return CrawledEvent(
                event_name=name,
                event_start_at=start,
                event_images=[image["src"]] if image is not None else [],
                event_address=location,
                external_url=url,
                origin=self.name,
                raw_data=payload,
            )
        except ValidationError:
            logger.warning("%s: dropping HTML card %r with unparseable start %r", self.name, name, start)
            return None

    @staticmethod
    def _first_text(container: Tag | BeautifulSoup, selectors: Sequence[str]) -> Optional[str]:
        for selector in selectors:
            found = container.select_one(selector)
            if found is not None:
                text = found.get_text(" ", strip=True)
                if text:
                    return text
        return None

    # helpers -------------------------------------------------------------------

    def absolute_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return urljoin(self.config.base_url.rstrip("/") + "/", url.lstrip("/"))

    def _dedupe(self, events: Iterable[CrawledEvent]) -> List[CrawledEvent]:
        unique: List[CrawledEvent] = []
        seen: set[str] = set()
        for event in events:
            if event.identity in seen:
                continue
            seen.add(event.identity)
            unique.append(event)
        return unique

    def _write_audit(self, events: Sequence[CrawledEvent], limit: int | None) -> None:
        payload = {
            "metadata": {
                "source": self.name,
                "scraped_at": utcnow().isoformat(),
                "url": self.config.search_url,
                "limit": limit,
                "total_events": len(events),
            },
            "events": [event.audit_dump() for event in events],
        }
        try:
            store_json(f"{self.name}.json", payload, blob_root=self.audit_root)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("%s: could not write audit file: %s", self.name, exc)
