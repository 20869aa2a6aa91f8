"""Detail-page enrichment for events discovered on listing pages."""

from __future__ import annotations

import logging
import random
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from eventcrawler.models import CrawledEvent
from eventcrawler.services.extractors.base import EventExtractor
from eventcrawler.services.fetcher import DocumentHandle, PageFetcher
from eventcrawler.timing import utcnow

__all__ = ["DetailEnricher", "EnrichmentReport", "find_price_in_text"]

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 20
GENERIC_DESCRIPTION_SELECTORS = (
    '[itemprop="description"]',
    '[class*="description"]',
    '[class*="Description"]',
    "article",
)
PRICE_PATTERN = re.compile(r"([¥$€£])\s*([\d,]+(?:\.\d{2})?)")
CURRENCY_SYMBOLS = {"¥": "JPY", "$": "USD", "€": "EUR", "£": "GBP"}


class EnrichmentReport(BaseModel):
    """Counts produced by :meth:`DetailEnricher.enrich_all`."""

    enriched: int = 0
    unchanged: int = 0
    failed: int = 0


def find_price_in_text(text: str) -> tuple[float, str] | None:
    """Return the cheapest positive ``(amount, currency)`` mentioned in ``text``."""

    prices = []
    for symbol, raw_amount in PRICE_PATTERN.findall(text):
        try:
            amount = float(raw_amount.replace(",", ""))
        except ValueError:
            continue
        if amount > 0:
            prices.append((amount, CURRENCY_SYMBOLS.get(symbol, "USD")))
    return min(prices, key=lambda item: item[0]) if prices else None


def _ld_events(payloads: Iterable[Any]) -> Iterable[Dict[str, Any]]:
    for payload in payloads:
        items = payload if isinstance(payload, list) else [payload]
        for item in items:
            if not isinstance(item, dict):
                continue
            if item.get("@type") == "Event" or (isinstance(item.get("@type"), list) and "Event" in item["@type"]):
                yield item
            for nested in item.get("@graph", []) or []:
                if isinstance(nested, dict) and nested.get("@type") == "Event":
                    yield nested


def _host_names(value: Any) -> List[str]:
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        return []
    names = []
    for host in value:
        name = host.get("name") if isinstance(host, dict) else host
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
    return names


class DetailEnricher:
    """Fill gaps in crawled events from their detail pages.

    Only empty, placeholder or default fields are written; values the listing
    page already supplied are never replaced.
    """

    def __init__(
        self,
        extractor: EventExtractor,
        fetcher: PageFetcher | None = None,
        *,
        delay: Sequence[float] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.extractor = extractor
        self.fetcher = fetcher or extractor.fetcher
        self.delay = tuple(delay) if delay is not None else extractor.config.detail_delay_s
        self._sleep = sleep

    def enrich(self, event: CrawledEvent) -> CrawledEvent:
        """Fetch the detail page of ``event`` once and merge what it adds."""

        if not event.external_url:
            return event

        document = self.fetcher.fetch_static(event.external_url)
        found: Dict[str, Any] = {}
        sources: List[str] = []

        if self._from_embedded_json(document, event, found):
            sources.append("json")
        if self._from_json_ld(document, found):
            sources.append("json-ld")
        if self._from_meta(document, found):
            sources.append("meta")
        if self._from_selectors(document, found):
            sources.append("html")

        self._apply(event, found, sources)
        return event

    def enrich_all(self, events: Sequence[CrawledEvent]) -> EnrichmentReport:
        """Enrich ``events`` one at a time, pausing briefly between requests."""

        report = EnrichmentReport()
        for index, event in enumerate(events):
            if index and event.external_url:
                self._sleep(random.uniform(*self.delay))
            before = event.model_dump(exclude={"raw_data"})
            try:
                self.enrich(event)
            except Exception as exc:  # noqa: BLE001 - one failing page must not stop the batch
                logger.warning("%s: enrichment failed for %s: %s", self.extractor.name, event.external_url, exc)
                report.failed += 1
                continue
            if event.model_dump(exclude={"raw_data"}) != before:
                report.enriched += 1
            else:
                report.unchanged += 1

        logger.info(
            "%s: enrichment done (%d enriched, %d unchanged, %d failed)",
            self.extractor.name,
            report.enriched,
            report.unchanged,
            report.failed,
        )
        return report

    # sources ---------------------------------------------------------------------

    def _from_embedded_json(self, document: DocumentHandle, event: CrawledEvent, found: Dict[str, Any]) -> bool:
        detail = self.extractor.find_detail(document.json_blobs(), event)
        if detail is None:
            return False
        candidate = self.extractor.build_event(detail)
        if candidate is None:
            return False

        if candidate.event_desc not in self.extractor.placeholder_descriptions:
            found.setdefault("description", candidate.event_desc)
        if candidate.attendee_count:
            found.setdefault("attendee_count", candidate.attendee_count)
        if candidate.event_price > 0:
            found.setdefault("price", (candidate.event_price, candidate.event_currency))
        if any(key in detail for key in ("feeSettings", "ticket_types", "tickets", "price", "ticket_info")):
            found.setdefault("price_known", True)
        if candidate.event_tags:
            found.setdefault("tags", candidate.event_tags)
        if candidate.event_images:
            found.setdefault("images", candidate.event_images)
        if candidate.event_capacity:
            found.setdefault("capacity", candidate.event_capacity)

        hosts = _host_names(detail.get("hosts") or detail.get("eventHosts"))
        group = detail.get("group")
        if not hosts and isinstance(group, dict):
            hosts = _host_names(group)
        if hosts:
            found.setdefault("hosts", hosts)
        return True

    def _from_json_ld(self, document: DocumentHandle, found: Dict[str, Any]) -> bool:
        used = False
        for item in _ld_events(document.json_ld()):
            used = True
            description = item.get("description")
            if isinstance(description, str) and len(description.strip()) > MIN_DESCRIPTION_LENGTH:
                found.setdefault("description", description.strip())

            offers = item.get("offers")
            offers = offers if isinstance(offers, list) else [offers] if isinstance(offers, dict) else []
            prices = []
            for offer in offers:
                if not isinstance(offer, dict):
                    continue
                try:
                    amount = float(offer.get("price") or 0)
                except (TypeError, ValueError):
                    continue
                if amount > 0:
                    prices.append((amount, offer.get("priceCurrency")))
            if offers:
                found.setdefault("price_known", True)
            if prices:
                found.setdefault("price", min(prices, key=lambda entry: entry[0]))

            image = item.get("image")
            images = image if isinstance(image, list) else [image] if image else []
            images = [entry if isinstance(entry, str) else (entry or {}).get("url") for entry in images]
            if any(images):
                found.setdefault("images", [entry for entry in images if entry])

            hosts = _host_names(item.get("organizer"))
            if hosts:
                found.setdefault("hosts", hosts)

            capacity = item.get("maximumAttendeeCapacity")
            if isinstance(capacity, int) and capacity > 0:
                found.setdefault("capacity", capacity)
        return used

    @staticmethod
    def _from_meta(document: DocumentHandle, found: Dict[str, Any]) -> bool:
        if "description" in found:
            return False
        for attrs in ({"name": "description"}, {"property": "og:description"}):
            tag = document.soup.find("meta", attrs=attrs)
            content = (tag.get("content") or "").strip() if tag is not None else ""
            if len(content) > MIN_DESCRIPTION_LENGTH:
                found["description"] = content
                return True
        return False

    def _from_selectors(self, document: DocumentHandle, found: Dict[str, Any]) -> bool:
        used = False
        if "description" not in found:
            for selector in (*self.extractor.description_selectors, *GENERIC_DESCRIPTION_SELECTORS):
                element = document.soup.select_one(selector)
                text = element.get_text(" ", strip=True) if element is not None else ""
                if len(text) > MIN_DESCRIPTION_LENGTH:
                    found["description"] = text
                    used = True
                    break

        if "price" not in found and not found.get("price_known"):
            body = document.soup.body or document.soup
            price = find_price_in_text(body.get_text(" ", strip=True))
            if price is not None:
                found["price"] = price
                used = True
        return used

    # merge -----------------------------------------------------------------------

    def _apply(self, event: CrawledEvent, found: Dict[str, Any], sources: List[str]) -> None:
        if "description" in found and event.event_desc in self.extractor.placeholder_descriptions:
            event.event_desc = found["description"]
        if "attendee_count" in found and not event.attendee_count:
            event.attendee_count = found["attendee_count"]
        if "price" in found and not event.event_price:
            amount, currency = found["price"]
            event.event_price = amount
            event.event_currency = event.event_currency or currency
        if "tags" in found and not event.event_tags:
            event.event_tags = list(found["tags"])
        if "images" in found and not event.event_images:
            event.event_images = list(found["images"])
        if "capacity" in found and not event.event_capacity:
            event.event_capacity = found["capacity"]

        enrichment: Dict[str, Any] = {"sources": sources, "fetched_at": utcnow().isoformat()}
        if found.get("hosts"):
            enrichment["hosts"] = found["hosts"]
        event.raw_data["enrichment"] = enrichment
