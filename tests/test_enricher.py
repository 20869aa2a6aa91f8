from __future__ import annotations

import json
from types import SimpleNamespace

from eventcrawler.config import ScraperConfig
from eventcrawler.errors import FetchError
from eventcrawler.models import PLACEHOLDER_DESCRIPTION, CrawledEvent
from eventcrawler.services.enricher import DetailEnricher, find_price_in_text
from eventcrawler.services.extractors.luma import DEFAULT_DESCRIPTION, LumaExtractor
from eventcrawler.services.extractors.meetup import MeetupExtractor
from eventcrawler.services.fetcher import DocumentHandle

LUMA = ScraperConfig(name="luma", base_url="https://luma.com", search_url="https://luma.com/seoul")
MEETUP = ScraperConfig(name="meetup", base_url="https://www.meetup.com", search_url="https://www.meetup.com/find/")


def _fetcher(pages: dict[str, str]):
    def fetch_static(url):
        if url not in pages:
            raise FetchError(url, "HTTP 404")
        return DocumentHandle(url=url, html=pages[url])

    return SimpleNamespace(fetch_static=fetch_static)


def _event(**overrides) -> CrawledEvent:
    values = {
        "event_name": "Founders Breakfast",
        "event_start_at": "2030-04-07T00:00:00Z",
        "external_url": "https://luma.com/founders-breakfast",
        "external_id": "evt-abc",
        "origin": "luma",
    }
    values.update(overrides)
    return CrawledEvent(**values)


def test_find_price_in_text_returns_cheapest() -> None:
    assert find_price_in_text("Early bird €900, regular $1,200.50") == (900.0, "EUR")
    assert find_price_in_text("Entry £0 for members") is None
    assert find_price_in_text("Free entry") is None


def test_embedded_json_fills_placeholder_description_and_hosts() -> None:
    detail = {
        "props": {
            "pageProps": {
                "initialData": {
                    "event": {
                        "api_id": "evt-abc",
                        "name": "Founders Breakfast",
                        "start_at": "2030-04-07T00:00:00Z",
                        "description": "Coffee and pitches with Seoul founders every month.",
                        "hosts": [{"name": "Jisoo"}, {"name": "Sam"}],
                        "guest_count": 25,
                    }
                }
            }
        }
    }
    html = f'<html><script type="application/json">{json.dumps(detail)}</script></html>'
    extractor = LumaExtractor(LUMA, _fetcher({"https://luma.com/founders-breakfast": html}))
    event = _event(event_desc=DEFAULT_DESCRIPTION)

    DetailEnricher(extractor).enrich(event)

    assert event.event_desc == "Coffee and pitches with Seoul founders every month."
    assert event.attendee_count == 25
    assert event.raw_data["enrichment"]["hosts"] == ["Jisoo", "Sam"]
    assert event.raw_data["enrichment"]["sources"] == ["json"]


def test_meta_description_and_html_price() -> None:
    html = """
    <html><head><meta property="og:description" content="A relaxed evening of board games and snacks." /></head>
    <body><p>Tickets: $25.00 at the door</p></body></html>
    """
    extractor = MeetupExtractor(MEETUP, _fetcher({"https://www.meetup.com/events/1": html}))
    event = _event(external_url="https://www.meetup.com/events/1", external_id="1", origin="meetup")

    DetailEnricher(extractor).enrich(event)

    assert event.event_desc == "A relaxed evening of board games and snacks."
    assert event.event_price == 25.0
    assert event.event_currency == "USD"
    assert event.raw_data["enrichment"]["sources"] == ["meta", "html"]


def test_populated_fields_are_never_replaced() -> None:
    ld = {
        "@type": "Event",
        "description": "A different description that is long enough to use.",
        "offers": [{"price": "5", "priceCurrency": "USD"}],
        "image": ["https://img.example.com/other.jpg"],
        "maximumAttendeeCapacity": 80,
    }
    html = f'<html><script type="application/ld+json">{json.dumps(ld)}</script></html>'
    extractor = LumaExtractor(LUMA, _fetcher({"https://luma.com/founders-breakfast": html}))
    event = _event(
        event_desc="Original description",
        event_price=10,
        event_currency="USD",
        event_images=["https://img.example.com/original.jpg"],
    )

    DetailEnricher(extractor).enrich(event)

    assert event.event_desc == "Original description"
    assert event.event_price == 10
    assert event.event_images == ["https://img.example.com/original.jpg"]
    assert event.event_capacity == 80


def test_structured_free_offer_blocks_html_price_scan() -> None:
    ld = {"@graph": [{"@type": "Event", "offers": {"price": "0", "priceCurrency": "KRW"}}]}
    html = (
        f'<html><script type="application/ld+json">{json.dumps(ld)}</script>'
        "<body><p>Worth $100 elsewhere</p></body></html>"
    )
    extractor = LumaExtractor(LUMA, _fetcher({"https://luma.com/founders-breakfast": html}))
    event = _event()

    DetailEnricher(extractor).enrich(event)

    assert event.event_price == 0
    assert event.event_desc == PLACEHOLDER_DESCRIPTION


def test_enrich_all_counts_and_pauses_between_requests() -> None:
    pages = {
        "https://luma.com/a": '<html><head><meta name="description" content="Enough words to count as a description."></head></html>',
        "https://luma.com/b": "<html><body>nothing useful</body></html>",
    }
    extractor = LumaExtractor(LUMA, _fetcher(pages))
    sleeps: list[float] = []
    enricher = DetailEnricher(extractor, delay=(0.1, 0.2), sleep=sleeps.append)
    events = [
        _event(external_url="https://luma.com/a", external_id="a"),
        _event(external_url="https://luma.com/b", external_id="b"),
        _event(external_url="https://luma.com/missing", external_id="c"),
    ]

    report = enricher.enrich_all(events)

    assert (report.enriched, report.unchanged, report.failed) == (1, 1, 1)
    assert len(sleeps) == 2
    assert all(0.1 <= value <= 0.2 for value in sleeps)
    assert "enrichment" not in events[2].raw_data


def test_events_without_url_are_skipped() -> None:
    extractor = LumaExtractor(LUMA, _fetcher({}))
    event = _event(external_url=None)

    assert DetailEnricher(extractor).enrich(event) is event
    assert "enrichment" not in event.raw_data
