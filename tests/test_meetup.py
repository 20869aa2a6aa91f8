from __future__ import annotations

from types import SimpleNamespace

import pytest

from eventcrawler.blobstore import load_json
from eventcrawler.config import ScraperConfig
from eventcrawler.errors import FetchError
from eventcrawler.models import EventLocationType
from eventcrawler.services.extractors.meetup import MeetupEventPayload, MeetupExtractor
from eventcrawler.services.fetcher import DocumentHandle

CONFIG = ScraperConfig(
    name="meetup",
    base_url="https://www.meetup.com",
    search_url="https://www.meetup.com/find/?location=kr--Seoul&source=EVENTS",
    api_patterns=("/gql",),
)


def _node(**overrides):
    node = {
        "__typename": "Event",
        "id": "301",
        "title": "Seoul Hiking Club",
        "description": "Hike Bukhansan together",
        "eventUrl": "https://www.meetup.com/seoul-hikers/events/301/",
        "dateTime": "2030-04-05T09:00:00+09:00",
        "endTime": "2030-04-05T15:00:00+09:00",
        "eventType": "PHYSICAL",
        "venue": {"name": "Bukhansan Park", "address": "262 Bogungmun-ro", "city": "Seoul", "lat": 37.66, "lng": 126.99},
        "feeSettings": {"amount": 15000, "currency": "KRW"},
        "featuredEventPhoto": {"source": "https://secure.meetupstatic.com/photos/1.jpeg"},
        "group": {"topics": [{"name": "Hiking"}, {"name": "Outdoors"}]},
        "goingCount": {"totalCount": 12},
        "maxTickets": 30,
    }
    node.update(overrides)
    return node


def _graphql_response(*nodes):
    return {"data": {"result": {"edges": [{"node": node} for node in nodes]}}}


def _extractor(document: DocumentHandle, tmp_path) -> MeetupExtractor:
    fetcher = SimpleNamespace(fetch_dynamic=lambda url, scroll, patterns: document)
    return MeetupExtractor(CONFIG, fetcher, audit_root=tmp_path)


def test_payload_requires_event_typename_and_detail() -> None:
    assert MeetupEventPayload.model_validate(_node()).payload()["__typename"] == "Event"

    for node in (
        _node(__typename="Group"),
        _node(title="   "),
        _node(description=None, eventUrl=None),
    ):
        with pytest.raises(ValueError):
            MeetupEventPayload.model_validate(node)


def test_scrape_events_maps_graphql_nodes(tmp_path) -> None:
    document = DocumentHandle(
        url=CONFIG.search_url,
        html="<html></html>",
        mode="dynamic",
        captured_json=[_graphql_response(_node())],
    )

    events = _extractor(document, tmp_path).scrape_events()

    assert len(events) == 1
    event = events[0]
    assert event.event_name == "Seoul Hiking Club"
    assert event.origin == "meetup"
    assert event.external_id == "301"
    assert event.external_url == "https://www.meetup.com/seoul-hikers/events/301/"
    assert event.event_price == 15000
    assert event.event_currency == "KRW"
    assert event.location_type is EventLocationType.OFFLINE
    assert event.event_city == "Seoul"
    assert event.event_address == "262 Bogungmun-ro"
    assert (event.coordinate_latitude, event.coordinate_longitude) == (37.66, 126.99)
    assert event.event_tags == ["Hiking", "Outdoors"]
    assert event.attendee_count == 12
    assert event.event_capacity == 30
    assert event.event_images == ["https://secure.meetupstatic.com/photos/1.jpeg"]
    assert event.raw_data["id"] == "301"

    audit = load_json("meetup.json", blob_root=tmp_path)
    assert audit["metadata"]["total_events"] == 1
    assert "raw_data" not in audit["events"][0]


def test_online_events_and_small_krw_fees_are_free(tmp_path) -> None:
    node = _node(
        id=302,
        eventUrl=None,
        eventType="ONLINE",
        feeSettings={"amount": 500, "currency": "KRW"},
        venue={"name": "Online event", "city": "Seoul"},
        maxTickets=0,
    )
    document = DocumentHandle(url=CONFIG.search_url, html="", captured_json=[_graphql_response(node)])

    event = _extractor(document, tmp_path).scrape_events()[0]

    assert event.location_type is EventLocationType.ONLINE
    assert event.event_city is None
    assert event.event_price == 0
    assert event.event_currency is None
    assert event.external_url == "https://www.meetup.com/events/302"
    assert event.event_capacity is None


def test_skipped_typenames_and_stubs_are_ignored(tmp_path) -> None:
    payload = {
        "locations": {"__typename": "LocationSearch", "nearby": [_node(id="900", title="Hidden")]},
        "stub": {"__typename": "Event", "id": "901", "title": "Stub only"},
        "results": _graphql_response(_node(), _node()),
    }
    document = DocumentHandle(url=CONFIG.search_url, html="", captured_json=[payload])

    events = _extractor(document, tmp_path).scrape_events()

    assert [event.external_id for event in events] == ["301"]


def test_events_without_start_are_dropped(tmp_path) -> None:
    document = DocumentHandle(
        url=CONFIG.search_url,
        html="",
        captured_json=[_graphql_response(_node(dateTime=None), _node(id="303", dateTime="2030-05-01T10:00:00Z"))],
    )

    events = _extractor(document, tmp_path).scrape_events()

    assert [event.external_id for event in events] == ["303"]


def test_malformed_nested_fields_do_not_drop_neighbours(tmp_path) -> None:
    odd = _node(id="302", goingCount=7, venue="Seoul", group="hikers", featuredEventPhoto="photo.jpg")
    document = DocumentHandle(url=CONFIG.search_url, html="", captured_json=[_graphql_response(odd, _node())])

    events = _extractor(document, tmp_path).scrape_events()

    assert [event.external_id for event in events] == ["302", "301"]
    assert events[0].attendee_count is None
    assert events[0].event_tags == []
    assert events[0].event_address is None
    assert events[1].attendee_count == 12


def test_mapping_errors_drop_only_the_offending_node(tmp_path, monkeypatch) -> None:
    document = DocumentHandle(
        url=CONFIG.search_url, html="", captured_json=[_graphql_response(_node(id="304"), _node())]
    )
    extractor = _extractor(document, tmp_path)
    original = extractor.map_payload

    def _map(payload):
        if payload.get("id") == "304":
            raise TypeError("unexpected field type")
        return original(payload)

    monkeypatch.setattr(extractor, "map_payload", _map)

    assert [event.external_id for event in extractor.scrape_events()] == ["301"]


def test_limit_truncates_results(tmp_path) -> None:
    nodes = [_node(id=str(i), eventUrl=None) for i in range(5)]
    document = DocumentHandle(url=CONFIG.search_url, html="", captured_json=[_graphql_response(*nodes)])

    assert len(_extractor(document, tmp_path).scrape_events(limit=2)) == 2


def test_html_fallback_reads_event_cards(tmp_path) -> None:
    html = """
    <html><body>
        <div class="card">
            <a href="/seoul-board-gamers/events/55/"><h3>Board Games Night in Gangnam</h3></a>
            <time datetime="2030-04-06T19:00:00+09:00">Sat, Apr 6</time>
            <span data-testid="venue-name">Dice Cafe</span>
            <img src="https://img.example.com/55.jpg" />
        </div>
        <div class="card">
            <a href="/no-date/events/56/"><h3>Card without a start time</h3></a>
        </div>
    </body></html>
    """
    document = DocumentHandle(url=CONFIG.search_url, html=html)

    events = _extractor(document, tmp_path).scrape_events()

    assert len(events) == 1
    assert events[0].event_name == "Board Games Night in Gangnam"
    assert events[0].external_url == "https://www.meetup.com/seoul-board-gamers/events/55/"
    assert events[0].event_address == "Dice Cafe"
    assert events[0].event_images == ["https://img.example.com/55.jpg"]


def test_fetch_listing_falls_back_to_static(tmp_path) -> None:
    calls: list[str] = []

    def fail_dynamic(url, scroll, patterns):
        calls.append("dynamic")
        raise FetchError(url, "browser crashed")

    def fetch_static(url):
        calls.append("static")
        return DocumentHandle(url=url, html="<html></html>")

    extractor = MeetupExtractor(
        CONFIG, SimpleNamespace(fetch_dynamic=fail_dynamic, fetch_static=fetch_static), audit_root=tmp_path
    )

    assert extractor.scrape_events() == []
    assert calls == ["dynamic", "static"]


def test_max_pages_limits_scroll_rounds_passed_to_browser(tmp_path) -> None:
    seen: list[int] = []

    def fetch_dynamic(url, scroll, patterns):
        seen.append(scroll.rounds)
        return DocumentHandle(url=url, html="<html></html>")

    config = CONFIG.model_copy(update={"max_pages": 4})
    MeetupExtractor(config, SimpleNamespace(fetch_dynamic=fetch_dynamic), audit_root=tmp_path).scrape_events()

    assert seen == [3]


def test_find_detail_matches_by_id(tmp_path) -> None:
    extractor = MeetupExtractor(CONFIG, SimpleNamespace(), audit_root=tmp_path)
    event = extractor.build_event(_node())
    blobs = [{"apollo": {"Event:1": _node(id="1"), "Event:301": _node(description="Full details")}}]

    detail = extractor.find_detail(blobs, event)

    assert detail is not None
    assert detail["description"] == "Full details"
