from __future__ import annotations

import contextlib
import json
from types import SimpleNamespace

import pytest
import requests

from eventcrawler.config import ScrollPlan
from eventcrawler.errors import FetchError
from eventcrawler.services import fetcher as fetcher_module
from eventcrawler.services.fetcher import DocumentHandle, PageFetcher


class DummyResponse:
    def __init__(self, text: str, status_code: int = 200) -> None:
        self.text = text
        self.status_code = status_code


class FakeApiResponse:
    def __init__(self, url: str, payload=None, broken: bool = False) -> None:
        self.url = url
        self._payload = payload
        self._broken = broken

    def json(self):
        if self._broken:
            raise ValueError("not json")
        return self._payload


class FakePage:
    def __init__(self, heights: list[int], responses: list[FakeApiResponse], fail_on_goto: bool = False) -> None:
        self._heights = list(heights)
        self._responses = responses
        self._fail_on_goto = fail_on_goto
        self._handlers: list = []
        self.wheel_calls: list[tuple[int, int]] = []
        self.mouse = SimpleNamespace(wheel=lambda dx, dy: self.wheel_calls.append((dx, dy)))

    def on(self, event: str, handler) -> None:
        assert event == "response"
        self._handlers.append(handler)

    def goto(self, url: str, wait_until: str, timeout: int) -> None:
        if self._fail_on_goto:
            raise RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        for response in self._responses:
            for handler in self._handlers:
                handler(response)

    def evaluate(self, expression: str) -> int:
        return self._heights.pop(0) if len(self._heights) > 1 else self._heights[0]

    def wait_for_timeout(self, ms: int) -> None:
        return None

    def wait_for_load_state(self, state: str, timeout: int) -> None:
        raise TimeoutError("still busy")

    def content(self) -> str:
        return "<html><body><h1>Listing</h1></body></html>"


class FakeBrowser:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.closed = False
        self.context_closed = False
        self.context_kwargs: dict = {}

    def new_context(self, **kwargs):
        self.context_kwargs = kwargs

        def close() -> None:
            self.context_closed = True

        return SimpleNamespace(new_page=lambda: self.page, close=close)

    def close(self) -> None:
        self.closed = True


def _install_browser(monkeypatch, browser: FakeBrowser) -> None:
    playwright = SimpleNamespace(chromium=SimpleNamespace(launch=lambda headless: browser))
    monkeypatch.setattr(fetcher_module, "sync_playwright", lambda: contextlib.nullcontext(playwright))


def test_fetch_static_returns_document() -> None:
    session = SimpleNamespace(get=lambda url, timeout: DummyResponse("<html>ok</html>"))
    fetcher = PageFetcher(session=session)

    document = fetcher.fetch_static("https://example.com/events")

    assert document.html == "<html>ok</html>"
    assert document.mode == "static"


def test_fetch_static_raises_on_http_error() -> None:
    session = SimpleNamespace(get=lambda url, timeout: DummyResponse("denied", status_code=403))
    fetcher = PageFetcher(session=session)

    with pytest.raises(FetchError, match="HTTP 403"):
        fetcher.fetch_static("https://example.com/events")


def test_fetch_static_wraps_transport_errors() -> None:
    def fake_get(url, timeout):
        raise requests.ConnectionError("connection reset")

    fetcher = PageFetcher(session=SimpleNamespace(get=fake_get))

    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch_static("https://example.com/events")
    assert excinfo.value.url == "https://example.com/events"


def test_fetch_dynamic_captures_matching_json(monkeypatch) -> None:
    page = FakePage(
        heights=[1000, 2000, 2000, 2000],
        responses=[
            FakeApiResponse("https://www.meetup.com/gql2", {"data": {"event": 1}}),
            FakeApiResponse("https://cdn.example.com/app.js", {"ignored": True}),
            FakeApiResponse("https://www.meetup.com/gql2?op=x", broken=True),
        ],
    )
    browser = FakeBrowser(page)
    _install_browser(monkeypatch, browser)

    document = PageFetcher(session=SimpleNamespace()).fetch_dynamic(
        "https://www.meetup.com/find/", ScrollPlan(rounds=5, pixels=800), api_patterns=("/gql",)
    )

    assert document.mode == "dynamic"
    assert document.captured_json == [{"data": {"event": 1}}]
    assert "Listing" in document.html
    assert page.wheel_calls == [(0, 800), (0, 800)]
    assert browser.closed and browser.context_closed
    assert browser.context_kwargs["viewport"] == {"width": 1920, "height": 1080}


def test_fetch_dynamic_closes_browser_on_failure(monkeypatch) -> None:
    browser = FakeBrowser(FakePage(heights=[1000], responses=[], fail_on_goto=True))
    _install_browser(monkeypatch, browser)

    with pytest.raises(FetchError, match="ERR_NAME_NOT_RESOLVED"):
        PageFetcher(session=SimpleNamespace()).fetch_dynamic("https://luma.com/seoul")

    assert browser.closed and browser.context_closed


def test_document_handle_yields_inline_then_captured_json() -> None:
    html = (
        "<html><head>"
        f'<script type="application/json" id="__NEXT_DATA__">{json.dumps({"props": {"a": 1}})}</script>'
        '<script type="application/json">{broken</script>'
        '<script type="application/ld+json">{"@type": "Event", "name": "Gig"}</script>'
        "</head></html>"
    )
    document = DocumentHandle(url="https://luma.com/x", html=html, captured_json=[{"captured": True}])

    assert list(document.json_blobs()) == [{"props": {"a": 1}}, {"captured": True}]
    assert list(document.json_ld()) == [{"@type": "Event", "name": "Gig"}]
