"""Page retrieval over plain HTTP or a headless browser with response capture."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Iterator, List, Sequence

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

try:  # pragma: no cover - optional dependency during tests
    from playwright.sync_api import sync_playwright
except ModuleNotFoundError:  # pragma: no cover - optional dependency during tests
    sync_playwright = None  # type: ignore[assignment]

from eventcrawler.config import DEFAULT_USER_AGENT, ScrollPlan
from eventcrawler.errors import FetchError

__all__ = ["DocumentHandle", "PageFetcher", "build_session"]

logger = logging.getLogger(__name__)

STATIC_TIMEOUT = (10, 60)
NAVIGATION_TIMEOUT_MS = 60_000
NETWORK_IDLE_TIMEOUT_MS = 10_000
VIEWPORT = {"width": 1920, "height": 1080}

BASE_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}


def build_session(user_agent: str = DEFAULT_USER_AGENT) -> requests.Session:
    """Return a session that retries throttled and failing GET requests."""

    retry = Retry(
        total=3,
        connect=3,
        read=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET"},
        raise_on_status=False,
    )
    session = requests.Session()
    session.headers.update(BASE_HEADERS)
    session.headers["User-Agent"] = user_agent
    session.mount("https://", HTTPAdapter(max_retries=retry))
    session.mount("http://", HTTPAdapter(max_retries=retry))
    return session


def _ensure_playwright() -> None:
    """Ensure the Playwright dependency is available."""

    if sync_playwright is None:  # pragma: no cover - runtime guard
        raise RuntimeError(
            "Playwright is required for browser rendering but is not installed. Install the "
            "'playwright' package and run 'playwright install chromium'."
        )


@dataclass
class DocumentHandle:
    """A fetched page: rendered HTML plus any JSON captured from the network."""

    url: str
    html: str
    mode: str = "static"
    captured_json: List[Any] = field(default_factory=list)

    @cached_property
    def soup(self) -> BeautifulSoup:
        return BeautifulSoup(self.html, "lxml")

    def _script_payloads(self, script_type: str) -> Iterator[Any]:
        for script in self.soup.find_all("script", attrs={"type": script_type}):
            text = script.string or script.get_text()
            if not text or not text.strip():
                continue
            try:
                yield json.loads(text)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed %s payload on %s", script_type, self.url)

    def json_blobs(self) -> Iterator[Any]:
        """Yield inline ``application/json`` payloads followed by captured responses."""

        yield from self._script_payloads("application/json")
        yield from self.captured_json

    def json_ld(self) -> Iterator[Any]:
        """Yield structured-data payloads from ``application/ld+json`` scripts."""

        yield from self._script_payloads("application/ld+json")


class PageFetcher:
    """Fetch listing and detail pages for the extractors and the enricher."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
        *,
        timeout: tuple[float, float] = STATIC_TIMEOUT,
        headless: bool = True,
    ) -> None:
        self.user_agent = user_agent
        self._session = session or build_session(user_agent)
        self._timeout = timeout
        self._headless = headless

    def fetch_static(self, url: str) -> DocumentHandle:
        """Fetch ``url`` with a single GET request."""

        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise FetchError(url, str(exc)) from exc

        if not 200 <= response.status_code < 300:
            raise FetchError(url, f"HTTP {response.status_code}")

        return DocumentHandle(url=url, html=response.text, mode="static")

    def fetch_dynamic(
        self,
        url: str,
        scroll: ScrollPlan | None = None,
        api_patterns: Sequence[str] = (),
    ) -> DocumentHandle:
        """Render ``url`` in headless Chromium, scroll it and capture matching API responses.

        Responses whose URL contains one of ``api_patterns`` are buffered while the
        page loads and decoded once scrolling is done; bodies that are not JSON are
        skipped. The browser is closed on every exit path and any browser failure
        surfaces as :class:`FetchError`.
        """

        plan = scroll or ScrollPlan()
        patterns = tuple(pattern for pattern in api_patterns if pattern)
        captured: list = []

        def _capture(response: Any) -> None:
            if patterns and any(pattern in response.url for pattern in patterns):
                captured.append(response)

        try:
            _ensure_playwright()
            with sync_playwright() as playwright:  # type: ignore[operator]
                browser = playwright.chromium.launch(headless=self._headless)
                context = browser.new_context(
                    user_agent=self.user_agent,
                    viewport=VIEWPORT,
                    extra_http_headers={"Accept-Language": BASE_HEADERS["Accept-Language"]},
                )
                try:
                    page = context.new_page()
                    page.on("response", _capture)
                    page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
                    self._scroll(page, plan, captured)
                    try:
                        page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_TIMEOUT_MS)
                    except Exception:  # noqa: BLE001 - long-polling pages never go idle
                        logger.debug("Network did not go idle on %s", url)
                    page.wait_for_timeout(plan.final_wait_ms)
                    html = page.content()
                    payloads = self._decode_responses(captured)
                finally:
                    context.close()
                    browser.close()
        except FetchError:
            raise
        except Exception as exc:  # noqa: BLE001 - Playwright failures and missing browser
            raise FetchError(url, str(exc)) from exc

        logger.info("Rendered %s (%d captured API responses)", url, len(payloads))
        return DocumentHandle(url=url, html=html, mode="dynamic", captured_json=payloads)

    @staticmethod
    def _scroll(page: Any, plan: ScrollPlan, captured: list) -> None:
        """Scroll in rounds, stopping early once neither the page nor the captures grow."""

        for round_number in range(1, plan.rounds + 1):
            before_height = page.evaluate("document.body.scrollHeight")
            before_captured = len(captured)

            page.mouse.wheel(0, plan.pixels)
            page.wait_for_timeout(plan.interval_ms)

            after_height = page.evaluate("document.body.scrollHeight")
            logger.debug(
                "Scroll %d/%d: height %s -> %s, %d captured",
                round_number,
                plan.rounds,
                before_height,
                after_height,
                len(captured),
            )
            if after_height <= before_height and len(captured) == before_captured:
                logger.debug("No new content after scroll %d, stopping", round_number)
                break

    @staticmethod
    def _decode_responses(responses: Sequence[Any]) -> List[Any]:
        payloads: List[Any] = []
        for response in responses:
            try:
                payloads.append(response.json())
            except Exception:  # noqa: BLE001 - non-JSON or already discarded bodies
                logger.debug("Skipping non-JSON response from %s", getattr(response, "url", "?"))
        return payloads
