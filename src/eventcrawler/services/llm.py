"""Safety filtering and categorisation backed by a local model runtime.

Both stages fail open: when the runtime is disabled, unreachable or returns
something unusable, events are accepted and categorised as ``OTHER`` rather
than dropped. Responses are parsed through three tiers, each a separate
function that returns a value or ``None``:

* structured: a JSON object (or array) embedded in the reply
* heuristic: keyword scan of the raw text
* default: accept, or ``[OTHER]``
"""

from __future__ import annotations

import contextlib
import json
import logging
import re
from typing import TYPE_CHECKING, Any, ContextManager, Dict, List, Optional, Sequence

import requests
from pydantic import BaseModel, Field

from eventcrawler.config import LLMSettings
from eventcrawler.errors import ModelRuntimeError
from eventcrawler.models import CrawledEvent, EventCategory, is_placeholder_name
from eventcrawler.services.prompts import build_categorize_prompt, build_safety_prompt

if TYPE_CHECKING:  # pragma: no cover
    from eventcrawler.services.runtime import ModelRuntimeManager

__all__ = [
    "Categorization",
    "Categorizer",
    "FilterOutcome",
    "ModelRuntimeClient",
    "RuntimeHealth",
    "SafetyFilter",
    "SafetyVerdict",
    "default_categorization",
    "default_safety",
    "parse_categorization",
    "parse_categories_heuristic",
    "parse_categories_structured",
    "parse_safety",
    "parse_safety_heuristic",
    "parse_safety_structured",
]

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT = 5
MAX_CATEGORIES = 2
MAX_SUGGESTED_TAGS = 5
UNAVAILABLE_REASON = "model unavailable - accepting"

_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY_PATTERN = re.compile(r"\[[\s\S]*?\]")
_UNSAFE_PATTERN = re.compile(r"\"?safe\"?\s*:\s*false|\bunsafe\b|\bnot safe\b", re.IGNORECASE)
_SAFE_PATTERN = re.compile(r"\"?safe\"?\s*:\s*true|(?<!not )\bsafe\b(?!\"?\s*:)", re.IGNORECASE)


class SafetyVerdict(BaseModel):
    accepted: bool
    reason: str = ""
    tier: str = "structured"


class Categorization(BaseModel):
    categories: List[EventCategory] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class FilterOutcome(BaseModel):
    accepted: List[CrawledEvent] = Field(default_factory=list)
    rejected: List[CrawledEvent] = Field(default_factory=list)
    reasons: Dict[str, str] = Field(default_factory=dict)


class RuntimeHealth(BaseModel):
    status: str
    model: str
    available: bool


# ---------------------------------------------------------------------------
# Response parsing


def _json_object(text: str) -> Optional[dict]:
    match = _OBJECT_PATTERN.search(text or "")
    if not match:
        return None
    candidate = match.group(0)
    for attempt in (candidate, candidate[: candidate.find("}") + 1]):
        try:
            parsed = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_safety_structured(text: str) -> Optional[SafetyVerdict]:
    """Read ``{"safe": bool, "reason": str}`` from the reply."""

    data = _json_object(text)
    if data is None or "safe" not in data:
        return None
    safe = data["safe"]
    if isinstance(safe, str):
        if safe.strip().lower() not in {"true", "false"}:
            return None
        safe = safe.strip().lower() == "true"
    if not isinstance(safe, bool):
        return None
    reason = str(data.get("reason") or "").strip()
    return SafetyVerdict(accepted=safe, reason="" if safe else reason or "flagged by model", tier="structured")


def parse_safety_heuristic(text: str) -> Optional[SafetyVerdict]:
    """Keyword verdict; replies that mention both verdicts are left undecided."""

    if not text:
        return None
    unsafe = _UNSAFE_PATTERN.search(text) is not None
    safe = _SAFE_PATTERN.search(text) is not None
    if unsafe and safe:
        return None
    if unsafe:
        return SafetyVerdict(accepted=False, reason="flagged by model", tier="heuristic")
    if safe:
        return SafetyVerdict(accepted=True, tier="heuristic")
    return None


def default_safety() -> SafetyVerdict:
    return SafetyVerdict(accepted=True, reason="unparseable model output - accepting", tier="default")


def parse_safety(text: str) -> SafetyVerdict:
    return parse_safety_structured(text) or parse_safety_heuristic(text) or default_safety()


def _valid_categories(values: Any) -> List[EventCategory]:
    if not isinstance(values, list):
        return []
    found: List[EventCategory] = []
    for value in values:
        if not isinstance(value, str):
            continue
        try:
            category = EventCategory(value.strip().upper())
        except ValueError:
            continue
        if category not in found:
            found.append(category)
    return found[:MAX_CATEGORIES]


def _clean_tags(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    tags: List[str] = []
    for value in values:
        if isinstance(value, str) and value.strip() and value.strip().lower() not in tags:
            tags.append(value.strip().lower())
    return tags[:MAX_SUGGESTED_TAGS]


def parse_categories_structured(text: str) -> Optional[Categorization]:
    """Read ``{"categories": [...], "tags": [...]}`` or a bare JSON array."""

    data = _json_object(text)
    if data is not None and "categories" in data:
        categories = _valid_categories(data.get("categories"))
        if categories:
            return Categorization(categories=categories, tags=_clean_tags(data.get("tags")))

    match = _ARRAY_PATTERN.search(text or "")
    if match:
        try:
            categories = _valid_categories(json.loads(match.group(0)))
        except json.JSONDecodeError:
            categories = []
        if categories:
            return Categorization(categories=categories)
    return None


def parse_categories_heuristic(text: str) -> Optional[Categorization]:
    upper = (text or "").upper()
    found = [category for category in EventCategory if re.search(rf"\b{category.value}\b", upper)]
    if not found:
        return None
    return Categorization(categories=found[:MAX_CATEGORIES])


def default_categorization() -> Categorization:
    return Categorization(categories=[EventCategory.OTHER])


def parse_categorization(text: str) -> Categorization:
    return parse_categories_structured(text) or parse_categories_heuristic(text) or default_categorization()


# ---------------------------------------------------------------------------
# Runtime client


class ModelRuntimeClient:
    """Minimal client for an Ollama-compatible HTTP API."""

    def __init__(self, settings: LLMSettings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self._session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}{path}"

    def generate(self, prompt: str, *, max_tokens: int, temperature: float | None = None) -> str:
        """Return the model's completion for ``prompt``."""

        payload = {
            "model": self.settings.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.settings.temperature if temperature is None else temperature,
                "num_predict": max_tokens,
            },
        }
        try:
            response = self._session.post(self._url("/api/generate"), json=payload, timeout=self.settings.timeout)
        except requests.RequestException as exc:
            raise ModelRuntimeError(f"model runtime request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise ModelRuntimeError(f"model runtime returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ModelRuntimeError("model runtime returned invalid JSON") from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise ModelRuntimeError("model runtime reply has no 'response' field")
        return text

    def version(self) -> str:
        try:
            response = self._session.get(self._url("/api/version"), timeout=HEALTH_TIMEOUT)
        except requests.RequestException as exc:
            raise ModelRuntimeError(f"model runtime unreachable: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise ModelRuntimeError(f"model runtime returned HTTP {response.status_code}")
        try:
            return str(response.json().get("version", ""))
        except (ValueError, AttributeError) as exc:
            raise ModelRuntimeError("model runtime returned invalid JSON") from exc

    def health(self) -> RuntimeHealth:
        model = self.settings.model
        if not self.settings.enabled:
            return RuntimeHealth(status="disabled", model=model, available=False)
        try:
            response = self._session.get(self._url("/api/tags"), timeout=HEALTH_TIMEOUT)
        except requests.RequestException:
            return RuntimeHealth(status="offline", model=model, available=False)
        if not 200 <= response.status_code < 300:
            return RuntimeHealth(status="error", model=model, available=False)
        try:
            models = response.json().get("models") or []
        except (ValueError, AttributeError):
            return RuntimeHealth(status="error", model=model, available=False)

        family = model.split(":")[0]
        present = any(family in str(entry.get("name", "")) for entry in models if isinstance(entry, dict))
        return RuntimeHealth(status="ready" if present else "model_not_found", model=model, available=present)


# ---------------------------------------------------------------------------
# Pipeline stages


class _ModelStage:
    def __init__(
        self,
        settings: LLMSettings,
        client: ModelRuntimeClient | None = None,
        runtime: "ModelRuntimeManager | None" = None,
    ) -> None:
        self.settings = settings
        self.client = client or ModelRuntimeClient(settings)
        self.runtime = runtime

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def _lease(self) -> ContextManager[Any]:
        return self.runtime.lease() if self.runtime is not None else contextlib.nullcontext()


class SafetyFilter(_ModelStage):
    """Accept or reject crawled events; never blocks the pipeline on model failure."""

    def check_safety(self, event: CrawledEvent) -> SafetyVerdict:
        if is_placeholder_name(event.event_name):
            return SafetyVerdict(accepted=False, reason="missing or placeholder event name", tier="structural")
        if not self.enabled:
            return SafetyVerdict(accepted=True, tier="disabled")

        try:
            with self._lease():
                reply = self.client.generate(
                    build_safety_prompt(event), max_tokens=self.settings.filter_max_tokens
                )
        except ModelRuntimeError as exc:
            logger.warning("Safety check unavailable for %r, accepting: %s", event.event_name, exc)
            return SafetyVerdict(accepted=True, reason=UNAVAILABLE_REASON, tier="unavailable")

        verdict = parse_safety(reply)
        logger.debug("Safety verdict for %r: %s (%s)", event.event_name, verdict.accepted, verdict.tier)
        return verdict

    def filter_events(self, events: Sequence[CrawledEvent]) -> FilterOutcome:
        outcome = FilterOutcome()
        for event in events:
            verdict = self.check_safety(event)
            if verdict.accepted:
                outcome.accepted.append(event)
            else:
                outcome.rejected.append(event)
                outcome.reasons[event.rejection_key] = verdict.reason
        logger.info("Safety filter: %d accepted, %d rejected", len(outcome.accepted), len(outcome.rejected))
        return outcome


class Categorizer(_ModelStage):
    """Assign up to two categories and suggest tags for accepted events."""

    def classify(self, event: CrawledEvent) -> Categorization:
        if not self.enabled:
            return Categorization()
        try:
            with self._lease():
                reply = self.client.generate(
                    build_categorize_prompt(event), max_tokens=self.settings.categorize_max_tokens
                )
        except ModelRuntimeError as exc:
            logger.warning("Categoriser unavailable for %r: %s", event.event_name, exc)
            return default_categorization()
        return parse_categorization(reply)

    def categorize(self, event: CrawledEvent) -> List[EventCategory]:
        return list(self.classify(event).categories)

    def categorize_all(self, events: Sequence[CrawledEvent]) -> Dict[str, Categorization]:
        if not self.enabled:
            return {}
        results = {event.category_key: self.classify(event) for event in events}
        logger.info("Categorised %d events", len(results))
        return results
