"""Configuration models and helpers for the event crawler."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Iterable, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

__all__ = [
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_USER_AGENT",
    "LLMSettings",
    "ScraperConfig",
    "ScrollPlan",
]

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "data" / "sources.json"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/91.0.4472.124 Safari/537.36"
)

_TRUTHY = {"1", "true", "yes", "on"}


class ScrollPlan(BaseModel):
    """How a listing page is scrolled to trigger lazy loading."""

    model_config = ConfigDict(frozen=True)

    rounds: int = Field(default=10, ge=0, description="Number of scroll rounds")
    pixels: int = Field(default=1000, ge=0, description="Mouse-wheel delta per round")
    interval_ms: int = Field(default=2000, ge=0, description="Wait after each round")
    final_wait_ms: int = Field(default=5000, ge=0, description="Wait after the last round")


class ScraperConfig(BaseModel):
    """Static configuration for a single event source."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Source name, also used as the event origin")
    base_url: str = Field(..., description="Site root used to absolutise relative links")
    search_url: str = Field(..., description="Listing page crawled for events")
    max_pages: int | None = Field(
        default=None,
        ge=1,
        description="Optional cap on listing pages; each scroll round loads one more page",
    )
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    use_browser: bool = Field(
        default=True,
        description=(
            "Render the listing page in a headless browser and capture API responses. "
            "When false, or when the browser fetch fails, a plain HTTP GET is used."
        ),
    )
    api_patterns: Tuple[str, ...] = Field(
        default=(),
        description="URL fragments identifying API responses worth capturing",
    )
    scroll: ScrollPlan = Field(default_factory=ScrollPlan)
    detail_delay_s: Tuple[float, float] = Field(
        default=(1.5, 3.0),
        description="Random delay range between detail page requests",
    )

    @field_validator("detail_delay_s")
    @classmethod
    def _ordered_delay(cls, value: Tuple[float, float]) -> Tuple[float, float]:
        low, high = value
        if low < 0 or high < low:
            raise ValueError("detail_delay_s must be a non-negative (min, max) pair")
        return value

    @property
    def listing_scroll(self) -> ScrollPlan:
        """Scroll plan with rounds capped so at most ``max_pages`` pages load."""

        if self.max_pages is None or self.scroll.rounds < self.max_pages:
            return self.scroll
        return self.scroll.model_copy(update={"rounds": self.max_pages - 1})


class AppConfig(BaseModel):
    """Collection of :class:`ScraperConfig` entries for the crawler."""

    sources: List[ScraperConfig] = Field(default_factory=list)

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "AppConfig":
        """Load configuration data from a JSON file."""

        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Configuration file not found: {config_path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in configuration file: {config_path}") from exc

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Configuration file is invalid: {config_path}\n{exc}") from exc

    def dump(self, path: Path | str | None = None) -> None:
        """Persist the configuration back to disk as JSON."""

        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    def iter_sources(self) -> Iterable[ScraperConfig]:
        return iter(self.sources)

    def get_source(self, name: str) -> ScraperConfig:
        """Return the source called ``name`` (case-insensitive)."""

        for source in self.sources:
            if source.name.lower() == name.lower():
                return source
        raise KeyError(name)


class LLMSettings(BaseModel):
    """Settings for the local model runtime used by the safety filter and categoriser."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    base_url: str = "http://localhost:11434"
    model: str = "qwen2.5:0.5b"
    container: str = "eventify-ollama"
    timeout: float = 30.0
    temperature: float = 0.1
    filter_max_tokens: int = 100
    categorize_max_tokens: int = 50
    startup_attempts: int = 30
    startup_interval_s: float = 2.0
    manage_container: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "LLMSettings":
        """Build settings from ``LLM_ENABLED`` and the ``OLLAMA_*`` variables."""

        env = os.environ if environ is None else environ
        values: dict = {"enabled": env.get("LLM_ENABLED", "").strip().lower() in _TRUTHY}
        if env.get("OLLAMA_BASE_URL"):
            values["base_url"] = env["OLLAMA_BASE_URL"].rstrip("/")
        if env.get("OLLAMA_MODEL"):
            values["model"] = env["OLLAMA_MODEL"]
        if env.get("OLLAMA_CONTAINER"):
            values["container"] = env["OLLAMA_CONTAINER"]
        if env.get("OLLAMA_TIMEOUT"):
            try:
                values["timeout"] = float(env["OLLAMA_TIMEOUT"])
            except ValueError as exc:
                raise ValueError(f"OLLAMA_TIMEOUT must be a number: {env['OLLAMA_TIMEOUT']!r}") from exc
        if "OLLAMA_MANAGE_CONTAINER" in env:
            values["manage_container"] = env["OLLAMA_MANAGE_CONTAINER"].strip().lower() in _TRUTHY
        return cls(**values)
