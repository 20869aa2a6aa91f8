"""Event crawler package exposing configuration, services and the reporting API."""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VARIABLE = "EVENTCRAWLER_ENV_FILE"
_PROJECT_ENV = Path(__file__).resolve().parents[2] / ".env"


def _read_env_file(env_path: Path) -> dict[str, str]:
    """Parse ``KEY=value`` lines, tolerating ``export`` prefixes and quoted values."""

    values: dict[str, str] = {}
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        if key:
            values[key] = value.strip('"').strip("'")
    return values


def _load_local_env() -> None:
    """Copy ``.env`` settings into ``os.environ`` without overriding real variables."""

    env_path = Path(os.environ.get(ENV_FILE_VARIABLE) or _PROJECT_ENV)
    if not env_path.is_file():
        return
    for key, value in _read_env_file(env_path).items():
        os.environ.setdefault(key, value)


_load_local_env()

from .config import AppConfig, LLMSettings, ScraperConfig, ScrollPlan  # noqa: E402,F401

__all__ = ["AppConfig", "LLMSettings", "ScraperConfig", "ScrollPlan"]
