"""Exception types shared across the crawler services."""

from __future__ import annotations

__all__ = ["CrawlerError", "FetchError", "ModelRuntimeError"]


class CrawlerError(Exception):
    """Base class for errors raised by the crawler package."""


class FetchError(CrawlerError):
    """A page could not be fetched (network error, timeout or non-2xx status)."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url


class ModelRuntimeError(CrawlerError):
    """The local model runtime could not be reached, started or understood."""
