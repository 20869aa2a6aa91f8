"""Per-source event extractors."""

from __future__ import annotations

from typing import Dict, Type

from .base import EventExtractor, EventPayload
from .luma import LumaExtractor
from .meetup import MeetupExtractor

#: Extractor classes keyed by the ``name`` used in ``data/sources.json``.
EXTRACTORS: Dict[str, Type[EventExtractor]] = {
    "meetup": MeetupExtractor,
    "luma": LumaExtractor,
}

__all__ = ["EXTRACTORS", "EventExtractor", "EventPayload", "LumaExtractor", "MeetupExtractor"]
