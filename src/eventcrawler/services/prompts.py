"""Prompt templates for the safety filter and the categoriser."""

from __future__ import annotations

from typing import Sequence

from eventcrawler.models import CrawledEvent, EventCategory

__all__ = [
    "CATEGORIZE_DESCRIPTION_LENGTH",
    "MAX_PROMPT_TAGS",
    "SAFETY_DESCRIPTION_LENGTH",
    "build_categorize_prompt",
    "build_safety_prompt",
]

SAFETY_DESCRIPTION_LENGTH = 300
CATEGORIZE_DESCRIPTION_LENGTH = 250
MAX_PROMPT_TAGS = 5

SAFETY_TEMPLATE = """Decide whether this event belongs on a public community event platform.

EVENT: {name}
DESCRIPTION: {description}
TAGS: {tags}

Mark the event UNSAFE only when there is clear evidence of:
1. sexual services or explicit adult content (dating events and singles mixers are fine)
2. illegal drugs or drug dealing
3. pyramid schemes, MLM recruiting or investment scams
4. hate groups, extremism or calls to violence (protests and activism are fine)
5. events that put minors at risk
6. unlicensed gambling operations
7. illegal weapons trading

Nightlife, bars, parties, language exchanges, networking, political gatherings,
licensed casinos, gun ranges and every ordinary professional, educational or
community event are SAFE. When in doubt, answer SAFE.

Reply with JSON only, no markdown:
{{"safe": true, "reason": ""}}
or
{{"safe": false, "reason": "short specific reason"}}"""

CATEGORIZE_TEMPLATE = """Categorise this event.

EVENT NAME: {name}
DESCRIPTION: {description}
EXISTING TAGS: {tags}

Pick the 1 or 2 categories that best describe the main activity, from:
{categories}

Guidance: language and conversation events are EDUCATION, networking is
BUSINESS, hiking and running are SPORTS or HEALTH, cooking classes are FOOD.

Also suggest 2 to 5 short lowercase tags. Keep every existing tag.

Reply with JSON only, no markdown:
{{"categories": ["CATEGORY"], "tags": ["tag"]}}"""


def _truncate(text: str, limit: int) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def _tag_list(tags: Sequence[str]) -> str:
    selected = [tag for tag in tags if tag][:MAX_PROMPT_TAGS]
    return ", ".join(selected) if selected else "NONE"


def build_safety_prompt(event: CrawledEvent) -> str:
    return SAFETY_TEMPLATE.format(
        name=event.event_name or "N/A",
        description=_truncate(event.event_desc, SAFETY_DESCRIPTION_LENGTH) or "N/A",
        tags=_tag_list(event.event_tags),
    )


def build_categorize_prompt(event: CrawledEvent) -> str:
    return CATEGORIZE_TEMPLATE.format(
        name=event.event_name or "N/A",
        description=_truncate(event.event_desc, CATEGORIZE_DESCRIPTION_LENGTH) or "N/A",
        tags=_tag_list(event.event_tags),
        categories=", ".join(category.value for category in EventCategory),
    )
