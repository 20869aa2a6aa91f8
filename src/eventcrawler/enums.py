"""Enumerations shared by crawled events and imported records."""

from __future__ import annotations

from enum import Enum

__all__ = ["EventCategory", "EventLocationType", "EventStatus", "EventType"]


class EventType(str, Enum):
    ONCE = "ONCE"
    RECURRING = "RECURRING"


class EventLocationType(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


class EventStatus(str, Enum):
    UPCOMING = "UPCOMING"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"


class EventCategory(str, Enum):
    SPORTS = "SPORTS"
    ART = "ART"
    TECHNOLOGY = "TECHNOLOGY"
    FOOD = "FOOD"
    TRAVEL = "TRAVEL"
    EDUCATION = "EDUCATION"
    HEALTH = "HEALTH"
    ENTERTAINMENT = "ENTERTAINMENT"
    BUSINESS = "BUSINESS"
    CULTURE = "CULTURE"
    COMMUNITY = "COMMUNITY"
    POLITICS = "POLITICS"
    RELIGION = "RELIGION"
    OTHER = "OTHER"
