"""Data models for calendar aggregation and digest analysis."""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ENUMS
# =============================================================================

class Group(str, Enum):
    """Program track that events are aggregated under."""

    BLUE = "blue"
    GOLD = "gold"


class EventStatus(str, Enum):
    """VEVENT STATUS values."""

    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class TimeSensitiveType(str, Enum):
    """Kind of time-sensitive digest item."""

    DEADLINE = "deadline"
    EVENT = "event"
    ANNOUNCEMENT = "announcement"
    REMINDER = "reminder"


class Priority(str, Enum):
    """Priority for digest items and classified events."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EventCategory(str, Enum):
    """Category assigned by the weekly analyzer."""

    ASSIGNMENT = "assignment"
    CLASS = "class"
    EXAM = "exam"
    ADMINISTRATIVE = "administrative"
    SOCIAL = "social"
    NEWSLETTER = "newsletter"
    OTHER = "other"


class EventOrigin(str, Enum):
    """Where a classified weekly event came from."""

    CALENDAR = "calendar"
    DIGEST = "digest"


# =============================================================================
# CALENDAR EVENTS
# =============================================================================

class Event(BaseModel):
    """A normalized calendar entry."""

    model_config = ConfigDict(frozen=True)

    uid: str
    title: str
    start: datetime
    end: Optional[datetime] = None
    all_day: bool = False
    location: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    group: Optional[Group] = None
    source: str = ""                 # Feed identifier that produced the event
    organizer: Optional[str] = None
    status: Optional[EventStatus] = None
    categories: list[str] = Field(default_factory=list)

    @field_validator("start")
    @classmethod
    def _start_is_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("start must be timezone-aware")
        return value

    def day(self, tz: tzinfo) -> date:
        """Calendar day of the start instant in ``tz``."""
        return self.start.astimezone(tz).date()


class GroupEventSets(BaseModel):
    """Pipeline output consumed by the presentation layer."""

    groups: dict[Group, list[Event]] = Field(default_factory=dict)
    reference: list[Event] = Field(default_factory=list)
    supplementary: dict[str, list[Event]] = Field(default_factory=dict)


# =============================================================================
# DIGEST INPUT / ORGANIZED DIGEST
# =============================================================================

class RawDigestItem(BaseModel):
    """One item of the incoming digest: a title and raw formatted content."""

    title: str
    html: str = ""


class RawDigestSection(BaseModel):
    section_title: str
    items: list[RawDigestItem] = Field(default_factory=list)


class RawDigest(BaseModel):
    """Structured text of one digest issue."""

    source_url: str
    title: Optional[str] = None
    sections: list[RawDigestSection] = Field(default_factory=list)


class TimeSensitiveInfo(BaseModel):
    """Date metadata attached to a digest item. Absence means not time-sensitive."""

    dates: list[date] = Field(min_length=1)
    deadline: Optional[date] = None
    event_type: TimeSensitiveType = TimeSensitiveType.ANNOUNCEMENT
    priority: Priority = Priority.MEDIUM


class DigestItem(BaseModel):
    title: str
    html: str = ""
    time_sensitive: Optional[TimeSensitiveInfo] = None


class DigestSection(BaseModel):
    section_title: str
    items: list[DigestItem] = Field(default_factory=list)


class OrganizerDebugInfo(BaseModel):
    """Diagnostics returned alongside an organized digest."""

    reasoning: Optional[str] = None
    section_decisions: list[str] = Field(default_factory=list)
    edge_cases_handled: list[str] = Field(default_factory=list)
    total_sections: int = 0
    processing_time_ms: int = 0
    model: Optional[str] = None
    models_tried: list[str] = Field(default_factory=list)
    fallback: bool = False


class OrganizedDigest(BaseModel):
    """Digest content reorganized into sections and items."""

    source_url: str
    title: Optional[str] = None
    sections: list[DigestSection] = Field(default_factory=list)
    debug_info: OrganizerDebugInfo = Field(default_factory=OrganizerDebugInfo)

    def iter_items(self) -> Iterator[tuple[DigestSection, int, DigestItem]]:
        """Yield (section, index within section, item) for every item."""
        for section in self.sections:
            for index, item in enumerate(section.items):
                yield section, index, item


# =============================================================================
# WEEKLY ANALYSIS
# =============================================================================

class DigestSourceRef(BaseModel):
    """Pointer back to the digest item a weekly event was derived from."""

    section_title: str
    item_title: str
    item_index: int


class ClassifiedEvent(BaseModel):
    """One entry of a group's weekly view."""

    date: dt.date
    time: Optional[str] = None       # e.g. "6:00 PM"
    title: str
    category: EventCategory = EventCategory.OTHER
    priority: Priority = Priority.MEDIUM
    description: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None
    origin: EventOrigin = EventOrigin.CALENDAR
    source: Optional[str] = None
    source_ref: Optional[DigestSourceRef] = None


class GroupWeek(BaseModel):
    events: list[ClassifiedEvent] = Field(default_factory=list)
    summary: str = ""
    degraded: bool = False


class WeeklyAnalysis(BaseModel):
    """Result of one weekly analysis run."""

    week_start: date
    week_end: date
    groups: dict[Group, GroupWeek] = Field(default_factory=dict)
    processing_time_ms: int = 0
    model: Optional[str] = None
    models_tried: list[str] = Field(default_factory=list)
    from_cache: bool = False
