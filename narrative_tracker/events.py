"""State-change events.

Every event is a frozen record tagged with the position it was extracted
from. Variants form a closed union discriminated first on ``kind`` and then
on ``subkind``; payloads are validated when the event is constructed.

    time          initial | delta
    location      moved | prop_added | prop_removed
    forecast      generated
    character     appeared | departed | position_changed | activity_changed
                  mood_added | mood_removed
                  physical_state_added | physical_state_removed
                  outfit_changed | profile_set
    relationship  status_changed | subject
                  feeling_added | feeling_removed | secret_added
                  secret_removed | want_added | want_removed
    tension       (no subkind)
    topic_tone    (no subkind)
    narrative     description
    chapter       ended | described

Records read back from disk that no longer validate load as ``LegacyEvent``.
They are kept so the audit history survives, and are skipped during replay.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter, ValidationError

from narrative_tracker.models import (
    ChapterEndReason,
    CharacterProfile,
    Forecast,
    LocationType,
    OutfitSlot,
    Position,
    RelationshipStatus,
    TensionDirection,
    TensionLevel,
    TensionType,
    sort_pair,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    source: Position
    timestamp: datetime = Field(default_factory=_utcnow)
    seq: int = 0  # assigned by the log at append time
    deleted: bool = False


Name = Annotated[str, Field(min_length=1)]


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class TimeInitial(EventBase):
    kind: Literal["time"] = "time"
    subkind: Literal["initial"] = "initial"
    time: datetime


class TimeDelta(EventBase):
    kind: Literal["time"] = "time"
    subkind: Literal["delta"] = "delta"
    days: int = Field(default=0, ge=0)
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)
    seconds: int = Field(default=0, ge=0)

    def as_timedelta(self) -> timedelta:
        return timedelta(
            days=self.days, hours=self.hours,
            minutes=self.minutes, seconds=self.seconds,
        )


# ---------------------------------------------------------------------------
# Location and forecast
# ---------------------------------------------------------------------------


class LocationMoved(EventBase):
    kind: Literal["location"] = "location"
    subkind: Literal["moved"] = "moved"
    new_area: str
    new_place: str
    new_position: str = ""
    new_location_type: LocationType | None = None


class LocationPropAdded(EventBase):
    kind: Literal["location"] = "location"
    subkind: Literal["prop_added"] = "prop_added"
    prop: Name


class LocationPropRemoved(EventBase):
    kind: Literal["location"] = "location"
    subkind: Literal["prop_removed"] = "prop_removed"
    prop: Name


class ForecastGenerated(EventBase):
    kind: Literal["forecast"] = "forecast"
    subkind: Literal["generated"] = "generated"
    area: Name
    forecast: Forecast


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------


class CharacterAppeared(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["appeared"] = "appeared"
    character: Name
    initial_position: str = ""
    initial_activity: str = ""


class CharacterDeparted(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["departed"] = "departed"
    character: Name


class CharacterPositionChanged(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["position_changed"] = "position_changed"
    character: Name
    new_position: str


class CharacterActivityChanged(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["activity_changed"] = "activity_changed"
    character: Name
    new_activity: str


class CharacterMoodAdded(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["mood_added"] = "mood_added"
    character: Name
    mood: Name


class CharacterMoodRemoved(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["mood_removed"] = "mood_removed"
    character: Name
    mood: Name


class CharacterPhysicalStateAdded(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["physical_state_added"] = "physical_state_added"
    character: Name
    physical_state: Name


class CharacterPhysicalStateRemoved(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["physical_state_removed"] = "physical_state_removed"
    character: Name
    physical_state: Name


class CharacterOutfitChanged(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["outfit_changed"] = "outfit_changed"
    character: Name
    slot: OutfitSlot
    new_value: str | None = None  # None empties the slot


class CharacterProfileSet(EventBase):
    kind: Literal["character"] = "character"
    subkind: Literal["profile_set"] = "profile_set"
    character: Name
    profile: CharacterProfile


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


class RelationshipStatusChanged(EventBase):
    kind: Literal["relationship"] = "relationship"
    subkind: Literal["status_changed"] = "status_changed"
    pair: tuple[Name, Name]
    new_status: RelationshipStatus


class _DirectionalRelationshipEvent(EventBase):
    kind: Literal["relationship"] = "relationship"
    from_character: Name
    toward_character: Name
    value: Name

    @property
    def pair(self) -> tuple[str, str]:
        return sort_pair(self.from_character, self.toward_character)


class RelationshipFeelingAdded(_DirectionalRelationshipEvent):
    subkind: Literal["feeling_added"] = "feeling_added"


class RelationshipFeelingRemoved(_DirectionalRelationshipEvent):
    subkind: Literal["feeling_removed"] = "feeling_removed"


class RelationshipSecretAdded(_DirectionalRelationshipEvent):
    subkind: Literal["secret_added"] = "secret_added"


class RelationshipSecretRemoved(_DirectionalRelationshipEvent):
    subkind: Literal["secret_removed"] = "secret_removed"


class RelationshipWantAdded(_DirectionalRelationshipEvent):
    subkind: Literal["want_added"] = "want_added"


class RelationshipWantRemoved(_DirectionalRelationshipEvent):
    subkind: Literal["want_removed"] = "want_removed"


class RelationshipSubject(EventBase):
    """Something that happened between two characters, e.g. "confession"."""

    kind: Literal["relationship"] = "relationship"
    subkind: Literal["subject"] = "subject"
    pair: tuple[Name, Name]
    subject: Name
    milestone_description: str | None = None


# ---------------------------------------------------------------------------
# Scene
# ---------------------------------------------------------------------------


class TensionChanged(EventBase):
    kind: Literal["tension"] = "tension"
    subkind: None = None
    level: TensionLevel
    type: TensionType
    direction: TensionDirection | None = None  # computed at replay when absent


class TopicToneChanged(EventBase):
    kind: Literal["topic_tone"] = "topic_tone"
    subkind: None = None
    topic: str
    tone: str


class NarrativeDescription(EventBase):
    kind: Literal["narrative"] = "narrative"
    subkind: Literal["description"] = "description"
    description: Name


# ---------------------------------------------------------------------------
# Chapters
# ---------------------------------------------------------------------------


class ChapterEnded(EventBase):
    kind: Literal["chapter"] = "chapter"
    subkind: Literal["ended"] = "ended"
    chapter_index: int = Field(ge=0)
    reason: ChapterEndReason


class ChapterDescribed(EventBase):
    kind: Literal["chapter"] = "chapter"
    subkind: Literal["described"] = "described"
    chapter_index: int = Field(ge=0)
    title: str
    summary: str = ""


# ---------------------------------------------------------------------------
# The union
# ---------------------------------------------------------------------------

TimeEvent = Annotated[
    Union[TimeInitial, TimeDelta],
    Field(discriminator="subkind"),
]
LocationEvent = Annotated[
    Union[LocationMoved, LocationPropAdded, LocationPropRemoved],
    Field(discriminator="subkind"),
]
CharacterEvent = Annotated[
    Union[
        CharacterAppeared,
        CharacterDeparted,
        CharacterPositionChanged,
        CharacterActivityChanged,
        CharacterMoodAdded,
        CharacterMoodRemoved,
        CharacterPhysicalStateAdded,
        CharacterPhysicalStateRemoved,
        CharacterOutfitChanged,
        CharacterProfileSet,
    ],
    Field(discriminator="subkind"),
]
RelationshipEvent = Annotated[
    Union[
        RelationshipStatusChanged,
        RelationshipFeelingAdded,
        RelationshipFeelingRemoved,
        RelationshipSecretAdded,
        RelationshipSecretRemoved,
        RelationshipWantAdded,
        RelationshipWantRemoved,
        RelationshipSubject,
    ],
    Field(discriminator="subkind"),
]
ChapterEvent = Annotated[
    Union[ChapterEnded, ChapterDescribed],
    Field(discriminator="subkind"),
]

Event = Annotated[
    Union[
        TimeEvent,
        LocationEvent,
        ForecastGenerated,
        CharacterEvent,
        RelationshipEvent,
        TensionChanged,
        TopicToneChanged,
        NarrativeDescription,
        ChapterEvent,
    ],
    Field(discriminator="kind"),
]

EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


class LegacyEvent(BaseModel):
    """A stored record that no longer matches any event variant."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str = Field(default_factory=_new_id)
    source: Position | None = None
    timestamp: datetime | None = None
    seq: int = 0
    deleted: bool = False
    kind: str = "unknown"
    subkind: str | None = None

    # Set when not even the common fields validate
    _raw: dict[str, Any] | None = PrivateAttr(default=None)

    def to_record(self) -> dict[str, Any]:
        """The stored form: the record exactly as read when it was unreadable."""
        if self._raw is not None:
            return dict(self._raw)
        return self.model_dump(mode="json")


def parse_event(data: dict[str, Any]) -> Event:
    """Validate a dict into its event variant. Raises ValidationError."""
    return EVENT_ADAPTER.validate_python(data)


def load_event(data: dict[str, Any]) -> Event | LegacyEvent:
    """Like parse_event(), but keeps unreadable records as LegacyEvent."""
    try:
        return parse_event(data)
    except ValidationError as e:
        logger.warning(
            "Stored event %s (%s/%s) kept as legacy, %d validation errors",
            data.get("id"), data.get("kind"), data.get("subkind"), e.error_count(),
        )
    try:
        return LegacyEvent.model_validate(data)
    except ValidationError:
        # Not even the common fields survive; keep the record as read.
        record_id, kind = data.get("id"), data.get("kind")
        legacy = LegacyEvent(
            id=record_id if isinstance(record_id, str) else _new_id(),
            kind=kind if isinstance(kind, str) else "unknown",
        )
        legacy._raw = data
        return legacy


def is_event(obj: object) -> bool:
    return isinstance(obj, EventBase)
