"""Core domain models.

State, snapshot and projection types shared by the event log, the projector
and the formatting layer. Pydantic is used for validation and serialisation
at every data boundary; temperatures are stored in Fahrenheit.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Position(BaseModel):
    """One branch ("swipe") of one message. Used as a key everywhere."""

    model_config = ConfigDict(frozen=True)

    message_id: int = Field(ge=0)
    swipe_id: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Scene
# ---------------------------------------------------------------------------

TensionLevel = Literal[
    "relaxed",
    "aware",
    "guarded",
    "tense",
    "charged",
    "volatile",
    "explosive",
]
TensionType = Literal[
    "conversation",
    "confrontation",
    "intimate",
    "suspense",
    "vulnerable",
    "celebratory",
    "negotiation",
]
TensionDirection = Literal["escalating", "stable", "decreasing"]

TENSION_LEVEL_ORDER: list[str] = [
    "relaxed",
    "aware",
    "guarded",
    "tense",
    "charged",
    "volatile",
    "explosive",
]


class Tension(BaseModel):
    level: TensionLevel = "relaxed"
    type: TensionType = "conversation"
    direction: TensionDirection = "stable"


class Scene(BaseModel):
    topic: str = ""
    tone: str = ""
    tension: Tension = Field(default_factory=Tension)


# ---------------------------------------------------------------------------
# Location and climate
# ---------------------------------------------------------------------------

LocationType = Literal[
    "outdoor",
    "modern",
    "heated",
    "unheated",
    "underground",
    "vehicle",
]


class Location(BaseModel):
    area: str = ""
    place: str = ""
    position: str = ""
    props: list[str] = Field(default_factory=list)
    location_type: LocationType = "outdoor"


class HourlyForecast(BaseModel):
    hour: int = Field(ge=0, le=23)
    temperature: float
    condition: str
    precipitation: float = 0.0  # chance, 0 to 1
    wind_speed: float = 0.0
    humidity: float = 0.0


class DailyForecast(BaseModel):
    day: date
    high: float
    low: float
    condition: str
    hourly: list[HourlyForecast] = Field(default_factory=list)


class Forecast(BaseModel):
    """Generated weather for one area, one entry per day."""

    area: str
    start_date: date
    days: list[DailyForecast] = Field(default_factory=list)


class Climate(BaseModel):
    """Weather at the current place and time. Always derived, never replayed."""

    temperature: int
    weather: str
    indoors: bool = False


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

OutfitSlot = Literal[
    "head",
    "neck",
    "jacket",
    "back",
    "torso",
    "legs",
    "underwear",
    "socks",
    "footwear",
]


class CharacterOutfit(BaseModel):
    head: str | None = None
    neck: str | None = None
    jacket: str | None = None
    back: str | None = None
    torso: str | None = None
    legs: str | None = None
    underwear: str | None = None
    socks: str | None = None
    footwear: str | None = None


class CharacterProfile(BaseModel):
    sex: str = ""
    species: str = ""
    age: int | None = None
    appearance: list[str] = Field(default_factory=list)
    personality: list[str] = Field(default_factory=list)


class CharacterState(BaseModel):
    name: str
    position: str = ""
    activity: str = ""
    mood: list[str] = Field(default_factory=list)
    physical_state: list[str] = Field(default_factory=list)
    outfit: CharacterOutfit = Field(default_factory=CharacterOutfit)
    profile: CharacterProfile | None = None


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------

RelationshipStatus = Literal[
    "strangers",
    "acquaintances",
    "friendly",
    "close",
    "intimate",
    "strained",
    "hostile",
    "complicated",
]


class RelationshipDirection(BaseModel):
    feelings: list[str] = Field(default_factory=list)
    secrets: list[str] = Field(default_factory=list)
    wants: list[str] = Field(default_factory=list)


class RelationshipState(BaseModel):
    pair: tuple[str, str]  # always sorted, see sort_pair()
    status: RelationshipStatus = "strangers"
    a_to_b: RelationshipDirection = Field(default_factory=RelationshipDirection)
    b_to_a: RelationshipDirection = Field(default_factory=RelationshipDirection)

    @model_validator(mode="after")
    def _sort_pair(self) -> RelationshipState:
        a, b = self.pair
        if a == b:
            raise ValueError(f"Relationship of {a!r} with itself")
        if a > b:
            # a_to_b always reads from pair[0] toward pair[1]
            self.pair = (b, a)
            self.a_to_b, self.b_to_a = self.b_to_a, self.a_to_b
        return self


def sort_pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a <= b else (b, a)


def relationship_key(a: str, b: str) -> str:
    """Order-independent identity of a character pair: "Alice|Bob"."""
    return "|".join(sort_pair(a, b))


def new_relationship(a: str, b: str) -> RelationshipState:
    return RelationshipState(pair=sort_pair(a, b))


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class StateFields(BaseModel):
    """The replayable part of a snapshot or projection."""

    time: datetime | None = None
    location: Location | None = None
    scene: Scene | None = None
    characters: dict[str, CharacterState] = Field(default_factory=dict)
    relationships: dict[str, RelationshipState] = Field(default_factory=dict)
    forecasts: dict[str, Forecast] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _key_relationships(self) -> StateFields:
        keyed: dict[str, RelationshipState] = {}
        for rel in self.relationships.values():
            key = relationship_key(*rel.pair)
            if key in keyed:
                raise ValueError(f"Relationship {key} given twice")
            keyed[key] = rel
        self.relationships = keyed
        return self


class InitialSnapshot(StateFields):
    type: Literal["initial"] = "initial"
    source: Position


class ChapterSnapshot(StateFields):
    type: Literal["chapter"] = "chapter"
    source: Position
    chapter_index: int = Field(ge=1)
    # Selected swipe of every message this checkpoint was built from.
    branch: dict[int, int] = Field(default_factory=dict)


Snapshot = Annotated[
    Union[InitialSnapshot, ChapterSnapshot],
    Field(discriminator="type"),
]


def empty_snapshot(source: Position) -> InitialSnapshot:
    return InitialSnapshot(source=source)


# ---------------------------------------------------------------------------
# Derived views (never persisted)
# ---------------------------------------------------------------------------


class Milestone(BaseModel):
    pair: tuple[str, str]
    subject: str
    description: str | None = None
    source: Position


class NarrativeEventSubject(BaseModel):
    pair: tuple[str, str]
    subject: str
    is_milestone: bool = False
    milestone_description: str | None = None


class NarrativeEvent(BaseModel):
    """A narrative description enriched with the scene it happened in."""

    description: str
    source: Position
    chapter_index: int
    witnesses: list[str] = Field(default_factory=list)
    location: str = ""
    tension_level: TensionLevel | None = None
    tension_type: TensionType | None = None
    subjects: list[NarrativeEventSubject] = Field(default_factory=list)


ChapterEndReason = Literal["location_change", "time_jump", "both", "manual"]


class Chapter(BaseModel):
    index: int
    title: str
    summary: str = ""
    end_reason: ChapterEndReason | None = None  # None while the chapter is open
    ended_at: Position | None = None
    start_message_id: int = 0
    event_count: int = 0
    milestones: list[Milestone] = Field(default_factory=list)
    narrative_events: list[NarrativeEvent] = Field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None


class Projection(StateFields):
    """Point-in-time state at a target message."""

    target_message_id: int
    characters_present: list[str] = Field(default_factory=list)
    current_chapter: int = 0
    climate: Climate | None = None
    narrative_events: list[NarrativeEvent] = Field(default_factory=list)
