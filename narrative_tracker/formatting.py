"""Injection text.

Plain-text blocks handed to whatever assembles the LLM prompt:

    [Scene State] ... [/Scene State]        current projection
    [Story So Far] ... [/Story So Far]      summaries of completed chapters
    [Recent Events] ... [/Recent Events]    events that fell out of context

Tag names, line prefixes and ordering are relied on by callers that match
on the text, so change them with care.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Literal

from narrative_tracker.chapters import milestone_display_name
from narrative_tracker.climate import TemperatureUnit, format_temperature
from narrative_tracker.models import (
    Chapter,
    CharacterOutfit,
    CharacterState,
    Climate,
    Milestone,
    NarrativeEvent,
    NarrativeEventSubject,
    Projection,
    RelationshipState,
    Scene,
)

if TYPE_CHECKING:
    from narrative_tracker.budget import ContextPlan
    from narrative_tracker.config import Settings

TimeFormat = Literal["12h", "24h"]

STORY_SO_FAR_TAGS = ("[Story So Far]", "[/Story So Far]")
RECENT_EVENTS_TAGS = ("[Recent Events]", "[/Recent Events]")
SCENE_STATE_TAGS = ("[Scene State]", "[/Scene State]")


def wrap(tags: tuple[str, str], content: str) -> str:
    """Wrap non-empty content in an opening/closing tag pair."""
    if not content:
        return ""
    return f"{tags[0]}\n{content}\n{tags[1]}"


def tag_overhead_text(tags: tuple[str, str]) -> str:
    """The wrapper alone, as counted by the budget allocator."""
    return f"{tags[0]}\n\n{tags[1]}"


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


def apply_time_format(hour: int, minute: int, time_format: TimeFormat) -> str:
    if time_format == "24h":
        return f"{hour:02d}:{minute:02d}"
    hour12 = hour % 12 or 12
    ampm = "AM" if hour < 12 else "PM"
    return f"{hour12}:{minute:02d} {ampm}"


def _day_ordinal(day: int) -> str:
    if 11 <= day <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")


def format_narrative_datetime(time: datetime, time_format: TimeFormat = "12h") -> str:
    """e.g. "Monday, June 15th, 2024 at 2:30 PM"."""
    return (
        f"{time.strftime('%A')}, {time.strftime('%B')} {time.day}{_day_ordinal(time.day)}, "
        f"{time.year} at {apply_time_format(time.hour, time.minute, time_format)}"
    )


# ---------------------------------------------------------------------------
# Scene state
# ---------------------------------------------------------------------------


def format_scene(scene: Scene) -> str:
    tension = [scene.tension.type, scene.tension.level]
    if scene.tension.direction != "stable":
        tension.append(scene.tension.direction)
    return f"Topic: {scene.topic}\nTone: {scene.tone}\nTension: {', '.join(tension)}"


def format_outfit(outfit: CharacterOutfit) -> str:
    parts = [
        outfit.torso or "topless",
        outfit.legs or "bottomless",
        outfit.underwear or "no underwear",
        outfit.head,
        outfit.neck,
        outfit.jacket,
        outfit.back,
        outfit.socks,
        outfit.footwear,
    ]
    return ", ".join(p for p in parts if p)


def format_climate(climate: Climate, unit: TemperatureUnit) -> str:
    return f"{format_temperature(climate.temperature, unit)}, {climate.weather}"


def format_character(char: CharacterState) -> str:
    parts = [f"{char.name}: {char.position}" if char.position else char.name]
    if char.activity:
        parts.append(f"doing: {char.activity}")
    if char.mood:
        parts.append(f"mood: {', '.join(char.mood)}")
    if char.physical_state:
        parts.append(f"physical: {', '.join(char.physical_state)}")
    if char.outfit != CharacterOutfit():
        parts.append(f"wearing: {format_outfit(char.outfit)}")
    return "; ".join(parts)


def format_relationship(rel: RelationshipState) -> str:
    a, b = rel.pair
    lines = [f"{a} & {b}: {rel.status}"]
    for who, whom, d in ((a, b, rel.a_to_b), (b, a, rel.b_to_a)):
        parts = []
        if d.feelings:
            parts.append(f"feels {', '.join(d.feelings)}")
        if d.wants:
            parts.append(f"wants {', '.join(d.wants)}")
        if d.secrets:
            parts.append(f"hides {', '.join(d.secrets)}")
        if parts:
            lines.append(f"  {who} toward {whom}: {'; '.join(parts)}")
    return "\n".join(lines)


def format_state_for_injection(
    projection: Projection,
    *,
    include_time: bool = True,
    include_location: bool = True,
    include_climate: bool = True,
    include_scene: bool = True,
    include_characters: bool = True,
    include_relationships: bool = True,
    temperature_unit: TemperatureUnit = "fahrenheit",
    time_format: TimeFormat = "12h",
) -> str:
    """[Scene State] block for a projection, or "" when there is nothing to say."""
    lines: list[str] = []

    # Scene first; it frames everything else.
    if include_scene and projection.scene is not None:
        lines.append(format_scene(projection.scene))
    if include_time and projection.time is not None:
        lines.append(f"Time: {format_narrative_datetime(projection.time, time_format)}")
    if include_location and projection.location is not None:
        loc = projection.location
        place = " - ".join(p for p in (loc.area, loc.place, loc.position) if p)
        if place:
            lines.append(f"Location: {place}")
        if loc.props:
            lines.append(f"Nearby objects: {', '.join(loc.props)}")
    if include_climate and projection.climate is not None:
        lines.append(f"Climate: {format_climate(projection.climate, temperature_unit)}")
    if include_characters and projection.characters_present:
        chars = [format_character(projection.characters[n]) for n in projection.characters_present]
        lines.append("Characters present:\n" + "\n".join(chars))
    if include_relationships and projection.relationships:
        rels = [format_relationship(r) for _, r in sorted(projection.relationships.items())]
        lines.append("Relationships:\n" + "\n".join(rels))

    return wrap(SCENE_STATE_TAGS, "\n".join(lines))


# ---------------------------------------------------------------------------
# Chapters and events
# ---------------------------------------------------------------------------


def format_milestones(milestones: Iterable[Milestone]) -> str:
    """e.g. "Jane & John: First Kiss, Confession; Alice & Bob: First Flirt"."""
    by_pair: dict[tuple[str, str], list[str]] = {}
    for m in milestones:
        by_pair.setdefault(m.pair, []).append(milestone_display_name(m.subject))
    return "; ".join(f"{a} & {b}: {', '.join(names)}" for (a, b), names in by_pair.items())


def format_past_chapter(chapter: Chapter) -> str:
    lines = [f"Chapter {chapter.index + 1}: {chapter.title}"]
    if chapter.summary:
        lines.append(f"  {chapter.summary}")
    milestones = format_milestones(chapter.milestones)
    if milestones:
        lines.append(f"  Milestones: {milestones}")
    return "\n".join(lines)


def format_past_chapters(chapters: Iterable[Chapter]) -> str:
    return "\n".join(format_past_chapter(c) for c in chapters)


def format_milestone_subject(subject: NarrativeEventSubject) -> str:
    if not subject.is_milestone:
        return ""
    pair = f"{subject.pair[0]} & {subject.pair[1]}"
    name = milestone_display_name(subject.subject)
    if subject.milestone_description:
        return f"{pair} - {name}: {subject.milestone_description}"
    return f"{pair}: {name}"


def format_event_for_injection(event: NarrativeEvent, include_full_milestones: bool = True) -> str:
    lines = [f"- {event.description}"]
    if include_full_milestones:
        for subject in event.subjects:
            text = format_milestone_subject(subject)
            if text:
                lines.append(f"  [Milestone: {text}]")
    return "\n".join(lines)


def format_out_of_context_events(events: list[NarrativeEvent], max_events: int) -> str:
    """The most recent ``max_events`` events, one bullet each."""
    if not events or max_events <= 0:
        return ""
    return "\n".join(format_event_for_injection(e) for e in events[-max_events:])


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def format_state_with_settings(projection: Projection, settings: Settings) -> str:
    return format_state_for_injection(
        projection,
        include_time=settings.track.time,
        include_location=settings.track.location,
        include_climate=settings.track.climate,
        include_scene=settings.track.scene,
        include_characters=settings.track.characters,
        include_relationships=settings.track.relationships,
        temperature_unit=settings.temperature_unit,
        time_format=settings.time_format,
    )


def build_injection(
    projection: Projection | None, plan: ContextPlan | None, settings: Settings
) -> str:
    """Story So Far, Recent Events and Scene State, separated by blank lines.

    Sections disabled in ``settings`` or with nothing to say are left out.
    """
    sections = []
    if settings.inject_narrative and plan is not None:
        sections.append(wrap(STORY_SO_FAR_TAGS, format_past_chapters(plan.past_chapters)))
        sections.append(
            wrap(
                RECENT_EVENTS_TAGS,
                format_out_of_context_events(
                    plan.current_chapter_events, settings.max_recent_events
                ),
            )
        )
    if settings.inject_state and projection is not None:
        sections.append(format_state_with_settings(projection, settings))
    return "\n\n".join(s for s in sections if s)
