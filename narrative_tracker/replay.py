"""Replay rules: how each event variant changes the state it is applied to.

apply_event() dispatches on (kind, subkind) through a handler table. Handlers
mutate the working state in place; the projector owns that copy. A handler
that cannot apply its event raises, and the projector skips the event.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Iterator
from itertools import groupby
from typing import Any

from narrative_tracker import events as ev
from narrative_tracker.branches import BranchResolver, is_canonical
from narrative_tracker.models import (
    TENSION_LEVEL_ORDER,
    CharacterState,
    Location,
    RelationshipDirection,
    RelationshipState,
    Scene,
    StateFields,
    Tension,
    new_relationship,
    relationship_key,
)

logger = logging.getLogger(__name__)


class ReplayError(ValueError):
    """An event that cannot be applied to the current state."""


def calculate_tension_direction(current: str, previous: str | None) -> str:
    if previous is None:
        return "stable"
    cur = TENSION_LEVEL_ORDER.index(current)
    prev = TENSION_LEVEL_ORDER.index(previous)
    if cur > prev:
        return "escalating"
    if cur < prev:
        return "decreasing"
    return "stable"


def _add_unique(values: list[str], value: str) -> None:
    if value not in values:
        values.append(value)


def _remove(values: list[str], value: str) -> None:
    if value in values:
        values.remove(value)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


def _time_initial(state: StateFields, e: ev.TimeInitial) -> None:
    state.time = e.time


def _time_delta(state: StateFields, e: ev.TimeDelta) -> None:
    if state.time is None:
        raise ReplayError("time delta without a current time")
    state.time = state.time + e.as_timedelta()


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------


def _location(state: StateFields) -> Location:
    if state.location is None:
        state.location = Location()
    return state.location


def _location_moved(state: StateFields, e: ev.LocationMoved) -> None:
    loc = _location(state)
    if (e.new_area, e.new_place) != (loc.area, loc.place):
        loc.props = []
    loc.area = e.new_area
    loc.place = e.new_place
    loc.position = e.new_position
    if e.new_location_type is not None:
        loc.location_type = e.new_location_type


def _prop_added(state: StateFields, e: ev.LocationPropAdded) -> None:
    _add_unique(_location(state).props, e.prop)


def _prop_removed(state: StateFields, e: ev.LocationPropRemoved) -> None:
    if state.location is not None:
        _remove(state.location.props, e.prop)


def _forecast_generated(state: StateFields, e: ev.ForecastGenerated) -> None:
    state.forecasts[e.area] = e.forecast.model_copy(deep=True)


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------


def _character(state: StateFields, name: str) -> CharacterState:
    char = state.characters.get(name)
    if char is None:
        char = state.characters[name] = CharacterState(name=name)
    return char


def _appeared(state: StateFields, e: ev.CharacterAppeared) -> None:
    char = _character(state, e.character)
    if e.initial_position:
        char.position = e.initial_position
    if e.initial_activity:
        char.activity = e.initial_activity


def _departed(state: StateFields, e: ev.CharacterDeparted) -> None:
    state.characters.pop(e.character, None)


def _position_changed(state: StateFields, e: ev.CharacterPositionChanged) -> None:
    _character(state, e.character).position = e.new_position


def _activity_changed(state: StateFields, e: ev.CharacterActivityChanged) -> None:
    _character(state, e.character).activity = e.new_activity


def _mood_added(state: StateFields, e: ev.CharacterMoodAdded) -> None:
    _add_unique(_character(state, e.character).mood, e.mood)


def _mood_removed(state: StateFields, e: ev.CharacterMoodRemoved) -> None:
    if e.character in state.characters:
        _remove(state.characters[e.character].mood, e.mood)


def _physical_added(state: StateFields, e: ev.CharacterPhysicalStateAdded) -> None:
    _add_unique(_character(state, e.character).physical_state, e.physical_state)


def _physical_removed(state: StateFields, e: ev.CharacterPhysicalStateRemoved) -> None:
    if e.character in state.characters:
        _remove(state.characters[e.character].physical_state, e.physical_state)


def _outfit_changed(state: StateFields, e: ev.CharacterOutfitChanged) -> None:
    setattr(_character(state, e.character).outfit, e.slot, e.new_value)


def _profile_set(state: StateFields, e: ev.CharacterProfileSet) -> None:
    _character(state, e.character).profile = e.profile.model_copy(deep=True)


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


def _relationship(state: StateFields, a: str, b: str) -> RelationshipState:
    if a == b:
        raise ReplayError(f"relationship of {a!r} with itself")
    key = relationship_key(a, b)
    rel = state.relationships.get(key)
    if rel is None:
        rel = state.relationships[key] = new_relationship(a, b)
    return rel


def _status_changed(state: StateFields, e: ev.RelationshipStatusChanged) -> None:
    _relationship(state, *e.pair).status = e.new_status


_DIRECTIONAL_FIELD = {
    "feeling_added": "feelings",
    "feeling_removed": "feelings",
    "secret_added": "secrets",
    "secret_removed": "secrets",
    "want_added": "wants",
    "want_removed": "wants",
}


def _direction(rel: RelationshipState, from_character: str) -> RelationshipDirection:
    return rel.a_to_b if from_character == rel.pair[0] else rel.b_to_a


def _directional_added(state: StateFields, e: Any) -> None:
    rel = _relationship(state, e.from_character, e.toward_character)
    values = getattr(_direction(rel, e.from_character), _DIRECTIONAL_FIELD[e.subkind])
    _add_unique(values, e.value)


def _directional_removed(state: StateFields, e: Any) -> None:
    key = relationship_key(e.from_character, e.toward_character)
    rel = state.relationships.get(key)
    if rel is None:
        return
    values = getattr(_direction(rel, e.from_character), _DIRECTIONAL_FIELD[e.subkind])
    _remove(values, e.value)


# ---------------------------------------------------------------------------
# Scene
# ---------------------------------------------------------------------------


def _tension_changed(state: StateFields, e: ev.TensionChanged) -> None:
    previous = state.scene.tension.level if state.scene is not None else None
    direction = e.direction or calculate_tension_direction(e.level, previous)
    if state.scene is None:
        state.scene = Scene()
    state.scene.tension = Tension(level=e.level, type=e.type, direction=direction)


def _topic_tone_changed(state: StateFields, e: ev.TopicToneChanged) -> None:
    if state.scene is None:
        state.scene = Scene()
    state.scene.topic = e.topic
    state.scene.tone = e.tone


def _no_state_change(state: StateFields, e: Any) -> None:
    pass


Handler = Callable[[StateFields, Any], None]

HANDLERS: dict[tuple[str, str | None], Handler] = {
    ("time", "initial"): _time_initial,
    ("time", "delta"): _time_delta,
    ("location", "moved"): _location_moved,
    ("location", "prop_added"): _prop_added,
    ("location", "prop_removed"): _prop_removed,
    ("forecast", "generated"): _forecast_generated,
    ("character", "appeared"): _appeared,
    ("character", "departed"): _departed,
    ("character", "position_changed"): _position_changed,
    ("character", "activity_changed"): _activity_changed,
    ("character", "mood_added"): _mood_added,
    ("character", "mood_removed"): _mood_removed,
    ("character", "physical_state_added"): _physical_added,
    ("character", "physical_state_removed"): _physical_removed,
    ("character", "outfit_changed"): _outfit_changed,
    ("character", "profile_set"): _profile_set,
    ("relationship", "status_changed"): _status_changed,
    ("relationship", "feeling_added"): _directional_added,
    ("relationship", "feeling_removed"): _directional_removed,
    ("relationship", "secret_added"): _directional_added,
    ("relationship", "secret_removed"): _directional_removed,
    ("relationship", "want_added"): _directional_added,
    ("relationship", "want_removed"): _directional_removed,
    ("relationship", "subject"): _no_state_change,
    ("tension", None): _tension_changed,
    ("topic_tone", None): _topic_tone_changed,
    ("narrative", "description"): _no_state_change,
    ("chapter", "ended"): _no_state_change,
    ("chapter", "described"): _no_state_change,
}


def apply_event(state: StateFields, event: Any) -> None:
    """Apply one event to ``state`` in place.

    Raises ReplayError for records with no replay rule (legacy events).
    """
    if not ev.is_event(event):
        raise ReplayError(f"no replay rule for legacy record {event.kind!r}")
    handler = HANDLERS.get((event.kind, event.subkind))
    if handler is None:
        raise ReplayError(f"no replay rule for {event.kind}/{event.subkind}")
    handler(state, event)


# ---------------------------------------------------------------------------
# Filtering, ordering and the replay loop
# ---------------------------------------------------------------------------


def event_sort_key(event: Any) -> tuple[int, float, int]:
    """Message first, then creation time, then append order."""
    ts = event.timestamp.timestamp() if event.timestamp is not None else 0.0
    return (event.source.message_id, ts, event.seq)


def canonical_events(
    events: Iterable[Any],
    resolver: BranchResolver,
    *,
    after: int = -1,
    upto: int | None = None,
) -> list[Any]:
    """Live events on the canonical path with ``after < message_id <= upto``, ordered."""
    kept = []
    for e in events:
        if e.deleted or e.source is None:
            continue
        mid = e.source.message_id
        if mid <= after or (upto is not None and mid > upto):
            continue
        if is_canonical(e.source, resolver):
            kept.append(e)
    kept.sort(key=event_sort_key)
    return kept


def copy_state(snapshot: StateFields | None) -> StateFields:
    """Deep copy of the replayable fields of a snapshot (empty state for None)."""
    if snapshot is None:
        return StateFields()
    return StateFields(
        **{name: copy.deepcopy(getattr(snapshot, name)) for name in StateFields.model_fields}
    )


def replay_events(state: StateFields, events: Iterable[Any]) -> StateFields:
    """Apply events in order. A bad event is logged and skipped."""
    for e in events:
        try:
            apply_event(state, e)
        except Exception as exc:
            logger.warning(
                "Skipping event %s (%s/%s) at message %s: %s",
                e.id, e.kind, e.subkind,
                e.source.message_id if e.source else "?", exc,
            )
    return state


def walk_messages(
    state: StateFields, events: Iterable[Any]
) -> Iterator[tuple[int, list[Any], StateFields]]:
    """Replay ordered events message by message.

    Yields (message_id, events of that message, state after the message).
    The same state object is yielded each time and keeps changing.
    """
    for message_id, group in groupby(events, key=lambda e: e.source.message_id):
        batch = list(group)
        replay_events(state, batch)
        yield message_id, batch, state
