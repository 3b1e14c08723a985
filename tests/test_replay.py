"""Tests for per-event replay rules."""

from datetime import datetime

import pytest

from narrative_tracker import events as ev
from narrative_tracker.branches import SwipeMap
from narrative_tracker.events import LegacyEvent
from narrative_tracker.models import Location, Position, StateFields
from narrative_tracker.replay import (
    ReplayError,
    apply_event,
    calculate_tension_direction,
    canonical_events,
    replay_events,
)

P = Position(message_id=1)


def _state(**fields) -> StateFields:
    return StateFields(**fields)


# ── time ──────────────────────────────────────────────────────


def test_time_delta_advances_time():
    state = _state(time=datetime(2024, 6, 15, 23, 30))
    apply_event(state, ev.TimeDelta(source=P, hours=1, minutes=15))
    assert state.time == datetime(2024, 6, 16, 0, 45)


def test_time_delta_without_time_raises():
    with pytest.raises(ReplayError):
        apply_event(_state(), ev.TimeDelta(source=P, hours=1))


# ── location ──────────────────────────────────────────────────


def test_move_to_new_place_clears_props():
    state = _state(location=Location(area="Harbor", place="Docks", props=["crate"]))
    apply_event(state, ev.LocationMoved(source=P, new_area="Harbor", new_place="Tavern",
                                        new_location_type="heated"))
    assert state.location.place == "Tavern"
    assert state.location.props == []
    assert state.location.location_type == "heated"


def test_move_within_place_keeps_props():
    state = _state(location=Location(area="Harbor", place="Docks", props=["crate"]))
    apply_event(state, ev.LocationMoved(source=P, new_area="Harbor", new_place="Docks",
                                        new_position="by the water"))
    assert state.location.props == ["crate"]
    assert state.location.position == "by the water"


def test_props_are_a_set():
    state = _state()
    apply_event(state, ev.LocationPropAdded(source=P, prop="lantern"))
    apply_event(state, ev.LocationPropAdded(source=P, prop="lantern"))
    apply_event(state, ev.LocationPropRemoved(source=P, prop="rope"))
    assert state.location.props == ["lantern"]


# ── characters ────────────────────────────────────────────────


def test_character_lifecycle():
    state = _state()
    apply_event(state, ev.CharacterAppeared(source=P, character="Mara",
                                            initial_position="at the bar"))
    apply_event(state, ev.CharacterMoodAdded(source=P, character="Mara", mood="wary"))
    apply_event(state, ev.CharacterMoodAdded(source=P, character="Mara", mood="wary"))
    apply_event(state, ev.CharacterOutfitChanged(source=P, character="Mara",
                                                 slot="jacket", new_value="oilskin coat"))
    mara = state.characters["Mara"]
    assert mara.position == "at the bar"
    assert mara.mood == ["wary"]
    assert mara.outfit.jacket == "oilskin coat"

    apply_event(state, ev.CharacterDeparted(source=P, character="Mara"))
    assert "Mara" not in state.characters


def test_removing_from_unknown_character_is_a_no_op():
    state = _state()
    apply_event(state, ev.CharacterMoodRemoved(source=P, character="Ghost", mood="sad"))
    assert state.characters == {}


# ── relationships ─────────────────────────────────────────────


def test_directional_attributes_land_on_the_right_side():
    state = _state()
    apply_event(state, ev.RelationshipFeelingAdded(
        source=P, from_character="Zed", toward_character="Ann", value="admiration"))
    apply_event(state, ev.RelationshipWantAdded(
        source=P, from_character="Ann", toward_character="Zed", value="distance"))
    rel = state.relationships["Ann|Zed"]
    assert rel.pair == ("Ann", "Zed")
    assert rel.b_to_a.feelings == ["admiration"]
    assert rel.a_to_b.wants == ["distance"]


def test_status_change_keyed_by_sorted_pair():
    state = _state()
    apply_event(state, ev.RelationshipStatusChanged(source=P, pair=("Zed", "Ann"),
                                                    new_status="friendly"))
    apply_event(state, ev.RelationshipStatusChanged(source=P, pair=("Ann", "Zed"),
                                                    new_status="close"))
    assert list(state.relationships) == ["Ann|Zed"]
    assert state.relationships["Ann|Zed"].status == "close"


def test_relationship_with_self_raises():
    with pytest.raises(ReplayError):
        apply_event(_state(), ev.RelationshipStatusChanged(source=P, pair=("Ann", "Ann"),
                                                           new_status="close"))


# ── scene ─────────────────────────────────────────────────────


def test_tension_direction_computed_when_absent():
    state = _state()
    apply_event(state, ev.TensionChanged(source=P, level="guarded", type="negotiation"))
    assert state.scene.tension.direction == "stable"
    apply_event(state, ev.TensionChanged(source=P, level="volatile", type="confrontation"))
    assert state.scene.tension.direction == "escalating"
    apply_event(state, ev.TensionChanged(source=P, level="aware", type="conversation",
                                         direction="stable"))
    assert state.scene.tension.direction == "stable"


def test_calculate_tension_direction():
    assert calculate_tension_direction("tense", None) == "stable"
    assert calculate_tension_direction("tense", "relaxed") == "escalating"
    assert calculate_tension_direction("relaxed", "tense") == "decreasing"
    assert calculate_tension_direction("tense", "tense") == "stable"


def test_narrative_and_chapter_events_do_not_change_state():
    state = _state()
    apply_event(state, ev.NarrativeDescription(source=P, description="Rain starts."))
    apply_event(state, ev.ChapterEnded(source=P, chapter_index=0, reason="manual"))
    assert state == StateFields()


# ── loop ──────────────────────────────────────────────────────


def test_replay_skips_bad_events_and_continues(caplog):
    state = _state()
    replay_events(state, [
        ev.TimeDelta(source=P, hours=1),
        LegacyEvent(kind="inventory", source=P),
        ev.CharacterAppeared(source=P, character="Mara"),
    ])
    assert "Mara" in state.characters
    assert state.time is None
    assert "Skipping event" in caplog.text


def test_canonical_events_filters_and_orders():
    e3 = ev.CharacterAppeared(source=Position(message_id=3), character="C", seq=3)
    e1 = ev.CharacterAppeared(source=Position(message_id=1), character="A", seq=1)
    other = ev.CharacterAppeared(source=Position(message_id=2, swipe_id=1), character="B", seq=2)
    gone = ev.CharacterAppeared(source=Position(message_id=2), character="D", seq=4,
                                deleted=True)
    kept = canonical_events([e3, other, e1, gone], SwipeMap(), upto=3)
    assert [e.character for e in kept] == ["A", "C"]
    assert canonical_events([e3, e1], SwipeMap(), after=1) == [e3]
