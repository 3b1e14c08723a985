"""Tests for the append-only event log."""

import pytest

from narrative_tracker.errors import EventValidationError
from narrative_tracker.events import CharacterMoodAdded, LegacyEvent, NarrativeDescription
from narrative_tracker.log import EventLog
from narrative_tracker.models import Position


def _mood(message_id: int, mood: str, swipe_id: int = 0) -> CharacterMoodAdded:
    return CharacterMoodAdded(
        source=Position(message_id=message_id, swipe_id=swipe_id),
        character="Mara", mood=mood,
    )


class TestAppend:
    def test_assigns_increasing_seq(self) -> None:
        log = EventLog()
        first = log.append_events([_mood(1, "calm"), _mood(1, "curious")])
        second = log.append_events([_mood(2, "wary")])
        seqs = [e.seq for e in first + second]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 3

    def test_keeps_given_order(self) -> None:
        log = EventLog()
        log.append_events([_mood(5, "a"), _mood(2, "b")])
        assert [e.mood for e in log.events] == ["a", "b"]

    def test_non_event_rejected_before_anything_appended(self) -> None:
        log = EventLog()
        with pytest.raises(EventValidationError):
            log.append_events([_mood(1, "calm"), {"kind": "character"}])
        assert len(log) == 0

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        e = _mood(1, "calm")
        log.append_events([e])
        with pytest.raises(EventValidationError):
            log.append_events([e])
        assert len(log) == 1

    def test_deleted_event_rejected(self) -> None:
        log = EventLog()
        with pytest.raises(EventValidationError):
            log.append_events([_mood(1, "calm").model_copy(update={"deleted": True})])

    def test_validation_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            EventLog().append_events(["nope"])

    def test_events_property_is_a_copy(self) -> None:
        log = EventLog()
        log.append_events([_mood(1, "calm")])
        log.events.clear()
        assert len(log) == 1


class TestSoftDelete:
    def test_marks_only_matching_position(self) -> None:
        log = EventLog()
        log.append_events([_mood(1, "calm"), _mood(1, "sad", swipe_id=1), _mood(2, "wary")])
        assert log.soft_delete_events_for_message(Position(message_id=1)) == 1
        assert [e.mood for e in log.get_active_events()] == ["sad", "wary"]
        assert len(log) == 3

    def test_idempotent(self) -> None:
        log = EventLog()
        log.append_events([_mood(1, "calm"), _mood(1, "curious")])
        pos = Position(message_id=1)
        assert log.soft_delete_events_for_message(pos) == 2
        before = log.events
        assert log.soft_delete_events_for_message(pos) == 0
        assert log.events == before

    def test_deleted_records_keep_their_data(self) -> None:
        log = EventLog()
        (stored,) = log.append_events([_mood(1, "calm")])
        log.soft_delete_events_for_message(Position(message_id=1))
        (deleted,) = log.events
        assert deleted.deleted
        assert deleted.id == stored.id
        assert deleted.seq == stored.seq

    def test_get_events_at(self) -> None:
        log = EventLog()
        log.append_events([_mood(1, "calm"), _mood(2, "wary")])
        assert [e.mood for e in log.get_events_at(Position(message_id=2))] == ["wary"]


class TestSerialisation:
    def test_round_trip(self) -> None:
        log = EventLog()
        log.append_events([_mood(1, "calm"), NarrativeDescription(
            source=Position(message_id=2), description="Mara unlocks the gate.",
        )])
        log.soft_delete_events_for_message(Position(message_id=1))
        again = EventLog.from_list(log.to_list())
        assert again.events == log.events

    def test_seq_continues_after_reload(self) -> None:
        log = EventLog()
        log.append_events([_mood(1, "calm"), _mood(1, "curious")])
        again = EventLog.from_list(log.to_list())
        (appended,) = again.append_events([_mood(2, "wary")])
        assert appended.seq > max(e.seq for e in log.events)

    def test_unknown_records_survive_round_trip(self) -> None:
        data = [
            _mood(1, "calm").model_dump(mode="json"),
            {"id": "old", "kind": "inventory", "subkind": "added", "seq": 7,
             "source": {"message_id": 1, "swipe_id": 0}, "item": "lantern"},
        ]
        log = EventLog.from_list(data)
        assert isinstance(log.events[1], LegacyEvent)
        assert log.to_list()[1]["item"] == "lantern"

    def test_unreadable_records_written_back_as_read(self) -> None:
        record = {"id": "e1", "source": {"messageId": 3}, "kind": "mood", "mood": "sad"}
        log = EventLog.from_list([record])
        (legacy,) = log.events
        assert isinstance(legacy, LegacyEvent)
        assert legacy.id == "e1"
        assert legacy.kind == "mood"
        assert log.to_list() == [record]
        assert EventLog.from_list(log.to_list()).to_list() == [record]
        assert log.get_events_at(Position(message_id=3)) == []
