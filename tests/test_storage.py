"""Tests for JSON file storage of conversations and settings."""

import json

import pytest

from narrative_tracker import events as ev
from narrative_tracker.branches import SwipeMap
from narrative_tracker.models import InitialSnapshot, Position
from narrative_tracker.storage import slugify
from narrative_tracker.store import NarrativeStore


def _store() -> NarrativeStore:
    store = NarrativeStore()
    store.replace_initial_snapshot(InitialSnapshot(source=Position(message_id=0)))
    store.append_events([
        ev.CharacterAppeared(source=Position(message_id=1), character="Wren"),
        ev.ChapterEnded(source=Position(message_id=2), chapter_index=0, reason="manual"),
    ], SwipeMap())
    return store


def test_slugify():
    assert slugify("The Cursed Tavern") == "the-cursed-tavern"
    assert slugify("Wren's Café!") == "wrens-cafe"
    assert slugify("???") == "untitled"


class TestConversations:
    def test_missing_conversation(self, storage) -> None:
        assert storage.load_store("nope") is None
        assert not storage.has_conversation("nope")
        assert storage.list_conversations() == []

    def test_save_and_load(self, storage) -> None:
        store = _store()
        storage.save_store("wren-and-the-storm", store)
        loaded = storage.load_store("wren-and-the-storm")
        assert loaded.log.events == store.log.events
        assert loaded.snapshots.chapter_snapshots == store.snapshots.chapter_snapshots
        assert loaded.project_state_at_message(3, SwipeMap()) == \
            store.project_state_at_message(3, SwipeMap())

    def test_document_on_disk(self, storage) -> None:
        storage.save_store("wren", _store())
        doc = json.loads((storage._conv_root / "wren.json").read_text())
        assert doc["version"] == 2
        assert doc["initial_snapshot"]["type"] == "initial"
        assert len(doc["chapter_snapshots"]) == 1
        assert [e["kind"] for e in doc["events"]] == ["character", "chapter"]

    def test_list_and_delete(self, storage) -> None:
        storage.save_store("b-story", NarrativeStore())
        storage.save_store("a-story", NarrativeStore())
        assert storage.list_conversations() == ["a-story", "b-story"]
        assert storage.delete_conversation("a-story")
        assert not storage.delete_conversation("a-story")
        assert storage.list_conversations() == ["b-story"]

    def test_unsafe_slug_rejected(self, storage) -> None:
        with pytest.raises(ValueError):
            storage.load_store("../settings")


class TestSettings:
    def test_defaults(self, storage) -> None:
        settings = storage.get_settings()
        assert settings.context_budget == 8000
        assert settings.track.climate is True
        assert settings.temperature_unit == "fahrenheit"

    def test_partial_update_persists(self, storage) -> None:
        storage.update_settings({"track": {"climate": False}})
        storage.update_settings({"temperature_unit": "celsius"})
        settings = storage.get_settings()
        assert settings.track.climate is False
        assert settings.track.time is True
        assert settings.temperature_unit == "celsius"

    def test_unknown_keys_dropped(self, storage) -> None:
        settings = storage.update_settings({"theme": "dark", "max_past_chapters": 2})
        assert settings.max_past_chapters == 2
        assert "theme" not in json.loads((storage._base / "settings.json").read_text())

    def test_invalid_value_rejected(self, storage) -> None:
        with pytest.raises(ValueError):
            storage.update_settings({"time_format": "36h"})
        assert storage.get_settings().time_format == "24h"
