"""Tests for extraction runs: all-or-nothing commits and progress tracking."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from narrative_tracker import events as ev
from narrative_tracker.branches import SwipeMap
from narrative_tracker.errors import EventValidationError
from narrative_tracker.extraction import (
    extract_message,
    extract_range,
    find_first_unextracted_message_id,
)
from narrative_tracker.models import ChapterSnapshot, InitialSnapshot, Position
from narrative_tracker.store import NarrativeStore

CANON = SwipeMap()


def _at(message_id: int, swipe_id: int = 0) -> Position:
    return Position(message_id=message_id, swipe_id=swipe_id)


def _store() -> NarrativeStore:
    store = NarrativeStore()
    store.replace_initial_snapshot(InitialSnapshot(source=_at(1)))
    return store


def _mood_extractor(mood: str):
    async def extract(prior, position, pending):
        return [ev.CharacterMoodAdded(source=position, character="Kit", mood=mood)]
    return extract


async def _failing(prior, position, pending):
    raise RuntimeError("model returned garbage")


class TestExtractMessage:
    async def test_commits_all_extractor_output(self) -> None:
        store = _store()
        appended = await extract_message(
            store=store, position=_at(2),
            extractors=[_mood_extractor("curious"), _mood_extractor("hungry")],
            resolver=CANON,
        )
        assert [e.mood for e in appended] == ["curious", "hungry"]
        assert store.project_state_at_message(2, CANON).characters["Kit"].mood == ["curious", "hungry"]

    async def test_extractors_see_prior_state_and_pending(self) -> None:
        store = _store()
        await extract_message(store=store, position=_at(2),
                              extractors=[_mood_extractor("curious")], resolver=CANON)
        second = AsyncMock(return_value=[])
        await extract_message(store=store, position=_at(3),
                              extractors=[_mood_extractor("sleepy"), second], resolver=CANON)
        prior, position, pending = second.await_args.args
        assert prior.characters["Kit"].mood == ["curious"]
        assert position == _at(3)
        assert [e.mood for e in pending] == ["sleepy"]

    async def test_failure_leaves_log_untouched(self) -> None:
        store = _store()
        await extract_message(store=store, position=_at(2),
                              extractors=[_mood_extractor("calm")], resolver=CANON)
        before = store.log.events
        with pytest.raises(RuntimeError):
            await extract_message(
                store=store, position=_at(2),
                extractors=[_mood_extractor("angry"), _failing], resolver=CANON,
            )
        assert store.log.events == before

    async def test_cancellation_leaves_log_untouched(self) -> None:
        store = _store()
        await extract_message(store=store, position=_at(2),
                              extractors=[_mood_extractor("calm")], resolver=CANON)
        before = store.log.events
        started = asyncio.Event()

        async def slow(prior, position, pending):
            started.set()
            await asyncio.sleep(10)
            return []

        task = asyncio.create_task(extract_message(
            store=store, position=_at(2),
            extractors=[_mood_extractor("angry"), slow], resolver=CANON,
        ))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.log.events == before

    async def test_event_for_wrong_position_rejected(self) -> None:
        store = _store()

        async def misplaced(prior, position, pending):
            return [ev.CharacterMoodAdded(source=_at(9), character="Kit", mood="lost")]

        with pytest.raises(EventValidationError):
            await extract_message(store=store, position=_at(2),
                                  extractors=[misplaced], resolver=CANON)
        assert len(store.log) == 0

    async def test_reextraction_replaces_previous_events(self) -> None:
        store = _store()
        await extract_message(store=store, position=_at(2),
                              extractors=[_mood_extractor("calm")], resolver=CANON)
        await extract_message(store=store, position=_at(2),
                              extractors=[_mood_extractor("angry")], resolver=CANON)
        assert len(store.log) == 2
        assert [e.mood for e in store.get_active_events()] == ["angry"]

    async def test_without_reextract_events_accumulate(self) -> None:
        store = _store()
        for mood in ("calm", "angry"):
            await extract_message(store=store, position=_at(2), reextract=False,
                                  extractors=[_mood_extractor(mood)], resolver=CANON)
        assert [e.mood for e in store.get_active_events()] == ["calm", "angry"]

    async def test_chapter_end_checkpointed(self) -> None:
        store = _store()

        async def end_chapter(prior, position, pending):
            return [ev.ChapterEnded(source=position, chapter_index=0, reason="manual")]

        await extract_message(store=store, position=_at(4),
                              extractors=[end_chapter], resolver=CANON)
        assert [s.chapter_index for s in store.snapshots.chapter_snapshots] == [1]


class TestExtractRange:
    async def test_commits_each_message(self) -> None:
        store = _store()
        saved = []
        committed = await extract_range(
            store=store, positions=[_at(2), _at(3), _at(4)],
            extractors=[_mood_extractor("calm")], resolver=CANON,
            on_committed=lambda position, events: saved.append(position.message_id),
        )
        assert committed == [_at(2), _at(3), _at(4)]
        assert saved == [2, 3, 4]

    async def test_abort_keeps_committed_messages(self) -> None:
        store = _store()

        async def fails_on_four(prior, position, pending):
            if position.message_id == 4:
                raise RuntimeError("timeout")
            return [ev.CharacterMoodAdded(source=position, character="Kit",
                                          mood=f"mood-{position.message_id}")]

        with pytest.raises(RuntimeError):
            await extract_range(store=store, positions=[_at(2), _at(3), _at(4), _at(5)],
                                extractors=[fails_on_four], resolver=CANON)
        assert [e.mood for e in store.get_active_events()] == ["mood-2", "mood-3"]


class TestFirstUnextracted:
    def test_empty_store_starts_at_one(self) -> None:
        assert find_first_unextracted_message_id(NarrativeStore(), CANON, 5) == 1

    def test_skips_covered_messages(self) -> None:
        store = _store()
        store.append_events([ev.CharacterMoodAdded(source=_at(2), character="Kit", mood="calm")])
        assert find_first_unextracted_message_id(store, CANON, 6) == 3

    def test_non_canonical_events_do_not_count(self) -> None:
        store = _store()
        store.append_events([ev.CharacterMoodAdded(source=_at(2, 1), character="Kit", mood="calm")])
        assert find_first_unextracted_message_id(store, CANON, 6) == 2
        assert find_first_unextracted_message_id(store, SwipeMap({2: 1}), 6) == 3

    def test_deleted_events_do_not_count(self) -> None:
        store = _store()
        store.append_events([ev.CharacterMoodAdded(source=_at(2), character="Kit", mood="calm")])
        store.soft_delete_events_for_message(_at(2))
        assert find_first_unextracted_message_id(store, CANON, 6) == 2

    def test_chapter_snapshot_counts(self) -> None:
        store = _store()
        store.add_chapter_snapshot(ChapterSnapshot(source=_at(2), chapter_index=1))
        assert find_first_unextracted_message_id(store, CANON, 6) == 3

    def test_everything_extracted(self) -> None:
        store = _store()
        store.append_events([ev.CharacterMoodAdded(source=_at(m), character="Kit", mood="calm")
                             for m in (2, 3)])
        assert find_first_unextracted_message_id(store, CANON, 4) == 4
