"""Chapters, milestones and narrative events.

Chapters are not stored. They are derived from the canonical event stream:
the k-th "chapter ended" event closes chapter k, and a message belongs to
the chapter given by the number of chapter ends strictly before it (so the
message that ends a chapter still belongs to it).

A milestone is the first time a relationship subject (e.g. "confession")
happens for a pair of characters on the canonical path.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from narrative_tracker import events as ev
from narrative_tracker.branches import BranchResolver
from narrative_tracker.log import EventLog
from narrative_tracker.models import (
    Chapter,
    Milestone,
    NarrativeEvent,
    NarrativeEventSubject,
    StateFields,
    relationship_key,
    sort_pair,
)
from narrative_tracker.replay import canonical_events, copy_state, walk_messages
from narrative_tracker.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

MILESTONE_DISPLAY_NAMES: dict[str, str] = {
    "first_meeting": "First Meeting",
    "first_conversation": "First Conversation",
    "flirt": "First Flirt",
    "date": "First Date",
    "first_date": "First Date",
    "confession": "Confession",
    "i_love_you": 'First "I Love You"',
    "intimate_touch": "First Intimate Touch",
    "intimate_kiss": "First Kiss",
    "intimate_embrace": "First Embrace",
    "intimate_sex": "First Time Together",
    "secret_shared": "Secret Shared",
    "secret_revealed": "Secret Revealed",
    "betrayal": "Betrayal",
    "reconciliation": "Reconciliation",
    "promise": "Promise",
    "sacrifice": "Sacrifice",
    "first_fight": "First Fight",
}


def milestone_display_name(subject: str) -> str:
    name = MILESTONE_DISPLAY_NAMES.get(subject)
    if name is None:
        name = subject.replace("_", " ").title()
    return name


# ---------------------------------------------------------------------------
# Boundaries
# ---------------------------------------------------------------------------


def chapter_ends(events: Iterable[Any]) -> list[ev.ChapterEnded]:
    """Chapter-ended events from an ordered canonical stream."""
    return [e for e in events if isinstance(e, ev.ChapterEnded)]


def chapter_of_message(message_id: int, ends: list[ev.ChapterEnded]) -> int:
    """Number of chapter ends strictly before ``message_id``."""
    end_ids = [e.source.message_id for e in ends]
    return bisect.bisect_left(end_ids, message_id)


def current_chapter_at(target_message_id: int | None, ends: list[ev.ChapterEnded]) -> int:
    """Number of chapter ends at or before the target (all of them for None)."""
    if target_message_id is None:
        return len(ends)
    end_ids = [e.source.message_id for e in ends]
    return bisect.bisect_right(end_ids, target_message_id)


def get_current_chapter_index(
    log: EventLog, resolver: BranchResolver, target_message_id: int | None = None
) -> int:
    events = canonical_events(log.get_active_events(), resolver)
    return current_chapter_at(target_message_id, chapter_ends(events))


def get_chapter_at_message(message_id: int, chapters: list[Chapter]) -> int:
    """Index of the chapter a message belongs to, given computed chapters."""
    for chapter in chapters:
        if chapter.ended_at is None:
            return chapter.index
        if message_id <= chapter.ended_at.message_id:
            return chapter.index
    return chapters[-1].index if chapters else 0


# ---------------------------------------------------------------------------
# Milestones and narrative events
# ---------------------------------------------------------------------------


def first_subject_ids(events: Iterable[Any]) -> set[str]:
    """Ids of subject events that are the first of their kind for their pair."""
    seen: set[tuple[str, str]] = set()
    firsts: set[str] = set()
    for e in events:
        if isinstance(e, ev.RelationshipSubject):
            key = (relationship_key(*e.pair), e.subject)
            if key not in seen:
                seen.add(key)
                firsts.add(e.id)
    return firsts


def narrative_events_for_message(
    batch: list[Any],
    state: StateFields,
    chapter_index: int,
    milestone_ids: set[str],
) -> list[NarrativeEvent]:
    """Narrative events of one message, enriched with the state after it."""
    subjects = [
        NarrativeEventSubject(
            pair=sort_pair(*e.pair),
            subject=e.subject,
            is_milestone=e.id in milestone_ids,
            milestone_description=e.milestone_description,
        )
        for e in batch
        if isinstance(e, ev.RelationshipSubject)
    ]
    location = ""
    if state.location is not None:
        location = " - ".join(p for p in (state.location.area, state.location.place) if p)
    tension = state.scene.tension if state.scene is not None else None
    return [
        NarrativeEvent(
            description=e.description,
            source=e.source,
            chapter_index=chapter_index,
            witnesses=list(state.characters),
            location=location,
            tension_level=tension.level if tension else None,
            tension_type=tension.type if tension else None,
            subjects=subjects,
        )
        for e in batch
        if isinstance(e, ev.NarrativeDescription)
    ]


def _chapter_base(
    snapshots: SnapshotStore,
    resolver: BranchResolver,
    chapter_index: int,
    ends: list[ev.ChapterEnded],
) -> tuple[StateFields | None, int]:
    """Replay start for a chapter: its checkpoint if usable, else the initial snapshot."""
    if 0 < chapter_index <= len(ends):
        boundary = ends[chapter_index - 1].source
        for snap in snapshots.chapter_snapshots:
            if snap.chapter_index == chapter_index and snap.source == boundary:
                if snapshots.get_chapter_snapshot_on_canonical_path(
                    boundary.message_id, resolver
                ) is snap:
                    return snap, boundary.message_id
    initial = snapshots.initial_snapshot
    if initial is None:
        return None, -1
    return initial, initial.source.message_id


def compute_narrative_events(
    log: EventLog,
    snapshots: SnapshotStore,
    resolver: BranchResolver,
    chapter_index: int | None = None,
) -> list[NarrativeEvent]:
    """Narrative events on the canonical path, optionally for one chapter only."""
    events = canonical_events(log.get_active_events(), resolver)
    ends = chapter_ends(events)
    milestone_ids = first_subject_ids(events)

    if chapter_index is None:
        base = snapshots.initial_snapshot
        after = base.source.message_id if base is not None else -1
    else:
        base, after = _chapter_base(snapshots, resolver, chapter_index, ends)

    state = copy_state(base)
    result: list[NarrativeEvent] = []
    for message_id, batch, state in walk_messages(
        state, (e for e in events if e.source.message_id > after)
    ):
        index = chapter_of_message(message_id, ends)
        if chapter_index is not None and index > chapter_index:
            break
        if chapter_index is None or index == chapter_index:
            result.extend(narrative_events_for_message(batch, state, index, milestone_ids))
    return result


def get_out_of_context_events(
    log: EventLog,
    snapshots: SnapshotStore,
    resolver: BranchResolver,
    chapter_index: int,
    first_message_in_context: int,
) -> list[NarrativeEvent]:
    """Events of a chapter whose messages fell out of the raw-message window."""
    return [
        e
        for e in compute_narrative_events(log, snapshots, resolver, chapter_index)
        if e.source.message_id < first_message_in_context
    ]


# ---------------------------------------------------------------------------
# Chapters
# ---------------------------------------------------------------------------


def compute_all_chapters(
    log: EventLog, snapshots: SnapshotStore, resolver: BranchResolver
) -> list[Chapter]:
    """Every chapter on the canonical path, closed ones first, the open one last."""
    events = canonical_events(log.get_active_events(), resolver)
    ends = chapter_ends(events)
    milestone_ids = first_subject_ids(events)

    described: dict[int, ev.ChapterDescribed] = {}
    for e in events:
        if isinstance(e, ev.ChapterDescribed):
            described[e.chapter_index] = e  # latest wins

    chapters: list[Chapter] = []
    for index in range(len(ends) + 1):
        end = ends[index] if index < len(ends) else None
        if end is not None and end.chapter_index != index:
            logger.debug(
                "chapter end at message %d says index %d, counted %d",
                end.source.message_id, end.chapter_index, index,
            )
        desc = described.get(index)
        chapters.append(Chapter(
            index=index,
            title=desc.title if desc and desc.title else f"Chapter {index + 1}",
            summary=desc.summary if desc else "",
            end_reason=end.reason if end else None,
            ended_at=end.source if end else None,
            start_message_id=ends[index - 1].source.message_id + 1 if index else 0,
        ))

    initial = snapshots.initial_snapshot
    after = initial.source.message_id if initial is not None else -1
    times: dict[int, datetime | None] = {}
    for e in events:
        chapters[chapter_of_message(e.source.message_id, ends)].event_count += 1
        if isinstance(e, ev.RelationshipSubject) and e.id in milestone_ids:
            chapters[chapter_of_message(e.source.message_id, ends)].milestones.append(
                Milestone(
                    pair=sort_pair(*e.pair),
                    subject=e.subject,
                    description=e.milestone_description,
                    source=e.source,
                )
            )

    state = copy_state(initial)
    start_time = state.time
    for message_id, batch, state in walk_messages(
        state, (e for e in events if e.source.message_id > after)
    ):
        index = chapter_of_message(message_id, ends)
        chapters[index].narrative_events.extend(
            narrative_events_for_message(batch, state, index, milestone_ids)
        )
        times[message_id] = state.time

    for chapter in chapters:
        chapter.start_time = start_time
        if chapter.ended_at is not None:
            # time at the end of the last replayed message of the chapter
            upto = [t for m, t in times.items() if m <= chapter.ended_at.message_id]
            chapter.end_time = upto[-1] if upto else start_time
            start_time = chapter.end_time
        else:
            chapter.end_time = state.time
    return chapters
