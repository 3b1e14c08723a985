"""Projector: point-in-time state at a message.

    1. Base     the latest canonical chapter snapshot at or before the
                target, else the initial snapshot.
    2. Filter   live, canonical events after the base and up to the target.
    3. Order    by message, then creation time, then append order.
    4. Replay   onto a deep copy of the base. Bad events are skipped.
    5. Climate  recomputed from forecast, time and location type.
    6. Derive   narrative events of the open chapter and the chapter index.

Replay cost is bounded by the events since the last usable checkpoint.
Checkpoints never change the result, only how much is replayed.
"""

from __future__ import annotations

import logging

from narrative_tracker.branches import BranchResolver
from narrative_tracker.chapters import (
    chapter_ends,
    current_chapter_at,
    first_subject_ids,
    narrative_events_for_message,
)
from narrative_tracker.climate import climate_for
from narrative_tracker.errors import NoInitialSnapshotError
from narrative_tracker.log import EventLog
from narrative_tracker.models import ChapterSnapshot, InitialSnapshot, NarrativeEvent, Projection
from narrative_tracker.replay import canonical_events, copy_state, walk_messages
from narrative_tracker.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


def select_base(
    snapshots: SnapshotStore, target_message_id: int, resolver: BranchResolver
) -> InitialSnapshot | ChapterSnapshot:
    chapter = snapshots.get_chapter_snapshot_on_canonical_path(target_message_id, resolver)
    if chapter is not None:
        return chapter
    if snapshots.initial_snapshot is None:
        raise NoInitialSnapshotError("No initial snapshot; nothing has been extracted yet")
    return snapshots.initial_snapshot


def project_state_at_message(
    log: EventLog,
    snapshots: SnapshotStore,
    target_message_id: int,
    resolver: BranchResolver,
) -> Projection:
    """Replay the canonical path up to ``target_message_id``.

    Raises NoInitialSnapshotError when there is no initial snapshot.
    """
    base = select_base(snapshots, target_message_id, resolver)
    active = log.get_active_events()

    # Chapter bookkeeping needs every canonical boundary up to the target,
    # not just the ones after the base.
    boundaries = chapter_ends(canonical_events(active, resolver, upto=target_message_id))
    current_chapter = current_chapter_at(target_message_id, boundaries)
    open_since = boundaries[-1].source.message_id if boundaries else -1

    events = canonical_events(
        active, resolver, after=base.source.message_id, upto=target_message_id
    )
    milestone_ids = first_subject_ids(
        canonical_events(
            (e for e in active if e.kind == "relationship"),
            resolver, upto=target_message_id,
        )
    )

    state = copy_state(base)
    narrative: list[NarrativeEvent] = []
    for message_id, batch, state in walk_messages(state, events):
        if message_id > open_since:
            narrative.extend(
                narrative_events_for_message(batch, state, current_chapter, milestone_ids)
            )
    logger.debug(
        "projected message %d from %s snapshot at %d (%d events)",
        target_message_id, base.type, base.source.message_id, len(events),
    )

    return Projection(
        target_message_id=target_message_id,
        time=state.time,
        location=state.location,
        scene=state.scene,
        characters=state.characters,
        relationships=state.relationships,
        forecasts=state.forecasts,
        characters_present=list(state.characters),
        current_chapter=current_chapter,
        climate=climate_for(state.forecasts, state.location, state.time),
        narrative_events=narrative,
    )


def try_project_state_at_message(
    log: EventLog,
    snapshots: SnapshotStore,
    target_message_id: int,
    resolver: BranchResolver,
) -> Projection | None:
    """Read-path variant: None instead of an error before the first extraction."""
    try:
        return project_state_at_message(log, snapshots, target_message_id, resolver)
    except NoInitialSnapshotError:
        return None
