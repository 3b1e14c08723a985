"""Extraction runs: turning chat messages into committed events.

An extractor reads the state before a message and returns the events that
message implies. Extractors are supplied by the host (usually LLM-backed);
this module only owns the commit boundary:

  1. Project the prior state (message_id - 1) once.
  2. Await every extractor in order. Each sees the events collected so far.
  3. Validate the batch.
  4. Soft-delete the message's old events (re-extraction) and append.

Steps 1-3 never touch the store, so an extractor error or a cancellation
leaves the log exactly as it was. Step 4 has no awaits.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

from narrative_tracker.branches import BranchResolver, is_canonical
from narrative_tracker.errors import EventValidationError
from narrative_tracker.events import Event
from narrative_tracker.models import Position, Projection
from narrative_tracker.store import NarrativeStore

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    async def __call__(
        self, prior: Projection | None, position: Position, pending: list[Event]
    ) -> list[Event]: ...


async def extract_message(
    *,
    store: NarrativeStore,
    position: Position,
    extractors: Sequence[Extractor],
    resolver: BranchResolver,
    reextract: bool = True,
) -> list[Event]:
    """Run one extraction unit for ``position`` and commit it all at once.

    Returns the appended events (with ``seq`` set). Raises whatever an
    extractor raises, or EventValidationError for a bad batch; in both cases
    the store is unchanged.
    """
    prior = None
    if position.message_id > 0:
        prior = store.try_project_state_at_message(position.message_id - 1, resolver)

    pending: list[Event] = []
    for extractor in extractors:
        produced = await extractor(prior, position, list(pending))
        pending.extend(produced)

    for e in pending:
        if getattr(e, "source", None) != position:
            raise EventValidationError(
                f"Extractor produced an event for {getattr(e, 'source', None)!r}, "
                f"expected {position!r}"
            )
    store.log.validate_events(pending)

    if reextract:
        deleted = store.soft_delete_events_for_message(position)
        if deleted:
            logger.debug("re-extracting message %d: %d events replaced", position.message_id, deleted)
    return store.append_events(pending, resolver)


async def extract_range(
    *,
    store: NarrativeStore,
    positions: Iterable[Position],
    extractors: Sequence[Extractor],
    resolver: BranchResolver,
    reextract: bool = True,
    on_committed: Callable[[Position, list[Event]], None] | None = None,
) -> list[Position]:
    """Extract several messages in order, committing each before the next.

    If one fails, earlier messages stay committed and the error propagates.
    ``on_committed`` runs after every commit, e.g. to persist the store.
    """
    committed: list[Position] = []
    for position in positions:
        events = await extract_message(
            store=store,
            position=position,
            extractors=extractors,
            resolver=resolver,
            reextract=reextract,
        )
        committed.append(position)
        if on_committed is not None:
            on_committed(position, events)
    logger.info("extracted %d messages", len(committed))
    return committed


def find_first_unextracted_message_id(
    store: NarrativeStore, resolver: BranchResolver, total_messages: int
) -> int:
    """First message (from 1; 0 is the system message) with nothing extracted.

    A message counts as extracted when a canonical snapshot sits on it or it
    has a canonical active event. Returns ``total_messages`` when every
    message is covered.
    """
    covered: set[int] = set()
    initial = store.initial_snapshot
    if initial is not None and is_canonical(initial.source, resolver):
        covered.add(initial.source.message_id)
    for snapshot in store.snapshots.chapter_snapshots:
        if is_canonical(snapshot.source, resolver):
            covered.add(snapshot.source.message_id)
    for e in store.get_active_events():
        if e.source is not None and is_canonical(e.source, resolver):
            covered.add(e.source.message_id)

    for message_id in range(1, total_messages):
        if message_id not in covered:
            return message_id
    return total_messages
