"""NarrativeStore: one conversation's event log and snapshots behind one handle.

Callers construct a store per conversation and pass it (and a branch
resolver) explicitly; there is no process-wide "current store".

Chapter checkpoints are kept coherent here:
  - appending or soft-deleting events at message m drops checkpoints at or
    after m, since they were built from the old events;
  - checkpoint_chapters() materializes a snapshot at every canonical chapter
    end that lacks one, and append_events() runs it when given a resolver.

Persisted document (travels with the conversation):

    {
      "version": 2,
      "initial_snapshot": {...} | null,
      "chapter_snapshots": [...],
      "events": [...]
    }
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from narrative_tracker import chapters as chapter_deriver
from narrative_tracker.branches import BranchResolver
from narrative_tracker.budget import (
    ContextPlan,
    GuesstimateTokenCounter,
    TokenCounter,
    compute_optimal_context,
)
from narrative_tracker.config import Settings
from narrative_tracker.events import Event
from narrative_tracker.formatting import build_injection, format_state_with_settings
from narrative_tracker.log import EventLog, StoredEvent
from narrative_tracker.models import (
    Chapter,
    ChapterSnapshot,
    InitialSnapshot,
    NarrativeEvent,
    Position,
    Projection,
    StateFields,
)
from narrative_tracker.projection import project_state_at_message, try_project_state_at_message
from narrative_tracker.replay import canonical_events
from narrative_tracker.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 2


class InjectionContext(BaseModel):
    text: str
    plan: ContextPlan | None = None
    projection: Projection | None = None


class NarrativeStore:
    def __init__(
        self, log: EventLog | None = None, snapshots: SnapshotStore | None = None
    ) -> None:
        self.log = log or EventLog()
        self.snapshots = snapshots or SnapshotStore()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def initial_snapshot(self) -> InitialSnapshot | None:
        return self.snapshots.initial_snapshot

    @property
    def has_initial_snapshot(self) -> bool:
        return self.snapshots.has_initial_snapshot

    def replace_initial_snapshot(self, snapshot: InitialSnapshot) -> None:
        self.snapshots.replace_initial_snapshot(snapshot)

    def add_chapter_snapshot(self, snapshot: ChapterSnapshot) -> None:
        self.snapshots.add_chapter_snapshot(snapshot)

    def checkpoint_chapters(self, resolver: BranchResolver) -> int:
        """Materialize missing chapter snapshots on the canonical path.

        Stored checkpoints that do not match the canonical chapter ends (a
        branch swiped away from) are dropped and rebuilt. Returns the number
        of snapshots created.
        """
        if not self.snapshots.has_initial_snapshot:
            return 0
        active = self.log.get_active_events()
        ends = chapter_deriver.chapter_ends(canonical_events(active, resolver))
        initial_at = self.snapshots.initial_snapshot.source.message_id

        stored = self.snapshots.chapter_snapshots
        created = 0
        for index, end in enumerate(ends, start=1):
            at = end.source.message_id
            if at <= initial_at:
                continue
            if index < len(ends) and ends[index].source.message_id == at:
                continue  # several chapters closed at one message; checkpoint the last
            existing = next((s for s in stored if s.chapter_index == index), None)
            if existing is not None and existing.source == end.source and (
                self.snapshots.get_chapter_snapshot_on_canonical_path(at, resolver)
                is existing
            ):
                continue
            stale = [s for s in stored if s.chapter_index >= index or s.source.message_id >= at]
            if stale:
                self.snapshots.invalidate_from(min(s.source.message_id for s in stale))

            projection = project_state_at_message(self.log, self.snapshots, at, resolver)
            depends_on = {
                e.source.message_id for e in active
                if e.source is not None and e.source.message_id <= at
            }
            snapshot = ChapterSnapshot(
                source=end.source,
                chapter_index=index,
                branch={m: resolver.get_canonical_swipe_id(m) for m in sorted(depends_on)},
                **{name: getattr(projection, name) for name in StateFields.model_fields},
            )
            self.snapshots.add_chapter_snapshot(snapshot)
            stored = self.snapshots.chapter_snapshots
            created += 1
            logger.debug("chapter %d checkpoint materialized at message %d", index, at)
        return created

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def append_events(
        self, events: Iterable[Event], resolver: BranchResolver | None = None
    ) -> list[Event]:
        """Append events; with a resolver, also checkpoint any chapter they end."""
        appended = self.log.append_events(events)
        if appended:
            self.snapshots.invalidate_from(min(e.source.message_id for e in appended))
            if resolver is not None:
                self.checkpoint_chapters(resolver)
        return appended

    def soft_delete_events_for_message(self, position: Position) -> int:
        count = self.log.soft_delete_events_for_message(position)
        if count:
            self.snapshots.invalidate_from(position.message_id)
        return count

    def get_active_events(self) -> list[StoredEvent]:
        return self.log.get_active_events()

    # ------------------------------------------------------------------
    # Projection and narrative
    # ------------------------------------------------------------------

    def project_state_at_message(
        self, target_message_id: int, resolver: BranchResolver
    ) -> Projection:
        return project_state_at_message(self.log, self.snapshots, target_message_id, resolver)

    def try_project_state_at_message(
        self, target_message_id: int, resolver: BranchResolver
    ) -> Projection | None:
        return try_project_state_at_message(
            self.log, self.snapshots, target_message_id, resolver
        )

    def compute_all_chapters(self, resolver: BranchResolver) -> list[Chapter]:
        return chapter_deriver.compute_all_chapters(self.log, self.snapshots, resolver)

    def get_current_chapter_index(
        self, resolver: BranchResolver, target_message_id: int | None = None
    ) -> int:
        return chapter_deriver.get_current_chapter_index(self.log, resolver, target_message_id)

    def compute_narrative_events(
        self, resolver: BranchResolver, chapter_index: int | None = None
    ) -> list[NarrativeEvent]:
        return chapter_deriver.compute_narrative_events(
            self.log, self.snapshots, resolver, chapter_index
        )

    def get_out_of_context_events(
        self, resolver: BranchResolver, chapter_index: int, first_message_in_context: int
    ) -> list[NarrativeEvent]:
        return chapter_deriver.get_out_of_context_events(
            self.log, self.snapshots, resolver, chapter_index, first_message_in_context
        )

    async def compute_optimal_context(
        self,
        resolver: BranchResolver,
        *,
        budget: int,
        state_tokens: int,
        message_tokens: Mapping[int, int],
        total_messages: int,
        max_past_chapters: int,
        max_events: int,
        token_counter: TokenCounter | None = None,
    ) -> ContextPlan:
        return await compute_optimal_context(
            budget=budget,
            state_tokens=state_tokens,
            message_tokens=message_tokens,
            chapters=self.compute_all_chapters(resolver) if total_messages else [],
            current_chapter=self.get_current_chapter_index(resolver),
            max_past_chapters=max_past_chapters,
            max_events=max_events,
            total_messages=total_messages,
            token_counter=token_counter,
        )

    async def build_context(
        self,
        resolver: BranchResolver,
        settings: Settings,
        *,
        target_message_id: int,
        message_tokens: Mapping[int, int],
        total_messages: int,
        token_counter: TokenCounter | None = None,
    ) -> InjectionContext:
        """Projection, context plan and injection text for one generation.

        Before the first extraction there is no projection; the text then
        holds only whatever narrative summary exists.
        """
        counter = token_counter or GuesstimateTokenCounter()
        projection = self.try_project_state_at_message(target_message_id, resolver)

        state_tokens = 0
        if settings.inject_state and projection is not None:
            state_tokens = await counter.count_tokens(
                format_state_with_settings(projection, settings)
            )

        plan = None
        if settings.inject_narrative:
            plan = await self.compute_optimal_context(
                resolver,
                budget=settings.context_budget,
                state_tokens=state_tokens,
                message_tokens=message_tokens,
                total_messages=total_messages,
                max_past_chapters=settings.max_past_chapters,
                max_events=settings.max_recent_events,
                token_counter=counter,
            )
        return InjectionContext(
            text=build_injection(projection, plan, settings),
            plan=plan,
            projection=projection,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        return {
            "version": DOCUMENT_VERSION,
            **self.snapshots.to_dict(),
            "events": self.log.to_list(),
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> NarrativeStore:
        version = data.get("version", DOCUMENT_VERSION)
        if version != DOCUMENT_VERSION:
            logger.warning("Loading store document version %s as %s", version, DOCUMENT_VERSION)
        return cls(
            log=EventLog.from_list(data.get("events", [])),
            snapshots=SnapshotStore.from_dict(data),
        )
