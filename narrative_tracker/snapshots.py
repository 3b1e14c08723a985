"""Snapshot store: one initial snapshot plus chapter checkpoints.

Chapter snapshots exist so that projecting near the end of a long
conversation only replays the events since the last chapter boundary.
They must stay ordered by strictly increasing chapter index and message,
and each one records the swipes it was built from so that a checkpoint
from a branch the user has since swiped away from is never used.
"""

from __future__ import annotations

import logging
from typing import Any

from narrative_tracker.branches import BranchResolver, is_canonical
from narrative_tracker.errors import SnapshotOrderError
from narrative_tracker.models import ChapterSnapshot, InitialSnapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    def __init__(
        self,
        initial: InitialSnapshot | None = None,
        chapters: list[ChapterSnapshot] | None = None,
    ) -> None:
        self._initial = initial
        self._chapters: list[ChapterSnapshot] = []
        for snap in chapters or []:
            self.add_chapter_snapshot(snap)

    @property
    def initial_snapshot(self) -> InitialSnapshot | None:
        return self._initial

    @property
    def has_initial_snapshot(self) -> bool:
        return self._initial is not None

    @property
    def chapter_snapshots(self) -> list[ChapterSnapshot]:
        return list(self._chapters)

    def replace_initial_snapshot(self, snapshot: InitialSnapshot) -> None:
        """Set or overwrite the initial snapshot.

        Chapter checkpoints were materialized from the old base, so they go.
        """
        self._initial = snapshot
        if self._chapters:
            logger.debug("initial snapshot replaced, dropping %d chapter snapshots", len(self._chapters))
            self._chapters = []

    def add_chapter_snapshot(self, snapshot: ChapterSnapshot) -> None:
        if self._chapters:
            last = self._chapters[-1]
            if snapshot.chapter_index <= last.chapter_index:
                raise SnapshotOrderError(
                    f"Chapter snapshot index {snapshot.chapter_index} "
                    f"does not follow {last.chapter_index}"
                )
            if snapshot.source.message_id <= last.source.message_id:
                raise SnapshotOrderError(
                    f"Chapter snapshot at message {snapshot.source.message_id} "
                    f"does not follow message {last.source.message_id}"
                )
        self._chapters.append(snapshot)

    def get_chapter_snapshot_on_canonical_path(
        self, before_message_id: int, resolver: BranchResolver
    ) -> ChapterSnapshot | None:
        """Highest-index canonical chapter snapshot at or before a message.

        A snapshot only counts when its own position and every swipe it was
        built from are still the selected ones.
        """
        for snap in reversed(self._chapters):
            if snap.source.message_id > before_message_id:
                continue
            if is_canonical(snap.source, resolver) and all(
                resolver.get_canonical_swipe_id(m) == s for m, s in snap.branch.items()
            ):
                return snap
        return None

    def invalidate_from(self, message_id: int) -> int:
        """Drop chapter snapshots at or after ``message_id``. Returns how many."""
        kept = [s for s in self._chapters if s.source.message_id < message_id]
        dropped = len(self._chapters) - len(kept)
        if dropped:
            logger.debug("invalidated %d chapter snapshots from message %d", dropped, message_id)
        self._chapters = kept
        return dropped

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "initial_snapshot": (
                self._initial.model_dump(mode="json") if self._initial else None
            ),
            "chapter_snapshots": [s.model_dump(mode="json") for s in self._chapters],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotStore:
        initial = data.get("initial_snapshot")
        return cls(
            initial=InitialSnapshot.model_validate(initial) if initial else None,
            chapters=[
                ChapterSnapshot.model_validate(s)
                for s in data.get("chapter_snapshots", [])
            ],
        )
