"""Append-only event log with soft delete.

Events are never removed. Re-extracting a message marks its old events as
deleted and appends the new ones, so the full history stays auditable.
Callers only ever get events back, never the internal list, and events are
frozen, so nothing outside the log can change a stored record.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Union

from narrative_tracker.errors import EventValidationError
from narrative_tracker.events import Event, LegacyEvent, is_event, load_event
from narrative_tracker.models import Position

logger = logging.getLogger(__name__)

StoredEvent = Union[Event, LegacyEvent]


class EventLog:
    def __init__(self, events: Iterable[StoredEvent] = ()) -> None:
        self._events: list[StoredEvent] = list(events)
        self._next_seq = max((e.seq for e in self._events), default=0) + 1

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> list[StoredEvent]:
        """Every stored event, deleted ones included, in append order."""
        return list(self._events)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append_events(self, events: Iterable[Event]) -> list[Event]:
        """Append events in the order given. Returns them with ``seq`` set.

        Nothing is appended if any item is not a valid event.
        """
        incoming = list(events)
        self.validate_events(incoming)

        appended = []
        for e in incoming:
            stamped = e.model_copy(update={"seq": self._next_seq})
            self._next_seq += 1
            self._events.append(stamped)
            appended.append(stamped)
        logger.debug("appended %d events", len(appended))
        return appended

    def validate_events(self, events: list[Event]) -> None:
        """Raise EventValidationError unless every item could be appended."""
        known = {e.id for e in self._events}
        for e in events:
            if not is_event(e):
                raise EventValidationError(f"Not an event: {e!r}")
            if e.deleted:
                raise EventValidationError(f"Event {e.id} is already deleted")
            if e.id in known:
                raise EventValidationError(f"Duplicate event id {e.id}")
            known.add(e.id)

    def soft_delete_events_for_message(self, position: Position) -> int:
        """Mark every live event from ``position`` deleted. Idempotent.

        Returns the number of events that were newly marked.
        """
        count = 0
        for i, e in enumerate(self._events):
            if not e.deleted and e.source == position:
                self._events[i] = e.model_copy(update={"deleted": True})
                count += 1
        if count:
            logger.debug(
                "soft-deleted %d events at message %d swipe %d",
                count, position.message_id, position.swipe_id,
            )
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_active_events(self) -> list[StoredEvent]:
        """Non-deleted events in append order, from every branch."""
        return [e for e in self._events if not e.deleted]

    def get_events_at(self, position: Position) -> list[StoredEvent]:
        return [e for e in self._events if e.source == position and not e.deleted]

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_list(self) -> list[dict[str, Any]]:
        return [
            e.to_record() if isinstance(e, LegacyEvent) else e.model_dump(mode="json")
            for e in self._events
        ]

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> EventLog:
        return cls(load_event(d) for d in data)
