"""Canonical branch filtering.

The host chat decides which swipe of each message is currently selected.
The tracker only consumes that decision through a BranchResolver and asks
again on every projection, because the user can swipe at any time.
"""

from __future__ import annotations

from typing import Protocol

from narrative_tracker.models import Position


class BranchResolver(Protocol):
    def get_canonical_swipe_id(self, message_id: int) -> int: ...


class SwipeMap:
    """BranchResolver backed by a plain {message_id: swipe_id} mapping.

    Messages missing from the mapping resolve to ``default``.
    """

    def __init__(self, canonical: dict[int, int] | None = None, default: int = 0) -> None:
        self._canonical = dict(canonical or {})
        self._default = default

    def get_canonical_swipe_id(self, message_id: int) -> int:
        return self._canonical.get(message_id, self._default)

    def __repr__(self) -> str:
        return f"SwipeMap({self._canonical!r}, default={self._default})"


def is_canonical(position: Position, resolver: BranchResolver) -> bool:
    """True when ``position`` is the selected swipe of its own message."""
    return position.swipe_id == resolver.get_canonical_swipe_id(position.message_id)
