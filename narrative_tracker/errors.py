"""Exceptions raised by the tracker core."""


class NarrativeError(Exception):
    """Base class for tracker errors."""


class NoInitialSnapshotError(NarrativeError):
    """Raised when projecting state before anything was extracted."""


class EventValidationError(NarrativeError, ValueError):
    """Raised when something that is not a valid event is appended."""


class SnapshotOrderError(NarrativeError, ValueError):
    """Raised when a chapter snapshot would break index/position ordering."""
