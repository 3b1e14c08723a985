"""Shared route dependencies."""

from fastapi import HTTPException, Request

from narrative_tracker.store import NarrativeStore
from narrative_tracker.storage import Storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def load_conversation(storage: Storage, slug: str) -> NarrativeStore:
    """Load a conversation's store or raise 404."""
    try:
        store = storage.load_store(slug)
    except ValueError as e:
        raise HTTPException(422, str(e)) from e
    if store is None:
        raise HTTPException(404, "Conversation not found")
    return store
