"""Conversation listing, deletion and initial snapshot endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from narrative_tracker.models import InitialSnapshot
from narrative_tracker.store import NarrativeStore
from narrative_tracker.storage import Storage

from .deps import get_storage

router = APIRouter()


@router.get("/conversations")
async def list_conversations(storage: Storage = Depends(get_storage)):
    """List conversation slugs that have a stored narrative."""
    return storage.list_conversations()


@router.delete("/conversations/{slug}")
async def delete_conversation(slug: str, storage: Storage = Depends(get_storage)):
    """Delete a conversation's events and snapshots."""
    try:
        deleted = storage.delete_conversation(slug)
    except ValueError as e:
        raise HTTPException(422, str(e)) from e
    if not deleted:
        raise HTTPException(404, "Conversation not found")
    return {"ok": True}


@router.put("/conversations/{slug}/initial-snapshot")
async def put_initial_snapshot(
    slug: str, body: InitialSnapshot, storage: Storage = Depends(get_storage)
):
    """Set the initial snapshot, creating the conversation if needed.

    Chapter checkpoints built on the previous initial snapshot are dropped.
    """
    try:
        store = storage.load_store(slug) or NarrativeStore()
    except ValueError as e:
        raise HTTPException(422, str(e)) from e
    store.replace_initial_snapshot(body)
    storage.save_store(slug, store)
    return store.initial_snapshot
