"""Event log endpoints: append, list, soft delete."""

from fastapi import APIRouter, Depends, HTTPException

from narrative_tracker.errors import EventValidationError
from narrative_tracker.models import Position
from narrative_tracker.storage import Storage

from .deps import get_storage, load_conversation
from .models import AppendEvents, DeleteEvents

router = APIRouter()


@router.post("/conversations/{slug}/events", status_code=201)
async def append_events(slug: str, body: AppendEvents, storage: Storage = Depends(get_storage)):
    """Append events in order; chapter checkpoints follow the given branch."""
    store = load_conversation(storage, slug)
    try:
        appended = store.append_events(body.events, body.resolver())
    except EventValidationError as e:
        raise HTTPException(422, str(e)) from e
    storage.save_store(slug, store)
    return appended


@router.get("/conversations/{slug}/events")
async def list_events(slug: str, active_only: bool = False, storage: Storage = Depends(get_storage)):
    """All events in append order, or only the non-deleted ones."""
    store = load_conversation(storage, slug)
    return store.get_active_events() if active_only else store.log.events


@router.post("/conversations/{slug}/events/delete")
async def delete_events(slug: str, body: DeleteEvents, storage: Storage = Depends(get_storage)):
    """Soft-delete every event extracted from one message swipe."""
    store = load_conversation(storage, slug)
    count = store.soft_delete_events_for_message(
        Position(message_id=body.message_id, swipe_id=body.swipe_id)
    )
    if count:
        storage.save_store(slug, store)
    return {"deleted": count}
