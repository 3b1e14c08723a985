"""Read endpoints: projection, chapters, context plan, extraction progress."""

from fastapi import APIRouter, Depends, HTTPException

from narrative_tracker.errors import NoInitialSnapshotError
from narrative_tracker.extraction import find_first_unextracted_message_id
from narrative_tracker.storage import Storage

from .deps import get_storage, load_conversation
from .models import BranchBody, ContextBody, ProjectionBody, UnextractedBody

router = APIRouter()


@router.post("/conversations/{slug}/projection")
async def project_state(slug: str, body: ProjectionBody, storage: Storage = Depends(get_storage)):
    """Narrative state as of a message on the given branch."""
    store = load_conversation(storage, slug)
    try:
        return store.project_state_at_message(body.target_message_id, body.resolver())
    except NoInitialSnapshotError as e:
        raise HTTPException(409, str(e)) from e


@router.post("/conversations/{slug}/chapters")
async def list_chapters(slug: str, body: BranchBody, storage: Storage = Depends(get_storage)):
    """Chapters of the canonical path, with milestones and narrative events."""
    store = load_conversation(storage, slug)
    return store.compute_all_chapters(body.resolver())


@router.post("/conversations/{slug}/context")
async def build_context(slug: str, body: ContextBody, storage: Storage = Depends(get_storage)):
    """Context plan and injection text for the next generation."""
    store = load_conversation(storage, slug)
    target = body.target_message_id
    if target is None:
        target = max(body.total_messages - 1, 0)
    return await store.build_context(
        body.resolver(),
        storage.get_settings(),
        target_message_id=target,
        message_tokens=dict(enumerate(body.message_tokens)),
        total_messages=body.total_messages,
    )


@router.post("/conversations/{slug}/unextracted")
async def first_unextracted(slug: str, body: UnextractedBody, storage: Storage = Depends(get_storage)):
    """First message with nothing extracted on the given branch."""
    store = load_conversation(storage, slug)
    return {
        "message_id": find_first_unextracted_message_id(
            store, body.resolver(), body.total_messages
        )
    }
