"""FastAPI API endpoints under /api.

Endpoint groups: conversations (listing, deletion, initial snapshot),
events (append, list, soft delete), narrative (projection, chapters,
context plan, first unextracted message) and settings. Everything a
conversation owns is nested under /api/conversations/{slug}/.

Branch choice is not stored server-side: read endpoints take the caller's
canonical swipes (message id → swipe id) in the request body.
"""

from fastapi import APIRouter

from .conversations import router as conversations_router
from .events import router as events_router
from .narrative import router as narrative_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(conversations_router)
router.include_router(events_router)
router.include_router(narrative_router)
