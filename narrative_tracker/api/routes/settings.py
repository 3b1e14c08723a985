"""Tracker settings endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from narrative_tracker.config import configure_logging
from narrative_tracker.storage import Storage

from .deps import get_storage

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(storage: Storage = Depends(get_storage)):
    """Get tracker settings (defaults merged with stored values)."""
    return storage.get_settings()


@router.patch("/settings")
async def update_settings(body: dict, storage: Storage = Depends(get_storage)):
    """Update tracker settings (partial merge)."""
    try:
        settings = storage.update_settings(body)
    except ValidationError as e:
        raise HTTPException(422, str(e)) from e
    configure_logging(settings)
    return settings
