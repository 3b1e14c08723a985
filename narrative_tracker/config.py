"""Tracker settings and environment configuration.

Settings are stored per data directory in settings.json. Reads return the
defaults merged with whatever is stored, so new settings get their default
without a migration. Updates are partial: only the given fields change.

Environment (loaded from .env by the app factory):
  DATA_DIR              storage directory (default: ./data)
  NARRATIVE_DEBUG       "1" forces debug logging regardless of settings
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from narrative_tracker.climate import TemperatureUnit

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


class TrackSettings(BaseModel):
    """Which sections make it into the [Scene State] block."""

    time: bool = True
    location: bool = True
    climate: bool = True
    characters: bool = True
    relationships: bool = True
    scene: bool = True


class Settings(BaseModel):
    track: TrackSettings = Field(default_factory=TrackSettings)
    inject_state: bool = True
    inject_narrative: bool = True
    context_budget: int = Field(default=8000, ge=0)  # tokens for state + history
    max_past_chapters: int = Field(default=5, ge=0)
    max_recent_events: int = Field(default=15, ge=0)
    temperature_unit: TemperatureUnit = "fahrenheit"
    time_format: Literal["12h", "24h"] = "24h"
    debug: bool = False


def merge_settings(stored: dict[str, Any] | None, fields: dict[str, Any] | None = None) -> Settings:
    """Defaults, then stored values, then ``fields``. Nested ``track`` merges key by key."""
    merged = Settings().model_dump()
    for source in (stored or {}, fields or {}):
        for key, value in source.items():
            if key not in merged:
                continue  # dropped setting
            if key == "track" and isinstance(value, dict):
                merged["track"].update(value)
            else:
                merged[key] = value
    return Settings.model_validate(merged)


def data_dir_from_env() -> Path:
    return Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))


def configure_logging(settings: Settings) -> None:
    """Set the package log level from the debug setting."""
    debug = settings.debug or os.getenv("NARRATIVE_DEBUG", "") == "1"
    logging.getLogger("narrative_tracker").setLevel(logging.DEBUG if debug else logging.INFO)
