"""JSON file storage.

Each conversation's narrative store is one JSON document; settings are one
more file. There is no database: reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      settings.json             ← tracker settings (only non-default values matter)
      conversations/
        {slug}.json             ← NarrativeStore document (version, snapshots, events)
"""

from __future__ import annotations

import json
import logging
import re
import unicodedata
from pathlib import Path
from typing import Any

from narrative_tracker.config import Settings, merge_settings
from narrative_tracker.store import NarrativeStore

logger = logging.getLogger(__name__)


def slugify(title: str) -> str:
    """Convert a chat title to a filesystem-safe slug.

    "The Cursed Tavern" → "the-cursed-tavern"
    """
    text = unicodedata.normalize("NFKD", title)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._conv_root = base_path / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _conv_file(self, slug: str) -> Path:
        if slugify(slug) != slug:
            raise ValueError(f"Invalid conversation slug: {slug!r}")
        return self._conv_root / f"{slug}.json"

    def _settings_file(self) -> Path:
        return self._base / "settings.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def list_conversations(self) -> list[str]:
        return sorted(p.stem for p in self._conv_root.glob("*.json"))

    def has_conversation(self, slug: str) -> bool:
        return self._conv_file(slug).exists()

    def load_store(self, slug: str) -> NarrativeStore | None:
        path = self._conv_file(slug)
        if not path.exists():
            return None
        return NarrativeStore.from_document(self._read_json(path))

    def save_store(self, slug: str, store: NarrativeStore) -> None:
        """Write the whole document; creates the conversation if needed."""
        self._write_json(self._conv_file(slug), store.to_document())
        logger.debug("saved conversation %s (%d events)", slug, len(store.log))

    def delete_conversation(self, slug: str) -> bool:
        path = self._conv_file(slug)
        if not path.exists():
            return False
        path.unlink()
        return True

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> Settings:
        """Defaults merged with stored values."""
        path = self._settings_file()
        stored = self._read_json(path) if path.is_file() else None
        return merge_settings(stored)

    def update_settings(self, fields: dict[str, Any]) -> Settings:
        """Merge ``fields`` into the stored settings and persist. Returns the result."""
        path = self._settings_file()
        stored = self._read_json(path) if path.is_file() else None
        settings = merge_settings(stored, fields)
        self._write_json(path, settings.model_dump(mode="json"))
        return settings
