"""FastMCP server exposing narrative state as MCP tools.

Tools:
  - scene_state(slug, message_id, canonical_swipes)      : [Scene State] block
  - story_so_far(slug, total_messages, ...)              : full injection text

Both are read-only and degrade to "" for unknown conversations or before
the first extraction. The storage is set via set_storage() (tests) or from
DATA_DIR when run as __main__.

Usage:
    uv run python -m narrative_tracker.mcp_server
"""

from mcp.server.fastmcp import FastMCP

from narrative_tracker.branches import SwipeMap
from narrative_tracker.formatting import format_state_with_settings
from narrative_tracker.storage import Storage

mcp = FastMCP("narrative-tracker")

_storage: Storage | None = None


def set_storage(storage: Storage) -> None:
    """Replace the active storage (used in tests)."""
    global _storage
    _storage = storage


def get_storage() -> Storage:
    assert _storage is not None, "Call set_storage() before using the MCP tools"
    return _storage


def _resolver(canonical_swipes: dict[str, int] | None) -> SwipeMap:
    # JSON object keys arrive as strings
    return SwipeMap({int(k): v for k, v in (canonical_swipes or {}).items()})


@mcp.tool()
def scene_state(slug: str, message_id: int, canonical_swipes: dict[str, int] | None = None) -> str:
    """Scene state (time, place, characters, relationships) as of a message."""
    storage = get_storage()
    if not storage.has_conversation(slug):
        return ""
    store = storage.load_store(slug)
    projection = store.try_project_state_at_message(message_id, _resolver(canonical_swipes))
    if projection is None:
        return ""
    return format_state_with_settings(projection, storage.get_settings())


@mcp.tool()
async def story_so_far(
    slug: str,
    total_messages: int,
    message_tokens: list[int] | None = None,
    canonical_swipes: dict[str, int] | None = None,
) -> str:
    """Chapter summaries, out-of-context events and scene state for the next reply.

    ``message_tokens`` gives the token count of each message; missing
    entries count as zero.
    """
    storage = get_storage()
    if not storage.has_conversation(slug):
        return ""
    store = storage.load_store(slug)
    context = await store.build_context(
        _resolver(canonical_swipes),
        storage.get_settings(),
        target_message_id=max(total_messages - 1, 0),
        message_tokens=dict(enumerate(message_tokens or [])),
        total_messages=total_messages,
    )
    return context.text


if __name__ == "__main__":
    from narrative_tracker.config import data_dir_from_env

    set_storage(Storage(data_dir_from_env()))
    mcp.run()
