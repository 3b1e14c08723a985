"""Context budget allocator.

Decides how many trailing raw messages fit a token budget, and which chapter
summaries and out-of-context events stand in for the messages that do not.

The search is a monotone scan: start with every message in context and push
out the oldest one until the total fits, so the first fit is the most
inclusive one. Messages are never dropped from the middle, and the scan is
capped at total_messages + ITERATION_SLACK steps.

Token counting is async (a host tokenizer may sit behind it). It is the only
await in here and nothing is mutated.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from pydantic import BaseModel, Field

from narrative_tracker.chapters import get_chapter_at_message
from narrative_tracker.formatting import (
    RECENT_EVENTS_TAGS,
    STORY_SO_FAR_TAGS,
    format_event_for_injection,
    format_past_chapter,
    tag_overhead_text,
)
from narrative_tracker.models import Chapter, NarrativeEvent

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3.35
ITERATION_SLACK = 10


# ---------------------------------------------------------------------------
# Token counting
# ---------------------------------------------------------------------------


class TokenCounter(Protocol):
    async def count_tokens(self, text: str) -> int: ...


def guesstimate(text: str) -> int:
    """Rough token count from character length."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class GuesstimateTokenCounter:
    """Character-ratio estimate; the default when no tokenizer is available."""

    async def count_tokens(self, text: str) -> int:
        return guesstimate(text)


class FixedRatioTokenCounter:
    def __init__(self, ratio: float = 4.0) -> None:
        self._ratio = ratio

    async def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self._ratio)


async def estimate_message_tokens(
    messages: Sequence[Mapping[str, Any]], counter: TokenCounter
) -> dict[int, int]:
    """Token count per message index.

    A message may carry a precomputed ``token_count``; otherwise its ``text``
    is counted.
    """
    counts: dict[int, int] = {}
    for i, msg in enumerate(messages):
        if msg.get("token_count") is not None:
            counts[i] = msg["token_count"]
        else:
            counts[i] = await counter.count_tokens(msg.get("text", ""))
    return counts


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class TokenBreakdown(BaseModel):
    past_chapters_tokens: int = 0
    current_chapter_events_tokens: int = 0
    state_tokens: int = 0


class ContextPlan(BaseModel):
    first_message_in_context: int
    past_chapters: list[Chapter] = Field(default_factory=list)
    current_chapter_events: list[NarrativeEvent] = Field(default_factory=list)
    effective_current_chapter: int = 0
    total_tokens: int
    breakdown: TokenBreakdown


def _state_only(first_message: int, chapter: int, state_tokens: int) -> ContextPlan:
    return ContextPlan(
        first_message_in_context=first_message,
        effective_current_chapter=chapter,
        total_tokens=state_tokens,
        breakdown=TokenBreakdown(state_tokens=state_tokens),
    )


async def compute_optimal_context(
    *,
    budget: int,
    state_tokens: int,
    message_tokens: Mapping[int, int],
    chapters: list[Chapter],
    current_chapter: int,
    max_past_chapters: int,
    max_events: int,
    total_messages: int,
    token_counter: TokenCounter | None = None,
) -> ContextPlan:
    """Largest trailing window of messages that fits ``budget``.

    ``chapters`` are the computed chapters of the canonical path, each with
    its narrative events. Returns first_message_in_context == total_messages
    with no summaries when even the state alone does not leave room.
    """
    counter = token_counter or GuesstimateTokenCounter()

    if total_messages == 0:
        return _state_only(0, 0, state_tokens)

    chapter_costs: dict[int, int] = {}
    for chapter in chapters:
        if chapter.end_reason is not None:
            chapter_costs[chapter.index] = await counter.count_tokens(format_past_chapter(chapter))
    event_costs: dict[tuple[int, int], int] = {}
    story_overhead = await counter.count_tokens(tag_overhead_text(STORY_SO_FAR_TAGS))
    events_overhead = await counter.count_tokens(tag_overhead_text(RECENT_EVENTS_TAGS))
    by_index = {c.index: c for c in chapters}

    # suffix[i] = tokens of messages i..end
    suffix = [0] * (total_messages + 1)
    for i in range(total_messages - 1, -1, -1):
        suffix[i] = suffix[i + 1] + message_tokens.get(i, 0)

    first = 0
    max_iterations = total_messages + ITERATION_SLACK
    for _ in range(max_iterations):
        effective = get_chapter_at_message(first, chapters)
        past = [
            c for c in chapters
            if c.end_reason is not None and c.index < effective
        ]
        past = past[-max_past_chapters:] if max_past_chapters > 0 else []
        current = by_index.get(effective)
        chapter_events = current.narrative_events if current else []
        dropped = [
            j for j, e in enumerate(chapter_events) if e.source.message_id < first
        ]
        dropped = dropped[-max_events:] if max_events > 0 else []
        out_of_context = [chapter_events[j] for j in dropped]

        past_tokens = sum(chapter_costs.get(c.index, 0) for c in past)
        if past:
            past_tokens += story_overhead
        event_tokens = 0
        for j in dropped:
            if (effective, j) not in event_costs:
                event_costs[effective, j] = await counter.count_tokens(
                    format_event_for_injection(chapter_events[j])
                )
            event_tokens += event_costs[effective, j]
        if out_of_context:
            event_tokens += events_overhead

        total = state_tokens + past_tokens + event_tokens + suffix[first]
        if total <= budget:
            logger.debug(
                "context plan: first message %d of %d, %d tokens", first, total_messages, total
            )
            return ContextPlan(
                first_message_in_context=first,
                past_chapters=past,
                current_chapter_events=out_of_context,
                effective_current_chapter=effective,
                total_tokens=total,
                breakdown=TokenBreakdown(
                    past_chapters_tokens=past_tokens,
                    current_chapter_events_tokens=event_tokens,
                    state_tokens=state_tokens,
                ),
            )

        first += 1
        if first >= total_messages:
            logger.debug("context plan: no room for any message (budget %d)", budget)
            return _state_only(total_messages, current_chapter, state_tokens)

    logger.warning("context plan did not converge after %d iterations", max_iterations)
    return _state_only(first, current_chapter, state_tokens)
