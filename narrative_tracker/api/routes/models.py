"""Pydantic request models for API endpoints."""

from pydantic import BaseModel, Field

from narrative_tracker.branches import SwipeMap
from narrative_tracker.events import Event


class BranchBody(BaseModel):
    canonical_swipes: dict[int, int] = Field(default_factory=dict)

    def resolver(self) -> SwipeMap:
        return SwipeMap(self.canonical_swipes)


class AppendEvents(BranchBody):
    events: list[Event]


class DeleteEvents(BaseModel):
    message_id: int = Field(ge=0)
    swipe_id: int = Field(default=0, ge=0)


class ProjectionBody(BranchBody):
    target_message_id: int = Field(ge=0)


class ContextBody(BranchBody):
    total_messages: int = Field(ge=0)
    target_message_id: int | None = None
    message_tokens: list[int] = Field(default_factory=list)


class UnextractedBody(BranchBody):
    total_messages: int = Field(ge=0)
