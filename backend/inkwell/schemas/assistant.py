"""Pydantic schemas for assistant action requests and responses."""

from typing import Any

from pydantic import BaseModel, Field

from inkwell.agent.context_manager import OwnerRef


class OwnedRequest(BaseModel):
    """Optional reference to the domain record the action is about."""

    contextable_type: str | None = Field(None, max_length=100)
    contextable_id: str | None = Field(None, max_length=100)
    # Continue the owner's persistent conversation for this agent and action
    session: bool = False

    def owner(self) -> OwnerRef | None:
        if self.contextable_type and self.contextable_id:
            return OwnerRef(type=self.contextable_type, id=self.contextable_id)
        return None


class WritingRequest(OwnedRequest):
    """Inputs shared by the writing assistant actions."""

    content: str | None = None
    selection: str | None = None
    full_content: str | None = None
    context: str | None = None
    topic: str | None = None
    style_guide: str | None = None
    max_words: int | None = Field(None, ge=1)
    target_length: str | None = None
    areas_to_expand: str | None = None
    number_of_ideas: int | None = Field(None, ge=1, le=50)

    def params(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"contextable_type", "contextable_id", "session", "action_type"})


class StreamRequest(WritingRequest):
    """Body of the single streaming endpoint; ``action_type`` picks the action."""

    action_type: str
    depth: str | None = None


class ResearchRequest(OwnedRequest):
    topic: str | None = None
    context: str | None = None
    full_content: str | None = None
    depth: str | None = None

    def params(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"contextable_type", "contextable_id", "session"})


class StreamResponse(BaseModel):
    stream_id: str


class ErrorResponse(BaseModel):
    error: str
