"""Pydantic schemas for the context audit trail."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class MessageResponse(BaseModel):
    id: int
    role: str
    content: str | None = None
    content_parts: list[dict[str, Any]] = []
    position: int
    tool_call_id: str | None = None
    name: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class ToolCallResponse(BaseModel):
    id: int
    name: str
    arguments: dict[str, Any] = {}
    status: str
    position: int
    tool_call_id: str | None = None
    result: Any = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None

    class Config:
        from_attributes = True


class GenerationResponse(BaseModel):
    id: int
    response_message_id: int | None = None
    provider_id: str | None = None
    model: str | None = None
    finish_reason: str | None = None
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cached_tokens: int | None = None
    reasoning_tokens: int | None = None
    duration_ms: int | None = None
    status: str
    error_message: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class ContextResponse(BaseModel):
    id: int
    agent_name: str
    action_name: str
    contextable_type: str | None = None
    contextable_id: str | None = None
    status: str
    trace_id: str | None = None
    error_message: str | None = None
    options: dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ContextDetailResponse(ContextResponse):
    """A context together with everything recorded in it."""

    instructions: str | None = None
    messages: list[MessageResponse] = []
    tool_calls: list[ToolCallResponse] = []
    generations: list[GenerationResponse] = []


class ContextListResponse(BaseModel):
    count: int
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_previous: bool
    contexts: list[ContextResponse]


class UsageStatsResponse(BaseModel):
    total_contexts: int
    completed_contexts: int
    failed_contexts: int
    total_generations: int
    total_input_tokens: int
    total_output_tokens: int
    total_tokens: int
