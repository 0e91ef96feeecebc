"""Pydantic schemas for request/response validation."""

from inkwell.schemas.assistant import (
    ErrorResponse,
    ResearchRequest,
    StreamRequest,
    StreamResponse,
    WritingRequest,
)
from inkwell.schemas.context import (
    ContextDetailResponse,
    ContextListResponse,
    ContextResponse,
    UsageStatsResponse,
)

__all__ = [
    "ErrorResponse",
    "ResearchRequest",
    "StreamRequest",
    "StreamResponse",
    "WritingRequest",
    "ContextDetailResponse",
    "ContextListResponse",
    "ContextResponse",
    "UsageStatsResponse",
]
