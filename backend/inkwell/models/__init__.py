"""Database models."""

from inkwell.models.context import AgentContext, ContextStatus
from inkwell.models.generation import AgentGeneration, GenerationStatus, Usage
from inkwell.models.message import MESSAGE_ROLES, AgentMessage, MessageRole
from inkwell.models.tool_call import AgentToolCall, ToolCallStatus

__all__ = [
    "AgentContext",
    "AgentGeneration",
    "AgentMessage",
    "AgentToolCall",
    "ContextStatus",
    "GenerationStatus",
    "MESSAGE_ROLES",
    "MessageRole",
    "ToolCallStatus",
    "Usage",
]
