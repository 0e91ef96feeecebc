"""Conversation message model for agent contexts."""

import json
import re
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inkwell.core.clock import utcnow
from inkwell.core.errors import ImmutableRecordError
from inkwell.db.base import Base


class MessageRole(str, Enum):
    """Allowed conversation roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


MESSAGE_ROLES = frozenset(role.value for role in MessageRole)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class AgentMessage(Base):
    """A single turn in a context's conversation."""

    __tablename__ = "agent_messages"
    __table_args__ = (
        UniqueConstraint("context_id", "position", name="uq_agent_messages_context_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    context_id: Mapped[int] = mapped_column(
        ForeignKey("agent_contexts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_parts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    tool_call_id: Mapped[str | None] = mapped_column(String(100), nullable=True)  # links tool results
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    function_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    context = relationship("AgentContext", back_populates="messages")

    @property
    def tool_calls(self) -> list[dict[str, Any]]:
        """Tool calls requested in this (assistant) turn."""
        return [
            {"id": part.get("id"), "name": part.get("name"), "arguments": part.get("arguments") or {}}
            for part in self.content_parts or []
            if part.get("type") == "tool_call"
        ]

    def to_message_hash(self) -> dict[str, Any]:
        """Convert to the provider-neutral prompt format."""
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            message["name"] = self.name
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        tool_calls = self.tool_calls
        if tool_calls:
            message["tool_calls"] = tool_calls
        other_parts = [part for part in self.content_parts or [] if part.get("type") != "tool_call"]
        if other_parts:
            message["content_parts"] = other_parts
        return message

    def parsed_json(self) -> dict[str, Any] | None:
        """Return the first JSON object embedded in the content, if any."""
        if not self.content:
            return None
        match = _JSON_OBJECT.search(self.content)
        if not match:
            return None
        try:
            value = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
        return value if isinstance(value, dict) else None

    def __repr__(self) -> str:
        return f"<AgentMessage(id={self.id}, context={self.context_id}, position={self.position}, role={self.role})>"


_IMMUTABLE_FIELDS = ("role", "content", "content_parts", "position", "tool_call_id", "name", "function_name")


@event.listens_for(AgentMessage, "before_update")
def _reject_message_edits(mapper, connection, target: AgentMessage) -> None:
    state = inspect(target)
    changed = [field for field in _IMMUTABLE_FIELDS if state.attrs[field].history.has_changes()]
    if changed:
        raise ImmutableRecordError(
            f"Message {target.id} is immutable; append a new message instead (changed: {', '.join(changed)})"
        )
