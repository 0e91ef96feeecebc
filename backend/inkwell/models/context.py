"""Agent context model: one persisted agent action invocation."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inkwell.core.clock import utcnow
from inkwell.core.errors import InvalidStatusTransitionError
from inkwell.db.base import Base


class ContextStatus(str, Enum):
    """Lifecycle of a context; only forward moves are allowed."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


_STATUS_RANK = {
    ContextStatus.PENDING: 0,
    ContextStatus.IN_PROGRESS: 1,
    ContextStatus.COMPLETED: 2,
    ContextStatus.FAILED: 2,
}

TERMINAL_STATUSES = frozenset({ContextStatus.COMPLETED, ContextStatus.FAILED})


class AgentContext(Base):
    """A single agent session: instructions, options and outcome."""

    __tablename__ = "agent_contexts"
    __table_args__ = (
        Index("ix_agent_contexts_contextable", "contextable_type", "contextable_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    agent_name: Mapped[str] = mapped_column(String(200), nullable=False)
    action_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Polymorphic back-reference to whatever domain record this session is about
    contextable_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    contextable_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    options: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ContextStatus.PENDING.value, nullable=False
    )
    trace_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Only set by find-or-create sessions; NULLs never collide
    session_key: Mapped[str | None] = mapped_column(String(400), nullable=True, unique=True)

    # Next free positions, bumped atomically
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tool_call_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    messages = relationship(
        "AgentMessage",
        back_populates="context",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AgentMessage.position",
    )
    tool_calls = relationship(
        "AgentToolCall",
        back_populates="context",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AgentToolCall.position",
    )
    generations = relationship(
        "AgentGeneration",
        back_populates="context",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AgentGeneration.id",
    )

    @property
    def is_terminal(self) -> bool:
        return ContextStatus(self.status) in TERMINAL_STATUSES

    def transition_to(self, status: ContextStatus) -> bool:
        """Move forward to ``status``. Returns False when already there."""
        current = ContextStatus(self.status)
        if current == status:
            return False
        if current in TERMINAL_STATUSES or _STATUS_RANK[status] < _STATUS_RANK[current]:
            raise InvalidStatusTransitionError("Context", current.value, status.value)
        self.status = status.value
        return True

    def __repr__(self) -> str:
        return (
            f"<AgentContext(id={self.id}, agent={self.agent_name}, "
            f"action={self.action_name}, status={self.status})>"
        )
