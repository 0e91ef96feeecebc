"""Tool call audit model."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inkwell.core.clock import utcnow
from inkwell.core.errors import InvalidStatusTransitionError
from inkwell.db.base import Base


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentToolCall(Base):
    """One recorded invocation of a tool during an agent run."""

    __tablename__ = "agent_tool_calls"
    __table_args__ = (
        UniqueConstraint("context_id", "position", name="uq_agent_tool_calls_context_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    context_id: Mapped[int] = mapped_column(
        ForeignKey("agent_contexts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    arguments: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ToolCallStatus.PENDING.value, nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    tool_call_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)  # provider's id

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    result: Mapped[Any] = mapped_column(JSON(none_as_null=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    context = relationship("AgentContext", back_populates="tool_calls")

    def _move(self, expected: ToolCallStatus, target: ToolCallStatus) -> None:
        if self.status != expected.value:
            raise InvalidStatusTransitionError("ToolCall", self.status, target.value)
        self.status = target.value

    def mark_running(self) -> None:
        self._move(ToolCallStatus.PENDING, ToolCallStatus.RUNNING)
        self.started_at = utcnow()

    def mark_completed(self, result: Any) -> None:
        self._move(ToolCallStatus.RUNNING, ToolCallStatus.COMPLETED)
        self._finish()
        self.result = {} if result is None else result
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        self._move(ToolCallStatus.RUNNING, ToolCallStatus.FAILED)
        self._finish()
        self.result = None
        self.error_message = error_message or "Tool call failed"

    def _finish(self) -> None:
        self.completed_at = utcnow()
        if self.started_at:
            self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)

    @property
    def succeeded(self) -> bool:
        return self.status == ToolCallStatus.COMPLETED.value

    def __repr__(self) -> str:
        return f"<AgentToolCall(id={self.id}, name={self.name}, status={self.status})>"
