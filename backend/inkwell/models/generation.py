"""Generation model: one completed (or failed) model response."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inkwell.core.clock import utcnow
from inkwell.core.errors import ImmutableRecordError
from inkwell.db.base import Base


class GenerationStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Usage:
    """Token usage reported by the provider. Usage values can be summed."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int | None = None
    cached_tokens: int | None = None
    reasoning_tokens: int | None = None

    def __post_init__(self):
        if self.total_tokens is None:
            object.__setattr__(self, "total_tokens", self.input_tokens + self.output_tokens)

    def __add__(self, other: "Usage") -> "Usage":
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=(self.total_tokens or 0) + (other.total_tokens or 0),
            cached_tokens=_sum_optional(self.cached_tokens, other.cached_tokens),
            reasoning_tokens=_sum_optional(self.reasoning_tokens, other.reasoning_tokens),
        )

    def as_dict(self) -> dict[str, int | None]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cached_tokens": self.cached_tokens,
            "reasoning_tokens": self.reasoning_tokens,
        }


def _sum_optional(a: int | None, b: int | None) -> int | None:
    if a is None and b is None:
        return None
    return (a or 0) + (b or 0)


class AgentGeneration(Base):
    """Provider response metadata, token usage and debug snapshots."""

    __tablename__ = "agent_generations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    context_id: Mapped[int] = mapped_column(
        ForeignKey("agent_contexts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    response_message_id: Mapped[int | None] = mapped_column(
        ForeignKey("agent_messages.id", ondelete="SET NULL"), nullable=True, index=True
    )

    provider_id: Mapped[str | None] = mapped_column(String(200), nullable=True)  # e.g. "msg_01..."
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    finish_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Token usage
    input_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cached_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reasoning_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)

    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=GenerationStatus.COMPLETED.value, nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Snapshots for debugging / replay
    raw_request: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    raw_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    provider_details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    context = relationship("AgentContext", back_populates="generations")
    response_message = relationship("AgentMessage", foreign_keys=[response_message_id])

    @property
    def usage(self) -> Usage:
        return Usage(
            input_tokens=self.input_tokens or 0,
            output_tokens=self.output_tokens or 0,
            total_tokens=self.total_tokens,
            cached_tokens=self.cached_tokens,
            reasoning_tokens=self.reasoning_tokens,
        )

    @property
    def success(self) -> bool:
        return self.status == GenerationStatus.COMPLETED.value

    @property
    def failed(self) -> bool:
        return self.status == GenerationStatus.FAILED.value

    def __repr__(self) -> str:
        return f"<AgentGeneration(id={self.id}, model={self.model}, status={self.status}, tokens={self.total_tokens})>"


@event.listens_for(AgentGeneration, "before_update")
def _reject_generation_edits(mapper, connection, target: AgentGeneration) -> None:
    state = inspect(target)
    changed = [attr.key for attr in state.attrs if attr.history.has_changes()]
    if changed:
        raise ImmutableRecordError(f"Generation {target.id} is immutable (changed: {', '.join(changed)})")
