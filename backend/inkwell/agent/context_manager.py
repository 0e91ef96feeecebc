"""Persistence of agent contexts, messages, tool calls and generations.

Every write runs in its own short-lived session, so the manager can be used
from the request thread, a background task and concurrent tool threads at the
same time. Message and tool call positions are claimed with an atomic
``UPDATE ... RETURNING`` on the owning context's counters.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from inkwell.agent.generation import GenerationResult
from inkwell.core.errors import (
    ContextNotFoundError,
    ContextNotLoadedError,
    SessionBusyError,
    ValidationError,
)
from inkwell.db.base import SessionLocal
from inkwell.models import (
    MESSAGE_ROLES,
    AgentContext,
    AgentGeneration,
    AgentMessage,
    AgentToolCall,
    ContextStatus,
    GenerationStatus,
    MessageRole,
    ToolCallStatus,
    Usage,
)

logger = logging.getLogger(__name__)

_MESSAGE_ATTRIBUTES = frozenset({"content_parts", "tool_call_id", "name", "function_name"})


@dataclass(frozen=True)
class OwnerRef:
    """Polymorphic reference to the domain record a context belongs to."""

    type: str
    id: str


def owner_ref(contextable: Any) -> OwnerRef | None:
    """Build an OwnerRef from an OwnerRef, a (type, id) pair or any record with an ``id``."""
    if contextable is None:
        return None
    if isinstance(contextable, OwnerRef):
        return contextable
    if isinstance(contextable, tuple) and len(contextable) == 2:
        return OwnerRef(type=str(contextable[0]), id=str(contextable[1]))
    record_id = getattr(contextable, "id", None)
    if record_id is None:
        raise ValidationError(f"Contextable {contextable!r} has no id")
    return OwnerRef(type=type(contextable).__name__, id=str(record_id))


def _error_text(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        message = str(error)
        return f"{type(error).__name__}: {message}" if message else type(error).__name__
    return error or "Unknown error"


class ContextManager:
    """Creates/loads contexts and records everything that happens in them."""

    def __init__(self, session_factory: sessionmaker = SessionLocal, max_create_attempts: int = 3):
        self.session_factory = session_factory
        self.max_create_attempts = max_create_attempts

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    @staticmethod
    def _require_names(agent_name: str | None, action_name: str | None) -> None:
        missing = [label for label, value in (("agent_name", agent_name), ("action_name", action_name)) if not value]
        if missing:
            raise ValidationError(f"Context requires {', '.join(missing)}")

    def _build_context(
        self,
        agent_name: str,
        action_name: str,
        owner: OwnerRef | None,
        instructions: str | None,
        options: dict[str, Any] | None,
        trace_id: str | None,
        session_key: str | None = None,
    ) -> AgentContext:
        return AgentContext(
            agent_name=agent_name,
            action_name=action_name,
            contextable_type=owner.type if owner else None,
            contextable_id=owner.id if owner else None,
            instructions=instructions,
            options=jsonable_encoder(options or {}),
            status=ContextStatus.PENDING.value,
            trace_id=trace_id or uuid.uuid4().hex,
            session_key=session_key,
            message_count=0,
            tool_call_count=0,
        )

    def create_context(
        self,
        agent_name: str,
        action_name: str,
        contextable: Any = None,
        instructions: str | None = None,
        options: dict[str, Any] | None = None,
        trace_id: str | None = None,
    ) -> AgentContext:
        """Always insert a new context."""
        self._require_names(agent_name, action_name)
        context = self._build_context(
            agent_name, action_name, owner_ref(contextable), instructions, options, trace_id
        )
        with self._session() as db:
            db.add(context)
        logger.info(f"🧵 Created context {context.id} for {agent_name}.{action_name} (trace={context.trace_id})")
        return context

    def load_or_create_context(
        self,
        agent_name: str,
        action_name: str,
        contextable: Any,
        options: dict[str, Any] | None = None,
        instructions: str | None = None,
        trace_id: str | None = None,
    ) -> AgentContext:
        """Find the session context for (owner, agent, action) or create it.

        Concurrent creators race on the unique ``session_key``; the loser
        rolls back and reads the winner's row.
        A finished session is returned as is; ``record_generation_start``
        reopens it for the next turn.
        """
        self._require_names(agent_name, action_name)
        owner = owner_ref(contextable)
        if owner is None:
            raise ValidationError("load_or_create_context requires a contextable owner")
        session_key = f"{owner.type}:{owner.id}:{agent_name}:{action_name}"

        for attempt in range(1, self.max_create_attempts + 1):
            with self._session() as db:
                existing = db.scalar(select(AgentContext).where(AgentContext.session_key == session_key))
            if existing is not None:
                return existing

            context = self._build_context(
                agent_name, action_name, owner, instructions, options, trace_id, session_key=session_key
            )
            try:
                with self._session() as db:
                    db.add(context)
            except IntegrityError:
                logger.warning(f"Context for {session_key} created concurrently (attempt {attempt}), reloading")
                continue
            logger.info(f"🧵 Created session context {context.id} for {session_key}")
            return context

        raise ContextNotFoundError(f"Could not load or create context for {session_key}")

    def load_context(self, context_id: int) -> AgentContext:
        with self._session() as db:
            context = db.get(AgentContext, context_id)
        if context is None:
            raise ContextNotFoundError(f"Context {context_id} not found")
        return context

    def refresh(self, context: AgentContext) -> AgentContext:
        """Return a freshly loaded copy of ``context``."""
        return self.load_context(context.id)

    def _transition(self, db: Session, context: AgentContext, status: ContextStatus, error: str | None = None) -> None:
        row = db.get(AgentContext, context.id)
        if row is None:
            raise ContextNotFoundError(f"Context {context.id} not found")
        row.transition_to(status)
        if error is not None:
            row.error_message = error
        context.status = row.status
        context.error_message = row.error_message

    def record_generation_start(self, context: AgentContext) -> None:
        """Move the context to in_progress.

        Session contexts take one turn at a time: a finished session is
        reopened, and a session whose turn is still running raises
        ``SessionBusyError``. Other contexts only move forward.
        """
        if context is None:
            raise ContextNotLoadedError()
        if context.session_key:
            self._claim_session_turn(context)
            return
        with self._session() as db:
            self._transition(db, context, ContextStatus.IN_PROGRESS)

    def _claim_session_turn(self, context: AgentContext) -> None:
        stmt = (
            update(AgentContext)
            .where(
                AgentContext.id == context.id,
                AgentContext.status != ContextStatus.IN_PROGRESS.value,
            )
            .values(status=ContextStatus.IN_PROGRESS.value, error_message=None)
            .returning(AgentContext.id)
            .execution_options(synchronize_session=False)
        )
        with self._session() as db:
            claimed = db.execute(stmt).scalar_one_or_none()
        if claimed is None:
            raise SessionBusyError(f"Session context {context.id} already has a turn in progress")
        context.status = ContextStatus.IN_PROGRESS.value
        context.error_message = None
        logger.info(f"🔁 Session context {context.id} opened for a new turn")

    def mark_failed(self, context: AgentContext, error: BaseException | str) -> None:
        """Fail the context without recording a generation."""
        if context is None:
            raise ContextNotLoadedError()
        with self._session() as db:
            self._transition(db, context, ContextStatus.FAILED, error=_error_text(error))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @staticmethod
    def _claim_position(db: Session, context_id: int, counter) -> int:
        stmt = (
            update(AgentContext)
            .where(AgentContext.id == context_id)
            .values({counter: counter + 1})
            .returning(counter)
            .execution_options(synchronize_session=False)
        )
        claimed = db.execute(stmt).scalar_one_or_none()
        if claimed is None:
            raise ContextNotFoundError(f"Context {context_id} not found")
        return claimed - 1

    def append_message(
        self,
        context: AgentContext | None,
        role: MessageRole | str,
        content: str | None,
        **attributes: Any,
    ) -> AgentMessage:
        """Append a message at the next position of the context."""
        if context is None:
            raise ContextNotLoadedError()
        role_value = role.value if isinstance(role, MessageRole) else role
        if role_value not in MESSAGE_ROLES:
            raise ValidationError(f"Role '{role_value}' is not included in the list")
        unknown = set(attributes) - _MESSAGE_ATTRIBUTES
        if unknown:
            raise ValidationError(f"Unknown message attributes: {', '.join(sorted(unknown))}")

        content_parts = jsonable_encoder(attributes.pop("content_parts", None) or [])
        with self._session() as db:
            position = self._claim_position(db, context.id, AgentContext.message_count)
            message = AgentMessage(
                context_id=context.id,
                role=role_value,
                content=content,
                content_parts=content_parts,
                position=position,
                **attributes,
            )
            db.add(message)
        return message

    def add_user_message(self, context: AgentContext | None, content: str | None, **attributes: Any) -> AgentMessage:
        return self.append_message(context, MessageRole.USER, content, **attributes)

    def add_assistant_message(self, context: AgentContext | None, content: str | None, **attributes: Any) -> AgentMessage:
        return self.append_message(context, MessageRole.ASSISTANT, content, **attributes)

    def add_system_message(self, context: AgentContext | None, content: str, **attributes: Any) -> AgentMessage:
        return self.append_message(context, MessageRole.SYSTEM, content, **attributes)

    def add_tool_message(
        self, context: AgentContext | None, tool_call_id: str, name: str, content: str
    ) -> AgentMessage:
        return self.append_message(
            context, MessageRole.TOOL, content, tool_call_id=tool_call_id, name=name, function_name=name
        )

    def messages_for(self, context: AgentContext) -> list[AgentMessage]:
        with self._session() as db:
            return list(
                db.scalars(
                    select(AgentMessage)
                    .where(AgentMessage.context_id == context.id)
                    .order_by(AgentMessage.position)
                )
            )

    def to_prompt_payload(self, context: AgentContext | None) -> list[dict[str, Any]]:
        """Messages in append order, in the provider-neutral format."""
        if context is None:
            return []
        return [message.to_message_hash() for message in self.messages_for(context)]

    def to_prompt_options(self, context: AgentContext) -> dict[str, Any]:
        options = dict(context.options or {})
        options["instructions"] = context.instructions
        options["messages"] = self.to_prompt_payload(context)
        return options

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    def record_generation_complete(
        self,
        context: AgentContext | None,
        result: GenerationResult,
        terminal: bool = True,
        duration_ms: int | None = None,
    ) -> AgentGeneration:
        """Persist the assistant message and a completed generation linked to it."""
        if context is None:
            raise ContextNotLoadedError()
        if result is None or not result.success:
            raise ValidationError("record_generation_complete requires a successful generation result")

        tool_parts = [
            {"type": "tool_call", "id": call.id, "name": call.name, "arguments": call.arguments}
            for call in result.tool_calls
        ]
        content = result.content if (result.content or not tool_parts) else None

        with self._session() as db:
            position = self._claim_position(db, context.id, AgentContext.message_count)
            message = AgentMessage(
                context_id=context.id,
                role=MessageRole.ASSISTANT.value,
                content=content,
                content_parts=jsonable_encoder(tool_parts),
                position=position,
            )
            db.add(message)
            db.flush()

            generation = self._build_generation(context, result, GenerationStatus.COMPLETED, duration_ms)
            generation.response_message_id = message.id
            db.add(generation)

            if terminal:
                self._transition(db, context, ContextStatus.COMPLETED)

        logger.info(
            f"💾 Context {context.id}: generation {generation.id} recorded "
            f"({generation.total_tokens} tokens, terminal={terminal})"
        )
        return generation

    def record_generation_failure(
        self,
        context: AgentContext | None,
        error: BaseException | str,
        result: GenerationResult | None = None,
        duration_ms: int | None = None,
        terminal: bool = True,
    ) -> AgentGeneration:
        if context is None:
            raise ContextNotLoadedError()
        error_text = _error_text(error)
        with self._session() as db:
            generation = self._build_generation(
                context, result or GenerationResult(), GenerationStatus.FAILED, duration_ms
            )
            generation.error_message = error_text
            db.add(generation)
            if terminal:
                self._transition(db, context, ContextStatus.FAILED, error=error_text)
        logger.warning(f"💥 Context {context.id}: generation failed: {error_text}")
        return generation

    @staticmethod
    def _build_generation(
        context: AgentContext,
        result: GenerationResult,
        status: GenerationStatus,
        duration_ms: int | None,
    ) -> AgentGeneration:
        usage = result.usage or Usage()
        return AgentGeneration(
            context_id=context.id,
            provider_id=result.provider_id,
            model=result.model,
            finish_reason=result.finish_reason,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            cached_tokens=usage.cached_tokens,
            reasoning_tokens=usage.reasoning_tokens,
            duration_ms=duration_ms,
            status=status.value,
            raw_request=jsonable_encoder(result.raw_request) if result.raw_request else None,
            raw_response=jsonable_encoder(result.raw_response) if result.raw_response else None,
            provider_details={},
        )

    def generations_for(self, context: AgentContext) -> list[AgentGeneration]:
        with self._session() as db:
            return list(
                db.scalars(
                    select(AgentGeneration)
                    .where(AgentGeneration.context_id == context.id)
                    .order_by(AgentGeneration.id)
                )
            )

    def usage_for(self, context: AgentContext) -> Usage:
        total = Usage()
        for generation in self.generations_for(context):
            total = total + generation.usage
        return total

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    def record_tool_call_start(
        self,
        context: AgentContext | None,
        name: str,
        arguments: dict[str, Any],
        tool_call_id: str | None = None,
    ) -> AgentToolCall:
        if context is None:
            raise ContextNotLoadedError()
        with self._session() as db:
            position = self._claim_position(db, context.id, AgentContext.tool_call_count)
            tool_call = AgentToolCall(
                context_id=context.id,
                name=name,
                arguments=jsonable_encoder(arguments),
                status=ToolCallStatus.PENDING.value,
                position=position,
                tool_call_id=tool_call_id,
            )
            tool_call.mark_running()
            db.add(tool_call)
        return tool_call

    def record_tool_call_complete(self, tool_call: AgentToolCall, result: Any) -> AgentToolCall:
        with self._session() as db:
            row = db.get(AgentToolCall, tool_call.id)
            row.mark_completed(jsonable_encoder(result))
        return row

    def record_tool_call_failure(self, tool_call: AgentToolCall, error: BaseException | str) -> AgentToolCall:
        with self._session() as db:
            row = db.get(AgentToolCall, tool_call.id)
            row.mark_failed(_error_text(error))
        return row

    def tool_calls_for(self, context: AgentContext, name: str | None = None) -> list[AgentToolCall]:
        stmt = select(AgentToolCall).where(AgentToolCall.context_id == context.id)
        if name:
            stmt = stmt.where(AgentToolCall.name == name)
        with self._session() as db:
            return list(db.scalars(stmt.order_by(AgentToolCall.position)))

    def tool_call_results(self, context: AgentContext) -> list[dict[str, Any]]:
        return [
            {"name": call.name, "result": call.result}
            for call in self.tool_calls_for(context)
            if call.succeeded
        ]

    # ------------------------------------------------------------------
    # Owner history
    # ------------------------------------------------------------------

    def contexts_for_owner(self, contextable: Any, agent_name: str | None = None) -> list[AgentContext]:
        owner = owner_ref(contextable)
        stmt = select(AgentContext).where(
            AgentContext.contextable_type == owner.type,
            AgentContext.contextable_id == owner.id,
        )
        if agent_name:
            stmt = stmt.where(AgentContext.agent_name == agent_name)
        with self._session() as db:
            return list(db.scalars(stmt.order_by(AgentContext.created_at, AgentContext.id)))

    def latest_context_for(self, contextable: Any) -> AgentContext | None:
        contexts = self.contexts_for_owner(contextable)
        return contexts[-1] if contexts else None

    def usage_stats_for(self, contextable: Any) -> dict[str, int]:
        owner = owner_ref(contextable)
        owned = (AgentContext.contextable_type == owner.type, AgentContext.contextable_id == owner.id)
        with self._session() as db:
            status_counts = dict(
                db.execute(
                    select(AgentContext.status, func.count(AgentContext.id)).where(*owned).group_by(AgentContext.status)
                ).all()
            )
            input_tokens, output_tokens, total_tokens, generation_count = db.execute(
                select(
                    func.coalesce(func.sum(AgentGeneration.input_tokens), 0),
                    func.coalesce(func.sum(AgentGeneration.output_tokens), 0),
                    func.coalesce(func.sum(AgentGeneration.total_tokens), 0),
                    func.count(AgentGeneration.id),
                )
                .join(AgentContext, AgentGeneration.context_id == AgentContext.id)
                .where(*owned)
            ).one()

        return {
            "total_contexts": sum(status_counts.values()),
            "completed_contexts": status_counts.get(ContextStatus.COMPLETED.value, 0),
            "failed_contexts": status_counts.get(ContextStatus.FAILED.value, 0),
            "total_generations": generation_count,
            "total_input_tokens": input_tokens,
            "total_output_tokens": output_tokens,
            "total_tokens": total_tokens,
        }
