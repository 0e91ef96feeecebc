"""Agent action dispatcher: validate, bind context, generate, run tools, finalize."""

import json
import logging
import secrets
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi.encoders import jsonable_encoder

from inkwell.agent.base import ActionSpec, Agent
from inkwell.agent.broadcaster import StreamBroadcaster
from inkwell.agent.context_manager import ContextManager
from inkwell.agent.generation import (
    GenerationClient,
    GenerationRequest,
    GenerationResult,
    RequestedToolCall,
)
from inkwell.agent.recorder import ToolCallRecorder
from inkwell.agent.registry import AgentKind, AgentRegistry
from inkwell.core.errors import (
    AgentError,
    GenerationProviderError,
    GenerationTimeoutError,
    MissingToolSchemaError,
    ToolExecutionError,
    UnknownToolError,
)
from inkwell.models import AgentContext, Usage

logger = logging.getLogger(__name__)


class DispatchState(str, Enum):
    CREATED = "created"
    CONTEXT_BOUND = "context_bound"
    PROMPT_SUBMITTED = "prompt_submitted"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ActionOutcome:
    """What a dispatched action produced; failures are reported, not raised."""

    status: str
    content: str | None = None
    context_id: int | None = None
    stream_id: str | None = None
    error: str | None = None
    error_kind: str | None = None
    status_code: int = 200
    usage: Usage | None = None

    @property
    def ok(self) -> bool:
        return self.status == DispatchState.COMPLETED.value


@dataclass
class Invocation:
    """Mutable state of one dispatched action."""

    agent: Agent
    stream_id: str | None
    trace_id: str
    state: DispatchState = DispatchState.CREATED
    usage: Usage = field(default_factory=Usage)
    iterations: int = 0

    @property
    def context(self) -> AgentContext | None:
        return self.agent.context

    @property
    def label(self) -> str:
        return f"[{self.trace_id}] {self.agent.agent_name}.{self.agent.action}"


def new_stream_id(kind: AgentKind) -> str:
    return f"{kind.value}_{secrets.token_hex(8)}"


class AgentDispatcher:
    """Runs agent actions end to end.

    ``dispatch`` never raises for runtime failures. Any exception past
    validation is logged with the trace id, the context is marked failed,
    a single ``error`` event goes to the stream and a failed
    ``ActionOutcome`` is returned. Configuration errors still raise.
    """

    def __init__(
        self,
        manager: ContextManager,
        broadcaster: StreamBroadcaster,
        generation_client: GenerationClient,
        registry: AgentRegistry,
        recorder: ToolCallRecorder,
        generation_timeout: float = 120.0,
        max_tool_iterations: int = 8,
        tool_executor: ThreadPoolExecutor | None = None,
    ):
        self.manager = manager
        self.broadcaster = broadcaster
        self.generation_client = generation_client
        self.registry = registry
        self.recorder = recorder
        self.generation_timeout = generation_timeout
        self.max_tool_iterations = max(1, max_tool_iterations)
        self._tool_executor = tool_executor

    @property
    def tool_executor(self) -> ThreadPoolExecutor:
        if self._tool_executor is None:
            self._tool_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="agent-tools")
        return self._tool_executor

    def close(self) -> None:
        """Stop the tool thread pool without waiting for running calls."""
        if self._tool_executor is not None:
            self._tool_executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def prepare(self, agent: AgentKind | str, action: str, params: dict[str, Any]) -> tuple[AgentKind, ActionSpec]:
        """Resolve and validate an action without doing any work."""
        return self.registry.validate(agent, action, params)

    def dispatch(
        self,
        agent: AgentKind | str,
        action: str,
        params: dict[str, Any],
        stream_id: str | None = None,
        contextable: Any = None,
        trace_id: str | None = None,
        session: bool = False,
    ) -> ActionOutcome:
        """Run one action end to end and report its outcome.

        With ``session`` the turn is appended to the owner's persistent
        context for this agent and action instead of a fresh one.
        """
        trace_id = trace_id or uuid.uuid4().hex
        invocation: Invocation | None = None
        logger.info(f"🚀 [{trace_id}] Dispatching {agent}.{action} (stream_id={stream_id})")

        try:
            kind, _ = self.prepare(agent, action, params)
            instance = self.registry.create(kind, action, params, self.recorder)
            invocation = Invocation(agent=instance, stream_id=stream_id, trace_id=trace_id)

            self.bind_context(invocation, contextable, session=session)
            with instance:
                result, duration_ms = self.run(invocation)
            self.finalize(invocation, result, duration_ms)
        except MissingToolSchemaError:
            raise
        except Exception as e:
            return self._fail(invocation, e, stream_id, trace_id)

        return ActionOutcome(
            status=DispatchState.COMPLETED.value,
            content=result.content,
            context_id=invocation.context.id,
            stream_id=stream_id,
            usage=invocation.usage,
        )

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    def bind_context(self, invocation: Invocation, contextable: Any = None, session: bool = False) -> AgentContext:
        agent = invocation.agent
        prompt = agent.build_prompt()
        if session:
            context = self.manager.load_or_create_context(
                agent.agent_name,
                agent.action,
                contextable,
                options=agent.context_options(),
                instructions=agent.instructions,
                trace_id=invocation.trace_id,
            )
        else:
            context = self.manager.create_context(
                agent.agent_name,
                agent.action,
                contextable=contextable,
                instructions=agent.instructions,
                options=agent.context_options(),
                trace_id=invocation.trace_id,
            )
        # Claimed before the context is bound, so a busy session is left untouched
        self.manager.record_generation_start(context)
        agent.context = context
        invocation.state = DispatchState.CONTEXT_BOUND
        self.manager.add_user_message(context, prompt.content, content_parts=prompt.content_parts)
        return context

    def run(self, invocation: Invocation) -> tuple[GenerationResult, int]:
        """Submit the prompt and loop over tool calls until the model answers in text."""
        agent = invocation.agent
        context = invocation.context

        for iteration in range(1, self.max_tool_iterations + 1):
            invocation.iterations = iteration
            final_turn = iteration == self.max_tool_iterations
            tool_choice = None
            if len(agent.tools):
                tool_choice = "none" if final_turn else "auto"

            request = GenerationRequest(
                instructions=context.instructions,
                messages=self.manager.to_prompt_payload(context),
                tools=agent.tools.schemas(),
                tool_choice=tool_choice,
                stream=True,
                model=agent.model,
            )
            result, duration_ms = self.submit(invocation, request)
            if not result.wants_tools:
                return result, duration_ms

            if final_turn:
                raise GenerationProviderError(
                    f"Model requested tools after {self.max_tool_iterations} iterations"
                )

            logger.info(f"🔄 {invocation.label} iteration {iteration}: {len(result.tool_calls)} tool call(s)")
            tool_messages = self.run_tools(invocation, result.tool_calls)

            # The turn is only persisted once every tool in it has succeeded
            self.manager.record_generation_complete(context, result, terminal=False, duration_ms=duration_ms)
            for call, content in tool_messages:
                self.manager.add_tool_message(context, call.id, call.name, content)

        raise GenerationProviderError("Tool loop ended without a final response")

    def submit(self, invocation: Invocation, request: GenerationRequest) -> tuple[GenerationResult, int]:
        """Send one generation request, streaming chunks to the client."""
        invocation.state = DispatchState.PROMPT_SUBMITTED
        started = time.monotonic()
        deadline = started + self.generation_timeout

        def on_chunk(delta: str) -> None:
            if time.monotonic() > deadline:
                raise GenerationTimeoutError(f"Generation exceeded {self.generation_timeout:g}s")
            invocation.state = DispatchState.STREAMING
            self.broadcaster.on_chunk(invocation.stream_id, delta)

        try:
            result = self.generation_client.generate(request, on_chunk=on_chunk)
            if not result.success:
                raise GenerationProviderError(result.error)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            self.manager.record_generation_failure(invocation.context, e, duration_ms=duration_ms)
            raise

        invocation.usage = invocation.usage + result.usage
        return result, int((time.monotonic() - started) * 1000)

    def run_tools(
        self, invocation: Invocation, tool_calls: list[RequestedToolCall]
    ) -> list[tuple[RequestedToolCall, str]]:
        """Execute a turn's tool calls; any failure aborts the turn."""
        agent = invocation.agent
        for call in tool_calls:
            if call.name not in agent.tools:
                raise UnknownToolError(call.name, agent.agent_name)

        def run_one(call: RequestedToolCall) -> tuple[RequestedToolCall, str]:
            self.broadcaster.on_tool_status(invocation.stream_id, agent.describe_tool(call.name, call.arguments))
            try:
                output = agent.tools.execute(call.name, call.arguments, tool_call_id=call.id)
            except ToolExecutionError:
                raise
            except Exception as e:
                raise ToolExecutionError(call.name, str(e) or type(e).__name__) from e
            return call, json.dumps(jsonable_encoder(output))

        if agent.parallel_tool_calls and len(tool_calls) > 1:
            futures = [self.tool_executor.submit(run_one, call) for call in tool_calls]
            # All calls settle before the first failure is raised
            wait(futures)
            return [future.result() for future in futures]
        return [run_one(call) for call in tool_calls]

    def finalize(self, invocation: Invocation, result: GenerationResult, duration_ms: int | None = None) -> None:
        self.manager.record_generation_complete(invocation.context, result, terminal=True, duration_ms=duration_ms)
        invocation.state = DispatchState.COMPLETED
        logger.info(
            f"✅ {invocation.label} completed in {invocation.iterations} iteration(s), "
            f"{invocation.usage.total_tokens} tokens"
        )
        self.broadcaster.on_complete(invocation.stream_id)

    # ------------------------------------------------------------------
    # Failure boundary
    # ------------------------------------------------------------------

    def _fail(
        self,
        invocation: Invocation | None,
        error: Exception,
        stream_id: str | None,
        trace_id: str,
    ) -> ActionOutcome:
        label = invocation.label if invocation else f"[{trace_id}]"
        if isinstance(error, AgentError):
            logger.error(f"❌ {label} failed ({error.kind}): {error}")
            message, kind, status_code = error.message, error.kind, error.status_code
        else:
            logger.exception(f"❌ {label} failed with unexpected error: {error}")
            message, kind, status_code = str(error) or type(error).__name__, "internal_error", 500

        context = invocation.context if invocation else None
        if invocation is not None:
            invocation.state = DispatchState.FAILED
        if context is not None and not context.is_terminal:
            try:
                self.manager.mark_failed(context, error)
            except Exception as mark_error:
                logger.error(f"{label} could not mark context {context.id} failed: {mark_error}", exc_info=True)

        self.broadcaster.on_error(stream_id, message)
        return ActionOutcome(
            status=DispatchState.FAILED.value,
            context_id=context.id if context else None,
            stream_id=stream_id,
            error=message,
            error_kind=kind,
            status_code=status_code,
            usage=invocation.usage if invocation else None,
        )
