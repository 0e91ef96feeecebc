"""Transparent recording of tool invocations.

``ToolCallRecorder.with_recording`` wraps a plain callable so that every call
made while a context is bound leaves an ``AgentToolCall`` row behind: the
arguments as given, then either the result or the error text, with timing.
Exceptions raised by the tool are re-raised unchanged.
"""

import functools
import inspect
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextvars import ContextVar
from typing import Any, Callable

from inkwell.agent.context_manager import ContextManager
from inkwell.core.errors import ToolTimeoutError
from inkwell.models import AgentContext

logger = logging.getLogger(__name__)

ContextGetter = Callable[[], AgentContext | None]

# Provider tool-call id for the call currently being dispatched, if any
current_tool_call_id: ContextVar[str | None] = ContextVar("current_tool_call_id", default=None)

_RECORDED_MARKER = "__recorded_tool__"


def recorded_tool_name(fn: Callable[..., Any]) -> str | None:
    """Name a callable was wrapped for, or None when it is not wrapped."""
    return getattr(fn, _RECORDED_MARKER, None)


def call_arguments(fn: Callable[..., Any], args: tuple, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Arguments of a call keyed by parameter name, positional ones included."""
    try:
        bound = inspect.signature(fn).bind(*args, **kwargs)
    except (TypeError, ValueError):
        # Unbindable calls fail inside the tool; keep what was passed
        return {**kwargs, "args": list(args)} if args else dict(kwargs)

    arguments: dict[str, Any] = {}
    for name, value in bound.arguments.items():
        kind = bound.signature.parameters[name].kind
        if kind is inspect.Parameter.VAR_KEYWORD:
            arguments.update(value)
        elif kind is inspect.Parameter.VAR_POSITIONAL:
            arguments[name] = list(value)
        else:
            arguments[name] = value
    return arguments


class ToolCallRecorder:
    """Wraps tool callables with ToolCall persistence."""

    def __init__(
        self,
        manager: ContextManager,
        timeout: float | None = None,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.manager = manager
        self.timeout = timeout
        self._executor = executor

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="tool")
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def with_recording(
        self,
        fn: Callable[..., Any],
        tool_name: str,
        context_getter: ContextGetter,
    ) -> Callable[..., Any]:
        """Return ``fn`` wrapped for recording; already wrapped callables are returned as is."""
        if recorded_tool_name(fn) == tool_name:
            return fn

        @functools.wraps(fn)
        def recorded(*args: Any, **kwargs: Any) -> Any:
            context = context_getter()
            if context is None:
                return self._invoke(fn, tool_name, args, kwargs)

            arguments = call_arguments(fn, args, kwargs)
            tool_call = self.manager.record_tool_call_start(
                context,
                name=tool_name,
                arguments=arguments,
                tool_call_id=current_tool_call_id.get(),
            )
            logger.info(f"🔧 Tool call #{tool_call.position}: {tool_name}({arguments})")

            try:
                result = self._invoke(fn, tool_name, args, kwargs)
            except Exception as e:
                self.manager.record_tool_call_failure(tool_call, e)
                logger.error(f"❌ Tool {tool_name} failed: {e}")
                raise

            completed = self.manager.record_tool_call_complete(tool_call, result)
            logger.info(f"✅ Tool {tool_name} completed in {completed.duration_ms}ms")
            return result

        setattr(recorded, _RECORDED_MARKER, tool_name)
        return recorded

    def _invoke(self, fn: Callable[..., Any], tool_name: str, args: tuple, kwargs: dict[str, Any]) -> Any:
        if not self.timeout:
            return fn(*args, **kwargs)
        future = self.executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            if future.done():
                # The tool itself raised TimeoutError
                raise
            if future.cancel():
                raise ToolTimeoutError(tool_name, self.timeout) from None
            logger.warning(f"⏱️ Tool {tool_name} abandoned after {self.timeout:g}s, still running")
            raise ToolTimeoutError(tool_name, self.timeout, abandoned=future) from None
