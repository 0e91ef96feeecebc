"""Tool registry and tool schema loading for agents."""

import json
import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable

from inkwell.agent.recorder import ContextGetter, ToolCallRecorder, current_tool_call_id
from inkwell.core.errors import MissingToolSchemaError, ToolTimeoutError, UnknownToolError

logger = logging.getLogger(__name__)

SCHEMA_ROOT = Path(__file__).parent / "tool_schemas"


class ToolSchemaProvider:
    """Loads ``{name, description, parameters}`` tool schemas from JSON files.

    Schemas live in ``tool_schemas/<agent slug>/<tool name>.json``.
    """

    def __init__(self, root: Path = SCHEMA_ROOT):
        self.root = Path(root)
        self._cache: dict[tuple[str, str], dict[str, Any]] = {}

    def schema_for(self, agent_slug: str, tool_name: str) -> dict[str, Any]:
        key = (agent_slug, tool_name)
        if key in self._cache:
            return self._cache[key]

        path = self.root / agent_slug / f"{tool_name}.json"
        if not path.is_file():
            logger.error(f"Missing tool schema: {path}")
            raise MissingToolSchemaError(agent_slug, tool_name)

        schema = json.loads(path.read_text(encoding="utf-8"))
        if schema.get("name") != tool_name or "parameters" not in schema:
            logger.error(f"Invalid tool schema in {path}")
            raise MissingToolSchemaError(agent_slug, tool_name)

        schema.setdefault("description", "")
        self._cache[key] = schema
        return schema


class ToolRegistry:
    """Maps tool names to recorded callables for one agent invocation."""

    def __init__(self, agent_name: str, recorder: ToolCallRecorder, context_getter: ContextGetter):
        self.agent_name = agent_name
        self.recorder = recorder
        self.context_getter = context_getter
        self._tools: dict[str, Callable[..., Any]] = {}
        self._schemas: dict[str, dict[str, Any]] = {}
        # Futures of timed-out calls whose bodies may still be running
        self.abandoned: list[Future] = []

    def register(self, name: str, fn: Callable[..., Any], schema: dict[str, Any]) -> Callable[..., Any]:
        """Register ``fn`` under ``name``; registering a name twice is a no-op."""
        if name in self._tools:
            return self._tools[name]
        wrapped = self.recorder.with_recording(fn, name, self.context_getter)
        self._tools[name] = wrapped
        self._schemas[name] = schema
        return wrapped

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Callable[..., Any]:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name, self.agent_name) from None

    def schemas(self) -> list[dict[str, Any]]:
        return [self._schemas[name] for name in self._tools]

    def execute(self, name: str, arguments: dict[str, Any], tool_call_id: str | None = None) -> Any:
        """Run a registered tool with keyword arguments."""
        tool = self.get(name)
        token = current_tool_call_id.set(tool_call_id)
        try:
            return tool(**(arguments or {}))
        except ToolTimeoutError as e:
            if e.abandoned is not None:
                self.abandoned.append(e.abandoned)
            raise
        finally:
            current_tool_call_id.reset(token)
