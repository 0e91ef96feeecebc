"""Base class for agents and their action declarations."""

from dataclasses import dataclass, field
from typing import Any, ClassVar

from inkwell.agent.recorder import ToolCallRecorder
from inkwell.agent.tools import ToolRegistry, ToolSchemaProvider
from inkwell.core.errors import InvalidParametersError
from inkwell.models import AgentContext


@dataclass(frozen=True)
class ActionSpec:
    """Declares an agent action and the inputs it needs."""

    name: str
    required: tuple[str, ...] = ()  # every one of these
    any_of: tuple[str, ...] = ()  # at least one of these
    defaults: dict[str, Any] = field(default_factory=dict)


@dataclass
class PromptInput:
    """The user-facing input recorded as the first user message."""

    content: str | None
    content_parts: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class AgentDependencies:
    """Collaborators injected into every agent instance."""

    schema_provider: ToolSchemaProvider
    browser_pool: Any = None


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


class Agent:
    """One agent invocation.

    Subclasses declare ``actions`` and optionally ``tool_names``; every tool
    name must be a method on the subclass and have a schema. The instance is
    created per dispatched action and used as a context manager around the
    generation loop, which is where invocation-scoped resources are held.
    """

    slug: ClassVar[str] = ""
    agent_name: ClassVar[str] = ""
    instructions: ClassVar[str | None] = None
    model: ClassVar[str | None] = None
    actions: ClassVar[dict[str, ActionSpec]] = {}
    tool_names: ClassVar[tuple[str, ...]] = ()
    parallel_tool_calls: ClassVar[bool] = False

    def __init__(
        self,
        action: str,
        params: dict[str, Any],
        dependencies: AgentDependencies,
        recorder: ToolCallRecorder,
    ):
        self.spec = self.validate(action, params)
        self.action = action
        self.params = {**self.spec.defaults, **{k: v for k, v in params.items() if v is not None}}
        self.dependencies = dependencies
        self.context: AgentContext | None = None
        self.tools = ToolRegistry(self.agent_name, recorder, lambda: self.context)
        for name in self.tool_names:
            self.tools.register(name, getattr(self, name), dependencies.schema_provider.schema_for(self.slug, name))

    @classmethod
    def validate(cls, action: str, params: dict[str, Any]) -> ActionSpec:
        spec = cls.actions.get(action)
        if spec is None:
            raise InvalidParametersError(f"Unknown action: {action}")
        missing = [name for name in spec.required if not is_present(params.get(name))]
        if missing:
            raise InvalidParametersError(f"Missing required parameter(s) for {action}: {', '.join(missing)}")
        if spec.any_of and not any(is_present(params.get(name)) for name in spec.any_of):
            raise InvalidParametersError(f"{action} requires one of: {', '.join(spec.any_of)}")
        cls.validate_inputs(action, params)
        return spec

    @classmethod
    def validate_inputs(cls, action: str, params: dict[str, Any]) -> None:
        """Hook for checks beyond presence."""

    def __enter__(self) -> "Agent":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def build_prompt(self) -> PromptInput:
        raise NotImplementedError

    def context_options(self) -> dict[str, Any]:
        return {"input_params": {key: value for key, value in self.params.items() if is_present(value)}}

    def describe_tool(self, name: str, arguments: dict[str, Any]) -> str:
        return f"Running {name.replace('_', ' ')}"
