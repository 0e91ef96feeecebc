"""Enum-keyed registry of the available agents."""

import logging
from enum import Enum
from typing import Any

from inkwell.agent.base import ActionSpec, Agent, AgentDependencies
from inkwell.agent.file_analyzer import FileAnalyzerAgent
from inkwell.agent.recorder import ToolCallRecorder
from inkwell.agent.research import ResearchAssistantAgent
from inkwell.agent.writing import WritingAssistantAgent
from inkwell.core.errors import InvalidParametersError

logger = logging.getLogger(__name__)


class AgentKind(str, Enum):
    WRITING_ASSISTANT = "writing_assistant"
    RESEARCH_ASSISTANT = "research_assistant"
    FILE_ANALYZER = "file_analyzer"


AGENT_CLASSES: dict[AgentKind, type[Agent]] = {
    AgentKind.WRITING_ASSISTANT: WritingAssistantAgent,
    AgentKind.RESEARCH_ASSISTANT: ResearchAssistantAgent,
    AgentKind.FILE_ANALYZER: FileAnalyzerAgent,
}


class AgentRegistry:
    """Resolves agent kinds to classes and builds per-invocation instances.

    Every tool schema is loaded up front, so a missing schema stops the
    application at start-up rather than in the middle of an action.
    """

    def __init__(self, dependencies: AgentDependencies, classes: dict[AgentKind, type[Agent]] | None = None):
        self.dependencies = dependencies
        self.classes = dict(classes or AGENT_CLASSES)
        for kind, agent_class in self.classes.items():
            for tool_name in agent_class.tool_names:
                dependencies.schema_provider.schema_for(agent_class.slug, tool_name)
            logger.info(f"🤖 Registered {agent_class.agent_name} ({kind.value}, {len(agent_class.tool_names)} tools)")

    def resolve(self, agent: AgentKind | str) -> AgentKind:
        try:
            kind = AgentKind(agent)
        except ValueError:
            raise InvalidParametersError(f"Unknown agent: {agent}") from None
        if kind not in self.classes:
            raise InvalidParametersError(f"Unknown agent: {agent}")
        return kind

    def agent_class(self, kind: AgentKind) -> type[Agent]:
        return self.classes[kind]

    def validate(self, agent: AgentKind | str, action: str, params: dict[str, Any]) -> tuple[AgentKind, ActionSpec]:
        kind = self.resolve(agent)
        return kind, self.classes[kind].validate(action, params)

    def create(
        self,
        kind: AgentKind,
        action: str,
        params: dict[str, Any],
        recorder: ToolCallRecorder,
    ) -> Agent:
        return self.classes[kind](action, params, self.dependencies, recorder)
