"""Wiring of the agent subsystem's long-lived collaborators."""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from inkwell.agent.base import AgentDependencies
from inkwell.agent.broadcaster import StreamBroadcaster
from inkwell.agent.browser import BrowserSessionPool, default_session_factory
from inkwell.agent.context_manager import ContextManager
from inkwell.agent.dispatcher import AgentDispatcher
from inkwell.agent.generation import AnthropicGenerationClient, GenerationClient
from inkwell.agent.recorder import ToolCallRecorder
from inkwell.agent.registry import AgentRegistry
from inkwell.agent.tools import ToolSchemaProvider
from inkwell.core.settings import Settings
from inkwell.db.base import SessionLocal
from inkwell.realtime.channel import ChannelHub

logger = logging.getLogger(__name__)


@dataclass
class Services:
    session_factory: sessionmaker
    channel_hub: ChannelHub
    context_manager: ContextManager
    browser_pool: BrowserSessionPool
    recorder: ToolCallRecorder
    dispatcher: AgentDispatcher

    def close(self) -> None:
        self.dispatcher.close()
        self.recorder.close()
        self.browser_pool.close()


def build_services(
    settings: Settings,
    generation_client: GenerationClient | None = None,
    session_factory: sessionmaker | None = None,
    channel_hub: ChannelHub | None = None,
    browser_pool: BrowserSessionPool | None = None,
) -> Services:
    """Build the dispatcher and everything it depends on.

    Raises ``MissingToolSchemaError`` when an agent tool has no schema.
    """
    session_factory = session_factory or SessionLocal
    channel_hub = channel_hub or ChannelHub()
    manager = ContextManager(session_factory)
    recorder = ToolCallRecorder(manager, timeout=settings.tool_timeout_seconds)

    if browser_pool is None:
        browser_pool = BrowserSessionPool(
            settings.research_pool_size,
            default_session_factory(
                user_agent=settings.research_user_agent,
                timeout=settings.research_pool_timeout_seconds,
                max_text_chars=settings.research_max_text_chars,
            ),
            acquire_timeout=settings.research_pool_timeout_seconds,
        )

    registry = AgentRegistry(AgentDependencies(schema_provider=ToolSchemaProvider(), browser_pool=browser_pool))

    if generation_client is None:
        if not settings.anthropic_api_key:
            logger.warning("⚠️ ANTHROPIC_API_KEY is not set; agent actions will fail until it is configured")
        generation_client = AnthropicGenerationClient(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            max_tokens=settings.generation_max_tokens,
            timeout=settings.generation_timeout_seconds,
        )

    dispatcher = AgentDispatcher(
        manager,
        StreamBroadcaster(channel_hub),
        generation_client,
        registry,
        recorder,
        generation_timeout=settings.generation_timeout_seconds,
        max_tool_iterations=settings.max_tool_iterations,
    )
    return Services(
        session_factory=session_factory,
        channel_hub=channel_hub,
        context_manager=manager,
        browser_pool=browser_pool,
        recorder=recorder,
        dispatcher=dispatcher,
    )
