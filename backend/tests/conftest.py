"""Shared fixtures: a throwaway SQLite database, a scripted model and a recording channel."""

import threading
from typing import Any, Callable

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from inkwell.agent.base import AgentDependencies
from inkwell.agent.broadcaster import StreamBroadcaster
from inkwell.agent.browser import BrowserSessionPool, PageSession
from inkwell.agent.context_manager import ContextManager
from inkwell.agent.dispatcher import AgentDispatcher
from inkwell.agent.generation import GenerationRequest, GenerationResult, RequestedToolCall
from inkwell.agent.recorder import ToolCallRecorder
from inkwell.agent.registry import AgentRegistry
from inkwell.agent.tools import ToolSchemaProvider
from inkwell.db.base import build_engine
from inkwell.db.init_db import init_db
from inkwell.models import Usage


class RecordingChannel:
    """Real-time channel double that keeps every broadcast payload."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def broadcast(self, stream_id: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((stream_id, payload))

    def payloads(self, stream_id: str) -> list[dict[str, Any]]:
        return [payload for sid, payload in self.events if sid == stream_id]


class ScriptedGenerationClient:
    """Generation client double replaying a fixed list of responses.

    Each script entry is a GenerationResult, an exception to raise, or a
    callable taking the request. Text content is streamed to ``on_chunk``
    word by word.
    """

    def __init__(self, *script: GenerationResult | Exception | Callable[[GenerationRequest], GenerationResult]):
        self.script = list(script)
        self.requests: list[GenerationRequest] = []

    def generate(self, request: GenerationRequest, on_chunk=None) -> GenerationResult:
        self.requests.append(request)
        if not self.script:
            raise AssertionError("ScriptedGenerationClient ran out of responses")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        result = step(request) if callable(step) else step
        if on_chunk and result.content:
            words = result.content.split(" ")
            for index, word in enumerate(words):
                on_chunk(word if index == len(words) - 1 else f"{word} ")
        return result


def text_result(content: str, input_tokens: int = 10, output_tokens: int = 5) -> GenerationResult:
    return GenerationResult(
        content=content,
        finish_reason="end_turn",
        usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
        provider_id="msg_text",
        model="test-model",
    )


def tool_result(*calls: tuple[str, str, dict[str, Any]], input_tokens: int = 10, output_tokens: int = 5) -> GenerationResult:
    return GenerationResult(
        content="",
        tool_calls=[RequestedToolCall(id=call_id, name=name, arguments=arguments) for call_id, name, arguments in calls],
        finish_reason="tool_use",
        usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
        provider_id="msg_tools",
        model="test-model",
    )


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def manager(session_factory):
    return ContextManager(session_factory)


@pytest.fixture
def recorder(manager):
    return ToolCallRecorder(manager)


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def broadcaster(channel):
    return StreamBroadcaster(channel)


@pytest.fixture
def make_dispatcher(manager, broadcaster, recorder):
    def build(client, browser_pool=None, registry=None, **kwargs) -> AgentDispatcher:
        registry = registry or AgentRegistry(
            AgentDependencies(schema_provider=ToolSchemaProvider(), browser_pool=browser_pool)
        )
        return AgentDispatcher(manager, broadcaster, client, registry, recorder, **kwargs)

    return build


SITE = {
    "/": """
        <html><head><title>Otter Facts</title></head>
        <body>
          <nav><a href="/">Home</a></nav>
          <main>
            <h1>Sea otters</h1>
            <p>Sea otters   use rocks
               as tools.</p>
            <a href="/habitat" title="Where they live">Habitat</a>
            <a href="#top">Top</a>
            <a href="javascript:void(0)">Share</a>
          </main>
          <form action="/search" method="get">
            <label for="q">Search term</label>
            <input id="q" name="q" type="text">
            <input type="hidden" name="lang" value="en">
            <button type="submit">Search</button>
          </form>
        </body></html>
    """,
    "/habitat": """
        <html><head><title>Habitat</title></head>
        <body><article>Otters live in kelp forests along the Pacific coast.</article></body></html>
    """,
}


def site_handler(request: httpx.Request) -> httpx.Response:
    """Serves SITE on example.org; down.example refuses connections."""
    if request.url.host == "down.example":
        raise httpx.ConnectError("connection refused", request=request)
    if request.url.path == "/search":
        query = request.url.params.get("q", "")
        html = f"<html><head><title>Results for {query}</title></head><body><main>Results: {query}</main></body></html>"
        return httpx.Response(200, text=html)
    if request.url.path in SITE:
        return httpx.Response(200, text=SITE[request.url.path])
    return httpx.Response(404, text="<html><head><title>Not found</title></head><body>Not found</body></html>")


def mock_page_session(max_text_chars: int = 6000) -> PageSession:
    client = httpx.Client(transport=httpx.MockTransport(site_handler), follow_redirects=True)
    return PageSession(client, max_text_chars=max_text_chars)


@pytest.fixture
def browser_pool():
    pool = BrowserSessionPool(1, mock_page_session, acquire_timeout=0.1)
    yield pool
    pool.close()
