import base64
import threading

import pytest

from inkwell.agent.base import AgentDependencies
from inkwell.agent.file_analyzer import FileAnalyzerAgent
from inkwell.agent.registry import AgentKind, AgentRegistry
from inkwell.agent.recorder import ToolCallRecorder
from inkwell.agent.research import ResearchAssistantAgent
from inkwell.agent.tools import ToolSchemaProvider
from inkwell.agent.writing import WritingAssistantAgent
from inkwell.core.errors import BrowserPoolExhaustedError, InvalidParametersError, ToolTimeoutError


@pytest.fixture
def dependencies(browser_pool):
    return AgentDependencies(schema_provider=ToolSchemaProvider(), browser_pool=browser_pool)


def test_writing_selection_is_worked_on_with_full_document_as_reference(dependencies, recorder):
    agent = WritingAssistantAgent(
        "improve",
        {"selection": "The otter swam.", "full_content": "Chapter one. The otter swam. The end."},
        dependencies,
        recorder,
    )

    prompt = agent.build_prompt().content

    assert "Work only on the selected passage" in prompt
    assert prompt.index("Full document:") < prompt.index("Selected passage:")
    assert prompt.rstrip().endswith("without commentary.")


def test_writing_defaults_are_applied_and_recorded(dependencies, recorder):
    agent = WritingAssistantAgent("summarize", {"content": "Long text", "max_words": None}, dependencies, recorder)

    assert "under 150 words" in agent.build_prompt().content
    assert agent.context_options() == {"input_params": {"content": "Long text", "max_words": 150}}
    assert len(agent.tools) == 0


@pytest.mark.parametrize(
    "action, params, message",
    [
        ("rewrite", {"content": "x"}, "Unknown action: rewrite"),
        ("improve", {"content": "   "}, "improve requires one of: content, selection"),
        ("brainstorm", {}, "Missing required parameter(s) for brainstorm: topic"),
    ],
)
def test_writing_validation_messages(action, params, message):
    with pytest.raises(InvalidParametersError) as excinfo:
        WritingAssistantAgent.validate(action, params)

    assert excinfo.value.message == message


def test_research_registers_every_tool_and_summarizes_inputs(dependencies, recorder):
    agent = ResearchAssistantAgent(
        "research", {"topic": "sea otters", "full_content": "draft"}, dependencies, recorder
    )

    assert {schema["name"] for schema in agent.tools.schemas()} == set(ResearchAssistantAgent.tool_names)
    assert agent.context_options() == {
        "input_params": {"topic": "sea otters", "depth": "standard", "has_full_content": True}
    }
    assert agent.describe_tool("navigate", {"url": "https://example.org/"}) == "Visiting https://example.org/"
    assert agent.describe_tool("page_info", {}) == "Running page info"


def test_research_tools_report_page_errors_as_results(dependencies, recorder):
    agent = ResearchAssistantAgent("research", {"topic": "sea otters"}, dependencies, recorder)

    assert agent.page_info()["success"] is False

    with agent:
        assert agent.navigate("https://example.org/")["title"] == "Otter Facts"
        missing = agent.extract_text("#sidebar")
        assert missing["success"] is False
        assert missing["text"] == ""
    assert agent.session is None


def test_file_analyzer_image_prompt_carries_base64_part(tmp_path, dependencies, recorder):
    image = tmp_path / "otter.png"
    image.write_bytes(b"\x89PNG fake")

    agent = FileAnalyzerAgent("analyze_image", {"file_path": str(image)}, dependencies, recorder)
    prompt = agent.build_prompt()

    [part] = prompt.content_parts
    assert part["media_type"] == "image/png"
    assert base64.b64decode(part["data"]) == b"\x89PNG fake"


def test_file_analyzer_rejects_missing_files_and_non_images(tmp_path):
    notes = tmp_path / "notes.txt"
    notes.write_text("hello")

    with pytest.raises(InvalidParametersError, match="File not found"):
        FileAnalyzerAgent.validate("extract_text", {"file_path": str(tmp_path / "gone.txt")})
    with pytest.raises(InvalidParametersError, match="is not an image"):
        FileAnalyzerAgent.validate("analyze_image", {"file_path": str(notes)})


def test_registry_resolves_by_value_and_rejects_unknown_agents(dependencies):
    registry = AgentRegistry(dependencies)

    kind, spec = registry.validate("writing_assistant", "brainstorm", {"topic": "otters"})

    assert kind is AgentKind.WRITING_ASSISTANT
    assert spec.defaults == {"number_of_ideas": 5}
    with pytest.raises(InvalidParametersError, match="Unknown agent: poet"):
        registry.resolve("poet")


def test_timed_out_research_tool_keeps_its_session_out_of_the_pool(manager, dependencies, browser_pool):
    recorder = ToolCallRecorder(manager, timeout=0.05)
    agent = ResearchAssistantAgent("research", {"topic": "sea otters"}, dependencies, recorder)
    release = threading.Event()

    with agent:
        session = agent.session
        visit = session.visit

        def slow_visit(url):
            release.wait(2)
            visit(url)

        session.visit = slow_visit
        with pytest.raises(ToolTimeoutError, match="abandoned"):
            agent.tools.execute("navigate", {"url": "https://example.org/"})

    with pytest.raises(BrowserPoolExhaustedError):
        with browser_pool.acquire(timeout=0.05):
            pass

    release.set()
    with browser_pool.acquire(timeout=1) as reused:
        assert reused is session
        assert reused.current_url is None
