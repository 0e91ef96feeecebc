import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedGenerationClient, text_result
from inkwell.core.errors import GenerationProviderError
from inkwell.core.settings import Settings
from inkwell.main import create_application

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def generation_client():
    return ScriptedGenerationClient()


@pytest.fixture
def app(session_factory, generation_client):
    return create_application(
        settings=Settings(),
        generation_client=generation_client,
        session_factory=session_factory,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/api/health/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["database"] == "ok"


def test_stream_returns_stream_id_and_runs_in_background(client, generation_client):
    generation_client.script.append(text_result("Better text"))

    response = client.post("/api/assistants/stream", json={"action_type": "improve", "content": "good text"})

    assert response.status_code == 200
    stream_id = response.json()["stream_id"]
    assert stream_id.startswith("writing_assistant_")

    listing = client.get("/api/contexts").json()
    assert listing["total"] == 1
    assert listing["contexts"][0]["status"] == "completed"


def test_stream_rejects_unknown_action(client, generation_client):
    response = client.post("/api/assistants/stream", json={"action_type": "rewrite", "content": "x"})

    assert response.status_code == 422
    assert response.json() == {"error": "Unknown action: rewrite"}
    assert generation_client.requests == []


def test_research_stream_id_prefix(client, generation_client):
    generation_client.script.append(text_result("Otters are mustelids."))

    response = client.post("/api/assistants/research", json={"topic": "otters"})

    assert response.status_code == 200
    assert response.json()["stream_id"].startswith("research_assistant_")


def test_writing_action_returns_named_result(client, generation_client):
    generation_client.script.append(text_result("- Idea one\n- Idea two"))

    response = client.post(
        "/api/assistants/writing/brainstorm",
        json={"topic": "otters", "number_of_ideas": 2, "contextable_type": "Chapter", "contextable_id": "7"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ideas"] == "- Idea one\n- Idea two"
    assert body["status"] == "success"
    assert "Provide 2 distinct ideas" in generation_client.requests[0].messages[0]["content"]

    detail = client.get(f"/api/contexts/{body['context_id']}").json()
    assert detail["contextable_type"] == "Chapter"
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]
    assert len(detail["generations"]) == 1

    usage = client.get("/api/contexts/usage", params={"owner_type": "Chapter", "owner_id": "7"}).json()
    assert usage["total_contexts"] == 1
    assert usage["total_tokens"] == 15


def test_writing_action_validation_and_provider_errors(client, generation_client):
    missing = client.post("/api/assistants/writing/brainstorm", json={"context": "no topic"})
    assert missing.status_code == 422
    assert "topic" in missing.json()["error"]

    unknown = client.post("/api/assistants/writing/rewrite", json={"content": "x"})
    assert unknown.status_code == 422
    assert unknown.json() == {"error": "Unknown action: rewrite"}

    generation_client.script.append(GenerationProviderError("Generation provider error: overloaded"))
    failed = client.post("/api/assistants/writing/grammar", json={"content": "teh"})
    assert failed.status_code == 502
    assert failed.json() == {"error": "Generation provider error: overloaded"}


def test_image_caption_sends_image_part(client, generation_client):
    generation_client.script.append(text_result("A sea otter floating on its back."))

    response = client.post(
        "/api/assistants/image/caption",
        files={"file": ("otter.png", PNG_BYTES, "image/png")},
        data={"detail_level": "brief"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["caption"] == "A sea otter floating on its back."
    assert body["filename"] == "otter.png"
    [part] = generation_client.requests[0].messages[0]["content_parts"]
    assert part["type"] == "image"
    assert part["media_type"] == "image/png"

    detail = client.get(f"/api/contexts/{body['context_id']}").json()
    assert detail["agent_name"] == "FileAnalyzerAgent"
    assert detail["action_name"] == "analyze_image"
    assert detail["status"] == "completed"
    [stored] = detail["messages"][0]["content_parts"]
    assert stored["type"] == "image"
    assert stored["media_type"] == "image/png"
    assert detail["messages"][1]["content"] == "A sea otter floating on its back."
    assert len(detail["generations"]) == 1


def test_image_caption_rejects_non_images(client, generation_client):
    response = client.post(
        "/api/assistants/image/caption",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 422
    assert response.json() == {"error": "Please provide an image file"}


def test_analyze_file_summarizes_text_documents(client, generation_client):
    generation_client.script.append(text_result("A short note about otters."))

    response = client.post(
        "/api/assistants/analyze_file",
        files={"file": ("notes.txt", b"Otters hold hands while sleeping.", "text/plain")},
        data={"analysis_type": "summary"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["analysis"] == "A short note about otters."
    assert body["file_type"] == "text/plain"
    assert "Otters hold hands while sleeping." in generation_client.requests[0].messages[0]["content"]

    detail = client.get(f"/api/contexts/{body['context_id']}").json()
    assert detail["action_name"] == "summarize_document"


def test_analyze_file_rejects_pdf(client):
    response = client.post(
        "/api/assistants/analyze_file",
        files={"file": ("report.pdf", b"%PDF-1.4", "application/pdf")},
    )

    assert response.status_code == 422


def test_unknown_context_is_404(client):
    assert client.get("/api/contexts/999").status_code == 404


def test_websocket_relays_stream_until_done(client, app, generation_client):
    generation_client.script.append(text_result("Hello there"))

    with client.websocket_connect("/api/streams/writing_assistant_ws") as websocket:
        assert websocket.receive_json() == {"type": "confirm_subscription", "stream_id": "writing_assistant_ws"}

        outcome = app.state.services.dispatcher.dispatch(
            "writing_assistant", "improve", {"content": "hello"}, stream_id="writing_assistant_ws"
        )
        assert outcome.ok

        assert websocket.receive_json() == {"content": "Hello "}
        assert websocket.receive_json() == {"content": "there"}
        assert websocket.receive_json() == {"done": True}


def test_session_writing_calls_continue_one_context(client, generation_client):
    generation_client.script.extend([text_result("Kelp forests"), text_result("Otter rafts")])
    owner = {"contextable_type": "Chapter", "contextable_id": "7", "session": True}

    first = client.post("/api/assistants/writing/brainstorm", json={"topic": "otters", **owner})
    second = client.post("/api/assistants/writing/brainstorm", json={"topic": "otter habitats", **owner})

    assert first.status_code == 200 and second.status_code == 200
    assert first.json()["context_id"] == second.json()["context_id"]
    detail = client.get(f"/api/contexts/{second.json()['context_id']}").json()
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant", "user", "assistant"]


def test_session_without_owner_is_rejected(client, generation_client):
    writing = client.post("/api/assistants/writing/brainstorm", json={"topic": "otters", "session": True})
    research = client.post("/api/assistants/research", json={"topic": "otters", "session": True})

    assert writing.status_code == 422
    assert writing.json() == {"error": "A session requires contextable_type and contextable_id"}
    assert research.status_code == 422
    assert generation_client.requests == []


def test_shutdown_stops_tool_thread_pools(app):
    services = app.state.services
    with TestClient(app):
        assert services.recorder.executor.submit(lambda: 1).result(timeout=1) == 1
        assert services.dispatcher.tool_executor.submit(lambda: 2).result(timeout=1) == 2

    with pytest.raises(RuntimeError):
        services.recorder.executor.submit(lambda: 1)
    with pytest.raises(RuntimeError):
        services.dispatcher.tool_executor.submit(lambda: 2)
