"""End-to-end tests of the HTTP API against a scripted local model server."""
from __future__ import annotations

import json

import httpx
import pytest
import pytest_asyncio

from notebridge.config import Settings
from notebridge.exceptions import TransportError
from notebridge.main import create_app
from notebridge.state import AppState

LOCAL = "http://localhost:1234"

DOCUMENTS = [
    {"path": "Notes/tides.md", "text": "The tide turns at six.", "modified_at": 100.0},
    {"path": "Notes/bread.md", "text": "Bread needs flour and patience.", "modified_at": 200.0},
]


@pytest_asyncio.fixture
async def state(tmp_path, fake_transport):
    configured = Settings(
        DATA_DIR=tmp_path,
        LOCAL_BASE_URL=f"{LOCAL}/v1",
        OPENAI_API_KEY="",
        ANTHROPIC_API_KEY="",
        GEMINI_API_KEY="",
        GROK_API_KEY="",
        OPENROUTER_API_KEY="",
        CHAT_MODEL="llama3:8b",
        EMBEDDING_MODEL="nomic-embed-text",
        INDEX_CHUNK_DELAY_SECONDS=0,
        TRANSPORT_MODE="client",
    )
    app_state = await AppState.create(configured, transport=fake_transport)
    yield app_state
    await app_state.aclose()


@pytest_asyncio.fixture
async def client(state):
    app = create_app(state)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as test_client:
        yield test_client


def _embedding(*vectors: list[float]) -> list[dict]:
    return [{"data": [{"embedding": v}]} for v in vectors]


async def _index(client: httpx.AsyncClient, transport) -> None:
    transport.on_request("POST", "/v1/embeddings", *_embedding([1.0, 0.0], [0.0, 1.0], [1.0, 0.1]))
    response = await client.post("/index/documents", json={"documents": DOCUMENTS})
    assert response.status_code == 200
    assert response.json() == {"updated": 2, "total": 2, "chunks": 2}


# =============================================================================
# Health
# =============================================================================

@pytest.mark.asyncio
async def test_ping(client):
    response = await client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_health_reports_providers_and_index(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"]["providers"] == ["local"]
    assert body["services"]["index"]["chunks"] == 0
    assert body["services"]["transport"] == "fake"


@pytest.mark.asyncio
async def test_deep_health_degrades_when_local_server_is_down(client, fake_transport):
    fake_transport.on_request("GET", "/v1/models", TransportError("Connection refused"))

    response = await client.get("/health", params={"deep": "true"})

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["services"]["local"]["status"] == "unavailable"


@pytest.mark.asyncio
async def test_ready(client):
    response = await client.get("/ready")

    assert response.status_code == 200
    assert response.json()["ready"] is True


# =============================================================================
# Models
# =============================================================================

@pytest.mark.asyncio
async def test_list_models_scopes_ids(client, fake_transport):
    fake_transport.on_request("GET", "/v1/models", {"data": [{"id": "nomic-embed-text"}, {"id": "llama3:8b"}]})

    response = await client.get("/models")

    assert response.status_code == 200
    ids = [m["id"] for m in response.json()["models"]]
    assert ids == ["local:llama3:8b", "local:nomic-embed-text"]
    assert response.json()["active_local_model"] is None


@pytest.mark.asyncio
async def test_preload_and_running(client, fake_transport):
    fake_transport.on_request("POST", "/api/generate", {"done": True})
    fake_transport.on_request("GET", "/api/ps", {"models": [{"name": "llama3:8b"}]})

    preload = await client.post("/models/preload", json={"model": "local:llama3:8b"})
    running = await client.get("/models/running")

    assert preload.json()["ok"] is True
    assert fake_transport.calls_to("/api/generate")[0].body == {"model": "llama3:8b", "prompt": "", "keep_alive": -1}
    assert running.json()["models"] == ["llama3:8b"]


@pytest.mark.asyncio
async def test_unload_without_active_model(client):
    response = await client.post("/models/unload", json={})

    assert response.status_code == 200
    assert response.json() == {"ok": False, "detail": "No active local model"}


# =============================================================================
# Chat
# =============================================================================

@pytest.mark.asyncio
async def test_chat_streams_with_context_and_remembers(client, fake_transport, state, sse_lines):
    await _index(client, fake_transport)
    fake_transport.on_stream(
        "POST",
        "/v1/chat/completions",
        [sse_lines(json.dumps({"choices": [{"delta": {"content": "At "}}]})),
         sse_lines(json.dumps({"choices": [{"delta": {"content": "six."}}]}), "[DONE]")],
    )

    response = await client.post(
        "/chat",
        json={
            "messages": [{"role": "user", "content": "When does the tide turn?"}],
            "scope": "Notes",
            "conversation_id": "c1",
        },
    )
    await state.chat.wait_background()

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "At six."

    sent = fake_transport.calls_to("/v1/chat/completions")[0].body
    assert sent["model"] == "llama3:8b"
    assert sent["stream"] is True
    system = sent["messages"][0]
    assert system["role"] == "system"
    assert "[CONTEXT FROM USER VAULT]" in system["content"]
    assert "[File: Notes/tides.md]" in system["content"]

    memory = state.store.query([1.0, 0.1], k=10, path_prefix="Notes/.memory/c1/")
    assert len(memory) == 1


@pytest.mark.asyncio
async def test_chat_stream_error_is_reported_in_band(client, fake_transport):
    fake_transport.on_stream("POST", "/v1/chat/completions", [], error=TransportError("model not loaded", 404))

    response = await client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "Hi"}], "use_context": False},
    )

    assert response.status_code == 200
    assert response.text == "[Error: model not loaded. Please try again.]"


@pytest.mark.asyncio
async def test_chat_complete_returns_sources(client, fake_transport):
    await _index(client, fake_transport)
    fake_transport.on_request(
        "POST",
        "/v1/chat/completions",
        {"choices": [{"message": {"role": "assistant", "content": "At six."}}]},
    )

    response = await client.post(
        "/chat/complete",
        json={"messages": [{"role": "user", "content": "When does the tide turn?"}], "model": "local:llama3:8b"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["content"] == "At six."
    assert body["tool_calls"] == []
    assert body["sources"][0]["path"] == "Notes/tides.md"


@pytest.mark.asyncio
async def test_chat_complete_unknown_provider(client):
    response = await client.post(
        "/chat/complete",
        json={"messages": [{"role": "user", "content": "Hi"}], "model": "mystery:model", "use_context": False},
    )

    assert response.status_code == 500
    assert response.json()["error"] == "CONFIGURATIONERROR"
    assert "mystery" in response.json()["message"]


@pytest.mark.asyncio
async def test_chat_rejects_empty_conversation(client):
    response = await client.post("/chat", json={"messages": []})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_chat_rejects_path_like_conversation_id(client):
    response = await client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "Hi"}], "conversation_id": "../escape"},
    )

    assert response.status_code == 422


# =============================================================================
# Embeddings, Search & Indexing
# =============================================================================

@pytest.mark.asyncio
async def test_embed(client, fake_transport):
    fake_transport.on_request("POST", "/v1/embeddings", *_embedding([0.5, 0.5, 0.0]))

    response = await client.post("/embed", json={"text": "hello"})

    assert response.status_code == 200
    assert response.json() == {"vector": [0.5, 0.5, 0.0], "dimensions": 3}
    assert fake_transport.calls_to("/v1/embeddings")[0].body == {"input": "hello", "model": "nomic-embed-text"}


@pytest.mark.asyncio
async def test_embed_zero_vector_is_an_error(client, fake_transport):
    fake_transport.on_request("POST", "/v1/embeddings", *_embedding([0.0, 0.0]))

    response = await client.post("/embed", json={"text": "hello"})

    assert response.status_code == 503
    assert response.json()["error"] == "EMBEDDINGERROR"


@pytest.mark.asyncio
async def test_index_search_sync_delete(client, fake_transport, state, tmp_path):
    await _index(client, fake_transport)
    assert (tmp_path / "vector_store.json").exists()

    search = await client.post("/search", json={"query": "tides", "k": 1})
    assert search.status_code == 200
    hits = search.json()["hits"]
    assert [h["source_path"] for h in hits] == ["Notes/tides.md"]
    assert hits[0]["id"] == "Notes/tides.md#0"

    sync = await client.post("/index/sync", json={"documents": DOCUMENTS})
    assert sync.json() == {"updated": 0, "total": 2, "chunks": 2}

    deleted = await client.request("DELETE", "/index/documents", json={"paths": ["Notes/tides.md", "Notes/none.md"]})
    assert deleted.json() == {"removed": 1}
    assert len(state.store) == 1


@pytest.mark.asyncio
async def test_inspect_indexed_document(client, fake_transport):
    await _index(client, fake_transport)

    indexed = await client.get("/index/documents", params={"path": "Notes/tides.md"})
    missing = await client.get("/index/documents", params={"path": "Notes/none.md"})

    assert indexed.status_code == 200
    assert indexed.json() == {
        "path": "Notes/tides.md",
        "modified_at": 100.0,
        "chunks": [{"id": "Notes/tides.md#0", "text": "The tide turns at six."}],
    }
    assert missing.json() == {"path": "Notes/none.md", "modified_at": None, "chunks": []}


@pytest.mark.asyncio
async def test_search_propagates_embedding_failure(client, fake_transport):
    fake_transport.on_request("POST", "/v1/embeddings", TransportError("Connection refused"))

    response = await client.post("/search", json={"query": "tides"})

    assert response.status_code == 502
    assert response.json()["error"] == "TRANSPORTERROR"


# =============================================================================
# Reconfiguration
# =============================================================================

@pytest.mark.asyncio
async def test_reconfigure_registers_and_removes_hosted_providers(client, state):
    state.reconfigure(state.settings.model_copy(update={"OPENAI_API_KEY": "sk-test", "CHAT_MODEL": "mistral"}))

    enabled = await client.get("/health")
    assert enabled.json()["services"]["providers"] == ["local", "openai"]
    assert enabled.json()["services"]["gateway"]["chat_model"] == "mistral"

    state.reconfigure(state.settings.model_copy(update={"OPENAI_API_KEY": ""}))

    disabled = await client.get("/health")
    assert disabled.json()["services"]["providers"] == ["local"]
