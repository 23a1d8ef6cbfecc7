"""Tests for the HTTP API."""

import json

import pytest
from httpx import ASGITransport, AsyncClient

from portfolio_ai.core.ai_constants import ERROR_MESSAGE
from portfolio_ai.knowledge.store import InMemoryKnowledgeStore
from portfolio_ai.main import create_app
from portfolio_ai.services.container import assemble_services

CHAT_URL = "/api/v1/ai-assistant/chat"
STATUS_URL = "/api/v1/ai-assistant/status"
FRONTEND_QUERY = "Mai frontend React TypeScript expertise"


def _parse_sse(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.split("\n\n")
        if line.startswith("data: ")
    ]


def _client_for(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestHealth:
    """Tests for service endpoints."""

    async def test_health(self, client):
        """Test health check endpoint returns healthy status."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_request_id_echoed(self, client):
        """Test the request id is propagated to the response."""
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    async def test_request_id_generated(self, client):
        """Test a request id is generated when none is sent."""
        response = await client.get("/health")

        assert response.headers["X-Request-ID"]

    async def test_metrics(self, client):
        """Test request and retrieval metrics are exposed."""
        await client.post(CHAT_URL, json={"message": FRONTEND_QUERY})

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert (
            'http_requests_total{method="POST",path="/api/v1/ai-assistant/chat",status="200"} 1'
            in response.text
        )
        assert 'retrievals_total{method="vector",reason="none"} 1' in response.text


class TestChat:
    """Tests for POST /ai-assistant/chat."""

    async def test_chat_json(self, client):
        """Test a grounded reply with sources and retrieval method."""
        response = await client.post(CHAT_URL, json={"message": FRONTEND_QUERY})

        assert response.status_code == 200
        data = response.json()
        assert data["response"].startswith("Based on Mai's technical background")
        assert data["retrieval_method"] == "vector_search"
        assert data["sources"][0]["category"] == "skills"
        assert 0.6 <= data["sources"][0]["score"] <= 1.0

    async def test_chat_with_history(self, client):
        """Test conversation history is accepted."""
        response = await client.post(
            CHAT_URL,
            json={
                "message": FRONTEND_QUERY,
                "conversation_history": [
                    {"role": "user", "content": "Hi"},
                    {"role": "assistant", "content": "Hello! Ask me about Mai."},
                ],
            },
        )

        assert response.status_code == 200

    async def test_blank_message(self, client):
        """Test whitespace-only messages are rejected with 400."""
        response = await client.post(CHAT_URL, json={"message": "   "})

        assert response.status_code == 400

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"message": ""},
            {"message": "x" * 1001},
            {"message": "hi", "conversation_history": [{"role": "system", "content": "x"}]},
            {"message": "hi", "conversation_history": [{"role": "user", "content": "x"}] * 51},
        ],
        ids=["missing", "empty", "too-long", "bad-role", "history-too-long"],
    )
    async def test_validation_errors(self, client, payload):
        """Test malformed requests are rejected with 422."""
        response = await client.post(CHAT_URL, json=payload)

        assert response.status_code == 422

    async def test_unexpected_error(self, app, client):
        """Test unexpected failures return 500 with the apology message."""

        async def broken_answer(*args, **kwargs):
            raise RuntimeError("boom")

        app.state.services.assembler.answer = broken_answer

        response = await client.post(CHAT_URL, json={"message": FRONTEND_QUERY})

        assert response.status_code == 500
        assert response.json()["detail"] == ERROR_MESSAGE

    async def test_stream(self, client):
        """Test SSE output ends with sources and done."""
        response = await client.post(CHAT_URL, json={"message": FRONTEND_QUERY, "stream": True})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _parse_sse(response.text)
        types = [event["type"] for event in events]
        assert types[-2:] == ["sources", "done"]
        assert set(types[:-2]) == {"chunk"}
        assert events[-2]["retrieval_method"] == "vector_search"

    async def test_services_not_ready(self, test_settings, metrics):
        """Test requests before startup completes get 503."""
        app = create_app(test_settings, metrics=metrics)

        async with _client_for(app) as client:
            response = await client.post(CHAT_URL, json={"message": FRONTEND_QUERY})

        assert response.status_code == 503


class TestStatus:
    """Tests for GET /ai-assistant/status."""

    async def test_degraded_without_llm(self, client):
        """Test every component is reported and a missing model degrades status."""
        response = await client.get(STATUS_URL)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["components"]["database"]["status"] == "connected"
        assert data["components"]["embeddings"]["status"] == "available"
        assert data["components"]["vector_search"]["status"] == "working"
        assert data["components"]["llm"]["status"] == "unavailable"
        assert data["statistics"]["total_documents"] == 5
        assert data["statistics"]["documents_with_embeddings"] == 5

    async def test_embedding_failure_reported(self, app, client, fake_embedder):
        """Test a failing embedding probe is an error component."""
        fake_embedder.error = RuntimeError("quota exceeded")

        data = (await client.get(STATUS_URL)).json()

        assert data["components"]["embeddings"]["status"] == "error"
        assert data["components"]["vector_search"]["status"] == "not_configured"
        assert data["status"] == "degraded"

    async def test_without_vector_index(self, test_settings, sample_fragments, metrics):
        """Test a store without an index recommends pgvector."""
        services = assemble_services(
            test_settings,
            InMemoryKnowledgeStore(sample_fragments, vector_index=False),
            metrics=metrics,
        )
        app = create_app(test_settings, services=services, metrics=metrics)

        async with _client_for(app) as client:
            data = (await client.get(STATUS_URL)).json()

        assert data["components"]["embeddings"]["status"] == "unavailable"
        assert data["components"]["vector_search"]["status"] == "not_configured"
        assert data["recommendations"]

    async def test_empty_corpus_recommends_seeding(self, test_settings, metrics):
        """Test an empty store recommends running the indexer."""
        services = assemble_services(test_settings, InMemoryKnowledgeStore(), metrics=metrics)
        app = create_app(test_settings, services=services, metrics=metrics)

        async with _client_for(app) as client:
            data = (await client.get(STATUS_URL)).json()

        assert data["statistics"]["total_documents"] == 0
        assert any("build_knowledge_index" in r for r in data["recommendations"])
