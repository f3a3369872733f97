"""Integration tests for API endpoints.

Components are built with in-memory storage, keyword embeddings and
scripted providers, so no external service is needed.
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from kbqa.api.app import UNAVAILABLE_MESSAGE, create_app
from kbqa.api.dependencies import build_components
from kbqa.config import Config, QuotaConfig
from kbqa.errors import ProviderError, RetrievalUnavailableError
from kbqa.safety.guard import POLICY_REFUSAL_MESSAGE
from kbqa.storage.vectorstore import InMemoryVectorStore

DL_TEXT = "Deep learning uses multiple layers of neural networks to learn representations."
DB_TEXT = "PostgreSQL stores rows in tables. The database supports indexes."


def parse_sse(body):
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        event_line, data_line = block.split("\n")
        events.append((event_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return events


@pytest.fixture
def make_client(embeddings, make_provider):
    """Factory for a test client over freshly built components."""
    clients = []

    def factory(answers=("Deep learning stacks layers.",), config=None, fallback=None):
        components = build_components(
            config or Config(),
            embeddings=embeddings,
            vector_store=InMemoryVectorStore(),
            primary=make_provider(list(answers), label="primary"),
            fallback=fallback,
        )
        client = TestClient(create_app(components))
        client.__enter__()
        clients.append(client)
        return client, components

    yield factory

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    """Client with two ingested documents."""
    client, _ = make_client()
    client.post("/ingest", json={"source_path": "docs/dl.md", "text": DL_TEXT})
    client.post("/ingest", json={"source_path": "docs/db.md", "text": DB_TEXT})
    return client


class TestHealth:
    """Test suite for the health endpoint."""

    def test_healthy(self, make_client):
        """Test health reports healthy after a clean startup."""
        client, _ = make_client()
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestKnowledgeEndpoints:
    """Test suite for ingest, list and delete."""

    def test_ingest_and_skip(self, make_client):
        """Test first ingest indexes and the second skips."""
        client, _ = make_client()
        body = {"source_path": "docs/dl.md", "text": DL_TEXT}

        first = client.post("/ingest", json=body)
        second = client.post("/ingest", json=body)

        assert first.status_code == 200
        assert first.json()["status"] == "indexed"
        assert second.json() == {
            "source_path": "docs/dl.md",
            "status": "skipped",
            "chunk_count": 1,
            "chunks_deleted": 0,
        }

    def test_list(self, client):
        """Test sources are listed with counts."""
        response = client.get("/knowledge")

        assert response.status_code == 200
        assert response.json() == {
            "sources": [
                {"source_path": "docs/db.md", "chunk_count": 1},
                {"source_path": "docs/dl.md", "chunk_count": 1},
            ],
            "total_chunks": 2,
        }

    def test_delete(self, client):
        """Test deleting a source, then deleting it again."""
        response = client.delete("/knowledge", params={"source_path": "docs/dl.md"})

        assert response.status_code == 200
        assert response.json() == {"source_path": "docs/dl.md", "chunks_deleted": 1}
        assert client.delete("/knowledge", params={"source_path": "docs/dl.md"}).status_code == 404

    def test_blank_text(self, make_client):
        """Test whitespace-only text is rejected."""
        client, _ = make_client()
        response = client.post("/ingest", json={"source_path": "docs/x.md", "text": "   "})

        assert response.status_code == 400

    def test_missing_field(self, make_client):
        """Test malformed bodies are rejected with 400."""
        client, _ = make_client()
        response = client.post("/ingest", json={"source_path": "docs/x.md"})

        assert response.status_code == 400
        assert response.json()["error"] == "Malformed request"

    def test_quota_exceeded(self, make_client):
        """Test oversized documents are rejected with 413."""
        client, _ = make_client(config=Config(quota=QuotaConfig(record_quota=1)))
        text = "\n\n".join(DL_TEXT * 5 for _ in range(5))
        response = client.post("/ingest", json={"source_path": "docs/big.md", "text": text})

        assert response.status_code == 413


class TestSearchEndpoint:
    """Test suite for /search."""

    def test_search(self, client):
        """Test hybrid search ranks the matching document first."""
        response = client.post("/search", json={"query": "deep learning"})

        assert response.status_code == 200
        data = response.json()
        assert data["query"] == "deep learning"
        assert data["results"][0]["source_path"] == "docs/dl.md"
        assert data["results"][0]["provenance"] == ["semantic", "lexical"]
        assert "retrieval_time_ms" in data

    def test_blank_query(self, client):
        """Test a blank query is rejected with 400."""
        assert client.post("/search", json={"query": "   "}).status_code == 400

    def test_retrieval_outage(self, make_client):
        """Test a retrieval outage is reported as 503."""
        client, components = make_client()
        components.service.searcher = Mock()
        components.service.searcher.search = AsyncMock(
            side_effect=RetrievalUnavailableError({"semantic": OSError(), "lexical": OSError()})
        )

        response = client.post("/search", json={"query": "deep learning"})

        assert response.status_code == 503
        assert response.json() == {"error": UNAVAILABLE_MESSAGE}


class TestChatEndpoint:
    """Test suite for /chat."""

    def test_stream_events(self, client):
        """Test the SSE stream carries every stage in order."""
        response = client.post(
            "/chat", json={"query": "What is deep learning?", "session_id": "s1"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(response.text)
        names = [name for name, _ in events]
        assert names[0] == "start"
        assert names[1] == "retrieval_complete"
        assert names[-2:] == ["generation_complete", "complete"]
        assert set(names[2:-2]) == {"generation_delta"}

        retrieval = events[1][1]
        assert retrieval["chunks"][0]["source_path"] == "docs/dl.md"
        assert retrieval["safety"]["redaction_count"] == 0

        complete = dict(events)["generation_complete"]
        assert complete["answer"] == "Deep learning stacks layers."
        assert "".join(d["delta"] for n, d in events if n == "generation_delta") == complete["answer"]
        assert complete["blocked"] is False
        assert complete["citations"][0]["source_path"] == "docs/dl.md"
        assert complete["metadata"]["provider_label"] == "primary"

    def test_blocked_answer(self, make_client):
        """Test a sensitive answer is replaced by the blocked message."""
        client, _ = make_client(answers=["The card is 4111111111111111."])
        response = client.post("/chat", json={"query": "What is on file?", "session_id": "s1"})

        complete = dict(parse_sse(response.text))["generation_complete"]
        assert complete["blocked"] is True
        assert "4111111111111111" not in response.text

    def test_missing_session(self, client):
        """Test a request without session_id is rejected with 400."""
        response = client.post("/chat", json={"query": "What is deep learning?"})

        assert response.status_code == 400

    def test_blank_query(self, client):
        """Test a blank query is rejected with 400."""
        response = client.post("/chat", json={"query": "  ", "session_id": "s1"})

        assert response.status_code == 400

    def test_policy_violation(self, client):
        """Test restricted queries are refused with 403."""
        response = client.post(
            "/chat", json={"query": "What is my bank account number?", "session_id": "s1"}
        )

        assert response.status_code == 403
        assert response.json() == {"error": POLICY_REFUSAL_MESSAGE}

    def test_retrieval_outage(self, make_client):
        """Test a retrieval outage ends the stream with an error event."""
        client, components = make_client()
        components.service.searcher = Mock()
        components.service.searcher.search = AsyncMock(
            side_effect=RetrievalUnavailableError({"semantic": OSError(), "lexical": OSError()})
        )

        response = client.post("/chat", json={"query": "What is deep learning?", "session_id": "s1"})
        events = parse_sse(response.text)

        assert events[-1] == (
            "error",
            {"error": "The assistant is temporarily unavailable. Please try again shortly.",
             "kind": "retrieval_unavailable"},
        )

    def test_generation_outage(self, make_client):
        """Test a provider failure without fallback ends the stream with an error event."""
        client, _ = make_client(answers=[ProviderError("down")])
        response = client.post("/chat", json={"query": "What is deep learning?", "session_id": "s1"})
        events = parse_sse(response.text)

        assert events[-1][0] == "error"
        assert events[-1][1]["kind"] == "generation_unavailable"

    def test_fallback_answer(self, make_client, make_provider):
        """Test an empty primary answer is served by the fallback."""
        fallback = make_provider(["Fallback says layers."], label="fallback")
        client, _ = make_client(answers=[""], fallback=fallback)
        response = client.post("/chat", json={"query": "What is deep learning?", "session_id": "s1"})

        complete = dict(parse_sse(response.text))["generation_complete"]
        assert complete["answer"] == "Fallback says layers."
        assert complete["metadata"]["provider_label"] == "fallback"
        assert fallback.calls == 1
