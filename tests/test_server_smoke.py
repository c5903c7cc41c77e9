"""
Smoke test: hit every mneme-server endpoint and verify correct responses.

Uses a mock generation backend and the in-memory cache (no API keys or
Redis needed). Runs via: pytest tests/test_server_smoke.py -v
"""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from starlette.testclient import TestClient


# ============================================================================
# MOCK PROVIDERS (same pattern as test_pipeline.py)
# ============================================================================

class MockGenerator:
    def __init__(self):
        self.call_count = 0

    def complete(self, prompt: str) -> str:
        self.call_count += 1
        return f"Every value has a single owner. (answer {self.call_count})"


GENERATOR = MockGenerator()
OWNER = "smoke-user"


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(scope="module")
def client():
    """TestClient wired to the real FastAPI app, but with a mock generator."""
    import mneme
    from mneme.config import MnemeConfig
    from mneme.core.backends import MemoryCacheBackend
    from mneme.core.graph import SqliteRelationshipStore
    from mneme.core.store import SqliteMemoryStore

    tmpdir = tempfile.mkdtemp(prefix="mneme_smoke_")
    db_path = Path(tmpdir) / "smoke.db"

    notes = SqliteMemoryStore(db_path)
    edges = SqliteRelationshipStore(db_path)
    ownership = notes.add_note(
        OWNER, "Rust ownership",
        "Every value in Rust has a single owner. Moving a value transfers ownership.",
        importance=8,
    )
    borrow = notes.add_note(OWNER, "Borrow checker", "References must not outlive their data.")
    edges.add_edge(ownership, borrow)

    config = MnemeConfig(db_path=db_path, intent_expansion_enabled=False)
    mneme.init(config, generator=GENERATOR, cache_backend=MemoryCacheBackend())

    # Patch _init_mneme so the app lifespan doesn't re-init with real providers
    with patch("mneme.server.main._init_mneme"):
        from mneme.server.main import app
        with TestClient(app) as tc:
            yield tc


HEADERS = {"X-Owner-Id": OWNER}  # settings.api_key defaults to "" (no auth)


# ============================================================================
# 1. HEALTH
# ============================================================================

class TestHealth:
    def test_health(self, client):
        """GET /v1/health: should return healthy (no auth)."""
        r = client.get("/v1/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert data["cache"] == "ok"
        assert "version" in data


# ============================================================================
# 2. ASK
# ============================================================================

class TestAsk:
    def test_post_ask(self, client):
        """POST /v1/ask: answer with sources and related notes."""
        r = client.post("/v1/ask", json={
            "question": "What did I learn about Rust ownership?",
        }, headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["answer"].startswith("Every value has a single owner.")
        assert data["cached"] is False
        assert [s["title"] for s in data["sources"]] == ["Rust ownership"]
        assert len(data["related_note_ids"]) == 1
        assert 0.0 < data["confidence"] <= 1.0

    def test_get_ask_rephrased_is_cached(self, client):
        """GET /v1/ask?q=: a rephrasing of the last question hits the cache."""
        calls = GENERATOR.call_count
        r = client.get("/v1/ask", params={"q": "Tell me about Rust's ownership model"}, headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["cached"] is True
        assert data["question"] == "Tell me about Rust's ownership model"
        assert GENERATOR.call_count == calls

    def test_no_memories(self, client):
        """POST /v1/ask: nothing relevant yields the fixed message."""
        from mneme.core.synthesis import NO_MEMORIES_ANSWER

        r = client.post("/v1/ask", json={"question": "kubernetes operators"}, headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["answer"] == NO_MEMORIES_ANSWER
        assert data["sources"] == []
        assert data["confidence"] == 0.0

    def test_other_owner_sees_nothing(self, client):
        r = client.post("/v1/ask", json={"question": "Rust ownership"}, headers={"X-Owner-Id": "someone-else"})
        assert r.status_code == 200
        assert r.json()["sources"] == []

    def test_missing_owner(self, client):
        r = client.post("/v1/ask", json={"question": "Rust ownership"})
        assert r.status_code == 400

    @pytest.mark.parametrize("question", ["hi", "x" * 501])
    def test_question_length(self, client, question):
        r = client.post("/v1/ask", json={"question": question}, headers=HEADERS)
        assert r.status_code == 422

    def test_blank_question(self, client):
        """Whitespace passes the length check but not pipeline validation."""
        r = client.post("/v1/ask", json={"question": "     "}, headers=HEADERS)
        assert r.status_code == 422

    def test_get_short_question(self, client):
        r = client.get("/v1/ask", params={"q": "hi"}, headers=HEADERS)
        assert r.status_code == 422

    def test_max_sources_bounds(self, client):
        r = client.post("/v1/ask", json={"question": "Rust ownership", "max_sources": 21}, headers=HEADERS)
        assert r.status_code == 422


# ============================================================================
# 3. CACHE ADMINISTRATION
# ============================================================================

class TestCache:
    NAMESPACE = f"answers@{OWNER}"

    def test_stats(self, client):
        """GET /v1/cache/{namespace}/stats"""
        r = client.get(f"/v1/cache/{self.NAMESPACE}/stats", headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["namespace"] == self.NAMESPACE
        assert data["entry_count"] >= 1
        assert data["enabled"] is True
        assert data["threshold"] == pytest.approx(0.70)

    def test_clear(self, client):
        """DELETE /v1/cache/{namespace}: then the next ask regenerates."""
        r = client.delete(f"/v1/cache/{self.NAMESPACE}", headers=HEADERS)
        assert r.status_code == 200
        assert r.json()["removed"] > 0

        r = client.get(f"/v1/cache/{self.NAMESPACE}/stats", headers=HEADERS)
        assert r.json()["entry_count"] == 0

        r = client.post("/v1/ask", json={"question": "What did I learn about Rust ownership?"}, headers=HEADERS)
        assert r.json()["cached"] is False

    def test_invalid_namespace(self, client):
        assert client.delete("/v1/cache/bad:ns*", headers=HEADERS).status_code == 400
        assert client.get("/v1/cache/bad:ns*/stats", headers=HEADERS).status_code == 400


# ============================================================================
# 4. AUTH
# ============================================================================

class TestAuth:
    def test_api_key_enforced(self, client, monkeypatch):
        from mneme.server.config import settings

        monkeypatch.setattr(settings, "api_key", "s3cret")

        r = client.post("/v1/ask", json={"question": "Rust ownership"}, headers=HEADERS)
        assert r.status_code == 401

        r = client.post("/v1/ask", json={"question": "Rust ownership"},
                        headers={**HEADERS, "X-Mneme-Key": "wrong"})
        assert r.status_code == 403

        r = client.post("/v1/ask", json={"question": "Rust ownership"},
                        headers={**HEADERS, "X-Mneme-Key": "s3cret"})
        assert r.status_code == 200

        # health stays public
        assert client.get("/v1/health").status_code == 200
