import hashlib
import math
import re
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from agentbuilder import chat, db, ingest_cache, rate_limiter, vector_store  # noqa: E402
from agentbuilder.config import settings  # noqa: E402

_WORD = re.compile(r"[a-z0-9]+")


class FakeEmbedder:
    """Deterministic hashed bag-of-words embeddings (64 dims, L2-normalized)."""

    dims = 64

    def __init__(self, fail_on_call=None):
        self.calls = 0
        self.fail_on_call = fail_on_call

    available = True
    provider_name = "fake"

    @property
    def dimension(self):
        return self.dims

    def embed(self, texts):
        self.calls += 1
        if self.fail_on_call is not None and self.calls >= self.fail_on_call:
            from agentbuilder.errors import EmbeddingError
            raise EmbeddingError("Failed to generate embedding: boom")
        return [self._vector(t) for t in texts]

    def _vector(self, text):
        vec = [0.0] * self.dims
        for word in _WORD.findall(text.lower()):
            h = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16)
            vec[h % self.dims] += 1.0
        norm = math.sqrt(sum(v * v for v in vec)) or 1.0
        return [v / norm for v in vec]


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Fresh database, ingest cache, limiter, agent cache and fake embedder per test."""
    monkeypatch.setattr(settings, "database_path", tmp_path / "agentbuilder.db")
    monkeypatch.setattr(settings, "ingest_cache_path", tmp_path / "ingest_cache.db")
    monkeypatch.setattr(settings, "environment", "test")
    monkeypatch.setattr(settings, "openai_api_key", "sk-platform-test")
    monkeypatch.setattr(settings, "anthropic_api_key", "")
    monkeypatch.setattr(settings, "google_api_key", "")
    monkeypatch.setattr(settings, "scraper_api_key", "")
    monkeypatch.setattr(settings, "encryption_secret_key", "test-encryption-secret")
    monkeypatch.setattr(settings, "redis_url", "")
    monkeypatch.setattr(settings, "chunk_strategy", "sentence")
    monkeypatch.setattr(settings, "starting_credits", 0)

    rate_limiter.set_rate_limiter(rate_limiter.RateLimiter())
    chat.invalidate_agent_cache()
    vector_store.set_vector_store(vector_store.VectorStore(embedder=FakeEmbedder()))
    yield
    vector_store.set_vector_store(None)
    rate_limiter.set_rate_limiter(None)
    chat.invalidate_agent_cache()
    db.close_db()
    ingest_cache.close_ingest_cache()


@pytest.fixture
def fake_embedder():
    embedder = FakeEmbedder()
    vector_store.set_vector_store(vector_store.VectorStore(embedder=embedder))
    return embedder


@pytest.fixture
def owner_agent():
    from agentbuilder import repository
    return repository.create_agent("user-1", {"name": "Support Bot", "purpose": "website", "tone": "professional"})


def make_pdf(text="Hello from a PDF document.", title="Quarterly Notes", author="Ada"):
    import fitz

    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    doc.set_metadata({"title": title, "author": author})
    data = doc.tobytes()
    doc.close()
    return data
