"""
Tests for the agent-scoped vector store: chunk/embed/store, cosine search,
agent isolation, deletion, stats and embedding-provider selection.
"""

import sys
import os
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from agentbuilder import db, repository
from agentbuilder.config import settings
from agentbuilder.errors import EmbeddingError
from agentbuilder.metrics import IngestionMetrics
from agentbuilder.text_chunking import estimate_tokens
from agentbuilder.vector_store import (
    EmbeddingProvider,
    VectorStore,
    cosine_similarity,
    get_vector_store,
)
from conftest import FakeEmbedder


REFUND_TEXT = (
    "Refunds are accepted within thirty days of purchase. "
    "Customers must include the original receipt with every refund request. "
    "Store credit is offered when the receipt is missing."
)
HOURS_TEXT = (
    "The office opens at nine in the morning on weekdays. "
    "Saturday hours run from ten until two. The office is closed on Sunday."
)


def _source(agent_id, content="x"):
    return repository.add_knowledge_source(agent_id, {"source_type": "text", "content": content})


def _vectors(source_id):
    with db.session_scope() as s:
        return [
            v.to_dict()
            for v in s.query(db.KnowledgeVector).filter(db.KnowledgeVector.knowledge_source_id == source_id)
        ]


class TestCosineSimilarity:

    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


class TestProcessKnowledgeSource:

    def test_writes_one_vector_per_chunk(self, owner_agent, fake_embedder):
        store = get_vector_store()
        src = _source(owner_agent["id"], REFUND_TEXT)
        metrics = IngestionMetrics("text")
        result = store.process_knowledge_source(
            owner_agent["id"], src["id"], REFUND_TEXT, {"fileName": "refunds.txt"}, metrics,
        )
        assert result == {"success": True, "vector_count": 1, "chunk_count": 1}
        assert metrics.vectors_written == 1
        assert metrics.embedding_calls == 1

        rows = _vectors(src["id"])
        assert len(rows) == 1
        assert rows[0]["agent_id"] == owner_agent["id"]
        assert len(rows[0]["embedding"]) == FakeEmbedder.dims
        assert rows[0]["metadata"]["fileName"] == "refunds.txt"
        assert rows[0]["metadata"]["chunk_index"] == 0
        assert rows[0]["metadata"]["total_chunks"] == 1
        assert rows[0]["metadata"]["token_estimate"] == estimate_tokens(REFUND_TEXT)

    def test_batches_embeddings(self, owner_agent, fake_embedder, monkeypatch):
        monkeypatch.setattr(settings, "chunk_strategy", "fixed")
        monkeypatch.setattr(settings, "chunk_size", 100)
        monkeypatch.setattr(settings, "chunk_overlap", 0)
        content = "word " * 500  # 2500 chars → 25 windows
        src = _source(owner_agent["id"], content)
        result = get_vector_store().process_knowledge_source(owner_agent["id"], src["id"], content)
        assert result["chunk_count"] == 25
        assert result["vector_count"] == 25
        assert fake_embedder.calls == 3

    def test_empty_content_writes_nothing(self, owner_agent, fake_embedder):
        src = _source(owner_agent["id"], "")
        result = get_vector_store().process_knowledge_source(owner_agent["id"], src["id"], "")
        assert result["vector_count"] == 0
        assert fake_embedder.calls == 0

    def test_failure_propagates_after_partial_write(self, owner_agent, monkeypatch):
        monkeypatch.setattr(settings, "chunk_strategy", "fixed")
        monkeypatch.setattr(settings, "chunk_size", 100)
        monkeypatch.setattr(settings, "chunk_overlap", 0)
        store = VectorStore(embedder=FakeEmbedder(fail_on_call=2))
        content = "word " * 500
        src = _source(owner_agent["id"], content)
        with pytest.raises(EmbeddingError):
            store.process_knowledge_source(owner_agent["id"], src["id"], content)
        assert store.get_knowledge_stats(owner_agent["id"])["total_vectors"] == 10

    def test_mismatched_embedding_count(self, owner_agent):
        embedder = MagicMock()
        embedder.embed.return_value = []
        store = VectorStore(embedder=embedder)
        src = _source(owner_agent["id"], REFUND_TEXT)
        with pytest.raises(EmbeddingError, match="expected 1 vectors"):
            store.process_knowledge_source(owner_agent["id"], src["id"], REFUND_TEXT)


class TestSearchKnowledge:

    def _seed(self, agent_id):
        store = get_vector_store()
        refunds = _source(agent_id, REFUND_TEXT)
        hours = _source(agent_id, HOURS_TEXT)
        store.process_knowledge_source(agent_id, refunds["id"], REFUND_TEXT)
        store.process_knowledge_source(agent_id, hours["id"], HOURS_TEXT)
        return refunds, hours

    def test_ranks_relevant_source_first(self, owner_agent, fake_embedder):
        refunds, _ = self._seed(owner_agent["id"])
        results = get_vector_store().search_knowledge(
            owner_agent["id"], "refund receipt purchase", limit=5, threshold=0.0,
        )
        assert results[0]["knowledge_source_id"] == refunds["id"]
        sims = [r["similarity"] for r in results]
        assert sims == sorted(sims, reverse=True)

    def test_threshold_filters(self, owner_agent, fake_embedder):
        self._seed(owner_agent["id"])
        results = get_vector_store().search_knowledge(
            owner_agent["id"], "zebra giraffe", limit=5, threshold=0.99,
        )
        assert results == []

    def test_limit(self, owner_agent, fake_embedder):
        self._seed(owner_agent["id"])
        results = get_vector_store().search_knowledge(owner_agent["id"], "office", limit=1, threshold=0.0)
        assert len(results) == 1

    def test_agent_isolation(self, owner_agent, fake_embedder):
        self._seed(owner_agent["id"])
        other = repository.create_agent("user-2", {"name": "Other"})
        assert get_vector_store().search_knowledge(other["id"], "refund", threshold=0.0) == []

    def test_no_vectors_skips_embedding(self, owner_agent, fake_embedder):
        assert get_vector_store().search_knowledge(owner_agent["id"], "anything") == []
        assert fake_embedder.calls == 0


class TestDeleteAndStats:

    def test_delete_removes_only_that_source(self, owner_agent, fake_embedder):
        store = get_vector_store()
        a = _source(owner_agent["id"], REFUND_TEXT)
        b = _source(owner_agent["id"], HOURS_TEXT)
        store.process_knowledge_source(owner_agent["id"], a["id"], REFUND_TEXT)
        store.process_knowledge_source(owner_agent["id"], b["id"], HOURS_TEXT)

        assert store.delete_knowledge_source(a["id"]) == {"success": True, "deleted": 1}
        stats = store.get_knowledge_stats(owner_agent["id"])
        assert stats == {"total_vectors": 1, "source_count": 1, "source_stats": {b["id"]: 1}}

    def test_update_replaces_vectors(self, owner_agent, fake_embedder):
        store = get_vector_store()
        src = _source(owner_agent["id"], REFUND_TEXT)
        store.process_knowledge_source(owner_agent["id"], src["id"], REFUND_TEXT)
        store.update_knowledge_source(owner_agent["id"], src["id"], HOURS_TEXT)
        rows = _vectors(src["id"])
        assert [r["content"] for r in rows] == [HOURS_TEXT]

    def test_batch_process_reports_failures(self, owner_agent):
        store = VectorStore(embedder=FakeEmbedder(fail_on_call=2))
        a = _source(owner_agent["id"], REFUND_TEXT)
        b = _source(owner_agent["id"], HOURS_TEXT)
        results = store.batch_process_sources(owner_agent["id"], [
            {"id": a["id"], "content": REFUND_TEXT},
            {"id": b["id"], "content": HOURS_TEXT},
        ])
        assert results[0]["success"] is True
        assert results[1]["success"] is False
        assert "Failed to generate embedding" in results[1]["error"]


class TestEmbeddingProvider:

    def test_no_provider(self):
        provider = EmbeddingProvider(openai_api_key="", google_api_key="")
        assert not provider.available
        assert provider.provider_name == "none"
        with pytest.raises(EmbeddingError, match="no embedding provider"):
            provider.embed(["hello"])

    def test_empty_batch(self):
        assert EmbeddingProvider(openai_api_key="", google_api_key="").embed([]) == []

    def test_gemini_selected_without_openai(self):
        provider = EmbeddingProvider(openai_api_key="", google_api_key="g-key")
        assert provider.provider_name == "gemini"

    @patch("agentbuilder.vector_store.OpenAI")
    def test_openai_embeddings_follow_input_order(self, mock_openai):
        client = mock_openai.return_value
        client.embeddings.create.return_value = SimpleNamespace(data=[
            SimpleNamespace(index=1, embedding=[0.0, 1.0]),
            SimpleNamespace(index=0, embedding=[1.0, 0.0]),
        ])
        provider = EmbeddingProvider(openai_api_key="sk-test", google_api_key="")
        assert provider.provider_name == "openai"
        assert provider.dimension == settings.embedding_dimensions

        vectors = provider.embed(["  first  ", "second"])
        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["input"] == ["first", "second"]
        assert kwargs["model"] == settings.embedding_model

    @patch("agentbuilder.vector_store.OpenAI")
    def test_openai_errors_are_wrapped(self, mock_openai):
        mock_openai.return_value.embeddings.create.side_effect = RuntimeError("quota")
        provider = EmbeddingProvider(openai_api_key="sk-test", google_api_key="")
        with pytest.raises(EmbeddingError, match="quota"):
            provider.embed(["hello"])
