"""
Knowledge Vector Store
======================
Per-agent vector store backed by the ``knowledge_vectors`` table:
- Source-level chunking (sentence-aware or fixed window) with overlap
- Batched embedding generation
- Cosine similarity search with threshold + top-k
- Agent isolation: every query is scoped to one agent_id

Architecture:
  Source Text → Chunking → Embedding (batches of 10) → knowledge_vectors → Cosine Similarity Search
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional

from openai import OpenAI
from sqlalchemy import func

from agentbuilder import db
from agentbuilder.config import settings
from agentbuilder.errors import EmbeddingError
from agentbuilder.metrics import IngestionMetrics
from agentbuilder.text_chunking import (
    TextChunk,
    chunk_text,
    estimate_tokens,
    get_chunk_config,
    split_into_chunks,
)

log = logging.getLogger("agentbuilder.vector_store")


# ── Embedding Provider ────────────────────────────────────────────────────────

class EmbeddingProvider:
    """Handles embedding generation with fallback support.

    Priority: OpenAI text-embedding-3-small (1536d) → Gemini embedding → None
    """

    def __init__(self, openai_api_key: Optional[str] = None, google_api_key: Optional[str] = None):
        self._openai_client = None
        self._google_api_key = ""
        self._dimension = 0
        self._provider = "none"
        self._init_provider(
            settings.openai_api_key if openai_api_key is None else openai_api_key,
            settings.google_api_key if google_api_key is None else google_api_key,
        )

    def _init_provider(self, openai_api_key: str, google_api_key: str) -> None:
        if openai_api_key:
            self._openai_client = OpenAI(
                api_key=openai_api_key,
                timeout=settings.llm_timeout,
                max_retries=settings.llm_max_retries,
            )
            self._provider = "openai"
            self._dimension = settings.embedding_dimensions
            log.info("Using OpenAI %s (%dd)", settings.embedding_model, self._dimension)
            return

        if google_api_key:
            self._google_api_key = google_api_key
            self._provider = "gemini"
            log.info("Using Gemini gemini-embedding-001")
            return

        log.warning("No embedding provider available. Knowledge vectorization disabled.")

    @property
    def available(self) -> bool:
        return self._provider != "none"

    @property
    def provider_name(self) -> str:
        return self._provider

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of texts. Returns one vector per input, in order."""
        if not texts:
            return []
        if not self.available:
            raise EmbeddingError("Failed to generate embedding: no embedding provider configured")

        texts = [t.strip()[:8000] for t in texts]
        try:
            if self._provider == "openai":
                return self._embed_openai(texts)
            return self._embed_gemini(texts)
        except EmbeddingError:
            raise
        except Exception as e:
            log.error("Embedding error (%s): %s", self._provider, e)
            raise EmbeddingError(f"Failed to generate embedding: {e}")

    def _embed_openai(self, texts: List[str]) -> List[List[float]]:
        resp = self._openai_client.embeddings.create(
            model=settings.embedding_model,
            input=texts,
            dimensions=settings.embedding_dimensions,
        )
        return [item.embedding for item in sorted(resp.data, key=lambda d: d.index)]

    def _embed_gemini(self, texts: List[str]) -> List[List[float]]:
        import google.generativeai as genai

        genai.configure(api_key=self._google_api_key)
        results = []
        for text in texts:
            result = genai.embed_content(
                model="models/gemini-embedding-001",
                content=text,
                task_type="retrieval_document",
            )
            results.append(result["embedding"])
        if results:
            self._dimension = len(results[0])
        return results


# ── Vector Store ──────────────────────────────────────────────────────────────

def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Compute cosine similarity between two vectors."""
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(x * x for x in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


class VectorStore:
    """Agent-scoped vector store with cosine similarity search."""

    def __init__(self, embedder: Optional[EmbeddingProvider] = None):
        self.embedder = embedder if embedder is not None else EmbeddingProvider()

    @property
    def provider(self) -> str:
        return self.embedder.provider_name

    def split(self, content: str) -> List[TextChunk]:
        if settings.chunk_strategy == "fixed":
            return split_into_chunks(content, settings.chunk_size, settings.chunk_overlap)
        size, overlap = get_chunk_config(len(content))
        return chunk_text(content, size, overlap)

    def process_knowledge_source(self, agent_id: str, source_id: str, content: str,
                                 metadata: Optional[Dict[str, Any]] = None,
                                 metrics: Optional[IngestionMetrics] = None) -> Dict[str, Any]:
        """Chunk → embed → store one knowledge source.

        Vectors already written stay in place if a later batch fails; the
        caller removes them when it marks the source failed.
        """
        metrics = metrics or IngestionMetrics()
        metadata = metadata or {}
        with metrics.stage("chunk"):
            chunks = self.split(content or "")
        metrics.chunks = len(chunks)
        log.info("Processing %d chunks for source %s", len(chunks), source_id)

        batch_size = settings.embedding_batch_size
        written = 0
        with metrics.stage("embed_store"):
            for i in range(0, len(chunks), batch_size):
                batch = chunks[i:i + batch_size]
                metrics.inc_embedding()
                embeddings = self.embedder.embed([c["text"] for c in batch])
                if len(embeddings) != len(batch):
                    raise EmbeddingError(
                        f"Failed to generate embedding: expected {len(batch)} vectors, got {len(embeddings)}"
                    )

                now = db.utcnow()
                rows = []
                for chunk, emb in zip(batch, embeddings):
                    chunk_meta = {
                        **metadata,
                        "chunk_index": chunk["chunk_index"],
                        "total_chunks": len(chunks),
                        "start_char": chunk["start_char"],
                        "end_char": chunk["end_char"],
                        "token_estimate": estimate_tokens(chunk["text"]),
                    }
                    rows.append(db.KnowledgeVector(
                        agent_id=agent_id,
                        knowledge_source_id=source_id,
                        content=chunk["text"],
                        embedding=emb,
                        meta=chunk_meta,
                        created_at=now,
                    ))
                with db.session_scope() as s:
                    s.add_all(rows)
                written += len(rows)
        metrics.vectors_written = written

        return {"success": True, "vector_count": written, "chunk_count": len(chunks)}

    def search_knowledge(self, agent_id: str, query: str, limit: int = 5,
                         threshold: float = 0.7) -> List[Dict[str, Any]]:
        """Semantic search: embed query → cosine similarity against the agent's vectors."""
        with db.session_scope() as s:
            rows = [
                v.to_dict()
                for v in s.query(db.KnowledgeVector).filter(db.KnowledgeVector.agent_id == agent_id)
            ]
        if not rows:
            return []

        query_emb = self.embedder.embed([query])[0]

        results: List[Dict[str, Any]] = []
        for row in rows:
            emb = row["embedding"]
            if not isinstance(emb, list) or not emb:
                continue
            sim = cosine_similarity(query_emb, emb)
            if sim >= threshold:
                results.append({
                    "id": row["id"],
                    "knowledge_source_id": row["knowledge_source_id"],
                    "content": row["content"],
                    "metadata": row["metadata"],
                    "similarity": sim,
                })

        results.sort(key=lambda r: r["similarity"], reverse=True)
        return results[:max(int(limit), 0)]

    def delete_knowledge_source(self, source_id: str) -> Dict[str, Any]:
        with db.session_scope() as s:
            n = (
                s.query(db.KnowledgeVector)
                .filter(db.KnowledgeVector.knowledge_source_id == source_id)
                .delete(synchronize_session=False)
            )
        return {"success": True, "deleted": n}

    def update_knowledge_source(self, agent_id: str, source_id: str, new_content: str,
                                metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.delete_knowledge_source(source_id)
        return self.process_knowledge_source(agent_id, source_id, new_content, metadata)

    def get_knowledge_stats(self, agent_id: str) -> Dict[str, Any]:
        with db.session_scope() as s:
            rows = (
                s.query(db.KnowledgeVector.knowledge_source_id, func.count(db.KnowledgeVector.id))
                .filter(db.KnowledgeVector.agent_id == agent_id)
                .group_by(db.KnowledgeVector.knowledge_source_id)
                .all()
            )
        source_stats = {source_id: int(n) for source_id, n in rows}
        return {
            "total_vectors": sum(source_stats.values()),
            "source_count": len(source_stats),
            "source_stats": source_stats,
        }

    def batch_process_sources(self, agent_id: str, sources: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        results = []
        for source in sources:
            try:
                result = self.process_knowledge_source(
                    agent_id, source["id"], source.get("content", ""), source.get("metadata"),
                )
                results.append({"source_id": source["id"], **result})
            except Exception as e:
                log.error("Batch vectorization failed for source %s: %s", source.get("id"), e)
                results.append({"source_id": source.get("id"), "success": False, "error": str(e)})
        return results


# ── Global singleton ──────────────────────────────────────────────────────────

_vector_store: Optional[VectorStore] = None


def get_vector_store() -> VectorStore:
    global _vector_store
    if _vector_store is None:
        _vector_store = VectorStore()
    return _vector_store


def set_vector_store(store: Optional[VectorStore]) -> None:
    global _vector_store
    _vector_store = store
