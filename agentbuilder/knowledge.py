"""
Knowledge service: turn files, URLs and instructions into searchable vectors.

    extract → knowledge_sources row (status=processing) → chunk/embed/store
            → completed (vector_count, processed_at) | failed (error_message)

A failed vectorization removes the vectors already written for that source,
so a source is either fully searchable or not searchable at all.
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, Dict, List, Optional

from agentbuilder import repository
from agentbuilder.api_keys import get_api_key_for_agent
from agentbuilder.config import settings
from agentbuilder.document_processor import (
    clean_text,
    process_file,
    source_type_for,
    validate_file,
)
from agentbuilder.errors import (
    AgentBuilderError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from agentbuilder.metrics import IngestionMetrics
from agentbuilder.prompts import instruction_summary
from agentbuilder.scraper import scrape_page
from agentbuilder.summarizer import structure_instruction
from agentbuilder.text_chunking import normalize_text
from agentbuilder.url_utils import is_valid_url
from agentbuilder.vector_store import get_vector_store

log = logging.getLogger("agentbuilder.knowledge")

MAX_SEARCH_RESULTS = 20


def _require_owned_agent(agent_id: str, user_id: Optional[str]) -> Dict[str, Any]:
    if not user_id:
        raise ValidationError("User ID is required")
    agent = repository.verify_agent_ownership(agent_id, user_id)
    if not agent:
        raise NotFoundError("Agent not found or unauthorized")
    return agent


def _vectorize_source(agent_id: str, source: Dict[str, Any], content: str,
                      metadata: Dict[str, Any], metrics: IngestionMetrics) -> Dict[str, Any]:
    """Vectorize a freshly created source and record the outcome on its row."""
    store = get_vector_store()
    try:
        result = store.process_knowledge_source(agent_id, source["id"], content, metadata, metrics)
    except Exception as e:
        log.error("Error processing vectors for source %s: %s", source["id"], e)
        store.delete_knowledge_source(source["id"])
        repository.update_knowledge_source(source["id"], {
            "status": "failed",
            "vector_count": 0,
            "error_message": str(e),
        })
        metrics.log_summary()
        raise AgentBuilderError("Failed to process knowledge vectors", status_code=500, details=str(e))

    repository.update_knowledge_source(source["id"], {
        "status": "completed",
        "vector_count": result["vector_count"],
        "processed_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    })
    metrics.log_summary()
    return result


def ingest_file(agent_id: str, user_id: str, filename: Optional[str],
                content_type: Optional[str], data: Optional[bytes]) -> Dict[str, Any]:
    """Upload path for PDF / plain text / markdown files."""
    _require_owned_agent(agent_id, user_id)
    if data is None:
        raise ValidationError("No file provided")

    content_type = validate_file(filename, content_type, len(data), settings.max_upload_mb)
    source_type = source_type_for(content_type)
    metrics = IngestionMetrics(source_type)

    with metrics.stage("extract"):
        processed = process_file(data, content_type)
    if not processed.success or not processed.text:
        raise AgentBuilderError("Failed to extract content from source", status_code=500,
                                details=processed.metadata.get("error"))

    metadata = {
        **processed.metadata,
        "fileName": filename,
        "fileSize": len(data),
        "fileType": content_type,
    }
    source = repository.add_knowledge_source(agent_id, {
        "source_type": source_type,
        "file_name": filename,
        "content": processed.text,
        "summary": json.dumps(metadata),
        "status": "processing",
    })
    result = _vectorize_source(agent_id, source, processed.text, metadata, metrics)
    log.info("Ingested file %s into agent %s (%d vectors)", filename, agent_id, result["vector_count"])
    return {
        "id": source["id"],
        "name": filename,
        "type": source_type,
        "vectorCount": result["vector_count"],
        "chunkCount": result["chunk_count"],
        "status": "completed",
    }


def ingest_url(agent_id: str, user_id: str, url: Optional[str]) -> Dict[str, Any]:
    """Scrape a web page and ingest its main text."""
    _require_owned_agent(agent_id, user_id)
    if not url:
        raise ValidationError("No URL provided")
    if not is_valid_url(url):
        raise ValidationError("Invalid URL format")

    metrics = IngestionMetrics("url")
    page = scrape_page(url, metrics)
    text = clean_text(page["text"])
    if not text:
        raise AgentBuilderError("Failed to extract content from source", status_code=500)

    metadata = {
        "url": url,
        "title": page["title"],
        "wordCount": len(text.split()),
        "characterCount": len(text),
        "scrapedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "ingestMethod": page["ingest_method"],
    }
    source = repository.add_knowledge_source(agent_id, {
        "source_type": "url",
        "source_url": url,
        "content": text,
        "summary": json.dumps(metadata),
        "status": "processing",
    })
    result = _vectorize_source(agent_id, source, text, metadata, metrics)
    return {
        "id": source["id"],
        "name": url,
        "type": "url",
        "vectorCount": result["vector_count"],
        "chunkCount": result["chunk_count"],
        "status": "completed",
    }


def ingest_instruction(agent_id: str, user_id: str, instructions: Optional[str]) -> Dict[str, Any]:
    """Knowledge update: an LLM rewrites the instruction, then it is vectorized like any source."""
    if not instructions or not user_id:
        raise ValidationError("Instructions and user ID are required")
    _require_owned_agent(agent_id, user_id)

    key = get_api_key_for_agent(agent_id)
    log.info("Knowledge update for agent %s using %s API key", agent_id, key.source)

    metrics = IngestionMetrics("instruction")
    with metrics.stage("structure"):
        metrics.inc_llm()
        structured = normalize_text(structure_instruction(instructions, key))

    file_name = f"Instruction: {instructions[:50]}..."
    source = repository.add_knowledge_source(agent_id, {
        "source_type": "instruction",
        "file_name": file_name,
        "content": structured,
        "summary": instruction_summary(instructions, datetime.datetime.now(datetime.timezone.utc).isoformat(), key.source),
        "status": "processing",
    })
    metadata = {
        "type": "user_instruction",
        "instruction": instructions,
        "fileName": file_name,
        "api_key_source": key.source,
    }
    result = _vectorize_source(agent_id, source, structured, metadata, metrics)
    return {
        "apiKeySource": key.source,
        "knowledgeSource": {
            "id": source["id"],
            "vectorCount": result["vector_count"],
            "chunkCount": result["chunk_count"],
            "content": structured[:200] + "...",
        },
    }


def format_source(source: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": source["id"],
        "name": source.get("file_name") or source.get("source_url") or "Unknown Source",
        "type": source["source_type"],
        "vectorCount": source.get("vector_count") or 0,
        "status": source["status"],
        "createdAt": source["created_at"],
        "processedAt": source.get("processed_at"),
    }


def list_sources(agent_id: str, user_id: str) -> Dict[str, Any]:
    _require_owned_agent(agent_id, user_id)
    sources = repository.get_knowledge_sources(agent_id)
    return {
        "sources": [format_source(s) for s in sources],
        "statistics": get_vector_store().get_knowledge_stats(agent_id),
    }


def delete_source(agent_id: str, source_id: str, user_id: Optional[str] = None) -> None:
    """Remove a source's vectors, then the source row."""
    if user_id is not None:
        _require_owned_agent(agent_id, user_id)
    source = repository.get_knowledge_source(source_id)
    if not source or source["agent_id"] != agent_id:
        raise NotFoundError("Knowledge source not found")
    get_vector_store().delete_knowledge_source(source_id)
    repository.delete_knowledge_source(source_id, agent_id)
    log.info("Deleted knowledge source %s from agent %s", source_id, agent_id)


def search(agent_id: str, user_id: Optional[str], query: Any, limit: int = 5,
           threshold: float = 0.7) -> List[Dict[str, Any]]:
    if not user_id:
        raise ValidationError("User ID is required")
    if not query or not isinstance(query, str):
        raise ValidationError("Query is required and must be a string")

    agent = repository.get_agent(agent_id)
    if not agent:
        raise NotFoundError("Agent not found")
    if agent["user_id"] != user_id and not agent["is_public"]:
        raise ForbiddenError("Unauthorized access to agent")

    results = get_vector_store().search_knowledge(
        agent_id, query, min(int(limit), MAX_SEARCH_RESULTS), float(threshold)
    )
    return [
        {
            "content": r["content"],
            "similarity": r["similarity"],
            "metadata": r["metadata"],
            "sourceId": r["knowledge_source_id"],
        }
        for r in results
    ]


def stats(agent_id: str, user_id: str) -> Dict[str, Any]:
    _require_owned_agent(agent_id, user_id)
    return get_vector_store().get_knowledge_stats(agent_id)
