"""
Chat with an agent: rate limit, agent lookup, knowledge retrieval, prompt
assembly, completion, persistence, analytics and credits.
"""

from __future__ import annotations

import datetime
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from agentbuilder import prompts, repository
from agentbuilder.api_keys import get_api_key_for_agent
from agentbuilder.config import settings
from agentbuilder.errors import (
    AgentBuilderError,
    InsufficientCreditsError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from agentbuilder.llm import complete_chat
from agentbuilder.rate_limiter import check_rate_limit
from agentbuilder.vector_store import get_vector_store

log = logging.getLogger("agentbuilder.chat")

HISTORY_MESSAGES = 10
FULL_DOCUMENT_CHARS = 3000
MAX_HISTORY_LIMIT = 100


@dataclass
class ChatRequest:
    message: Optional[str]
    session_id: Optional[str]
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    use_knowledge_base: bool = True
    knowledge_search_threshold: float = 0.7
    knowledge_result_limit: int = 3


@dataclass
class ChatResult:
    body: Dict[str, Any]
    headers: Dict[str, str]


# ── Agent cache ───────────────────────────────────────────────────────────────

_agent_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}
_agent_cache_lock = threading.Lock()


def _cached_agent(agent_id: str) -> Optional[Dict[str, Any]]:
    now = time.time()
    with _agent_cache_lock:
        hit = _agent_cache.get(agent_id)
        if hit and now - hit[0] < settings.agent_cache_ttl:
            return hit[1]
    agent = repository.get_agent(agent_id)
    if agent:
        with _agent_cache_lock:
            _agent_cache[agent_id] = (now, agent)
    return agent


def invalidate_agent_cache(agent_id: Optional[str] = None) -> None:
    with _agent_cache_lock:
        if agent_id is None:
            _agent_cache.clear()
        else:
            _agent_cache.pop(agent_id, None)


# ── Prompt assembly ───────────────────────────────────────────────────────────

def generate_system_prompt(agent: Dict[str, Any], knowledge_context: str = "") -> str:
    prompt = prompts.agent_system_prompt(agent)
    if knowledge_context:
        prompt += f"\n{knowledge_context}"
    return prompt


def build_history(conversations: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Oldest-first user/assistant turns, capped to the most recent messages."""
    ordered = sorted(conversations, key=lambda c: c["created_at"])
    messages: List[Dict[str, str]] = []
    for conv in ordered:
        messages.append({"role": "user", "content": conv["user_message"]})
        messages.append({"role": "assistant", "content": conv["agent_response"]})
    return messages[-HISTORY_MESSAGES:]


def retrieve_knowledge(agent_id: str, message: str, sources: List[Dict[str, Any]],
                       limit: int, threshold: float) -> Tuple[str, List[Dict[str, Any]], bool]:
    """Knowledge context for a message: vector hits, else the full documents."""
    results = get_vector_store().search_knowledge(agent_id, message, limit, threshold)
    retrieved: List[Dict[str, Any]] = []

    if results:
        for r in results:
            meta = r.get("metadata") or {}
            retrieved.append({
                "sourceId": r["knowledge_source_id"],
                "sourceName": meta.get("fileName") or meta.get("url") or "Uploaded Document",
                "similarity": r["similarity"],
                "relevanceScore": f"{r['similarity'] * 100:.1f}",
                "content": r["content"][:200] + "...",
            })
        log.info("Found %d relevant knowledge chunks for agent %s", len(results), agent_id)
        return prompts.knowledge_context(results), retrieved, True

    log.info("Vector search found nothing for agent %s, using full documents", agent_id)
    documents = []
    for source in sources:
        name = source.get("file_name") or source.get("source_url") or "Uploaded Document"
        content = source.get("content") or ""
        if len(content) > FULL_DOCUMENT_CHARS:
            body = content[:FULL_DOCUMENT_CHARS] + "\n\n[... content truncated ...]"
        else:
            body = content
        documents.append({"name": name, "content": body})
        retrieved.append({
            "sourceId": source["id"],
            "sourceName": name,
            "similarity": 1.0,
            "relevanceScore": "100.0",
            "content": content[:200] + "...",
        })
    return prompts.full_document_context(documents), retrieved, True


# ── Handlers ──────────────────────────────────────────────────────────────────

def _validate(req: ChatRequest) -> None:
    if not req.message or not req.session_id:
        raise ValidationError("Message and sessionId are required")
    if len(req.message) > settings.chat_max_message_chars:
        raise ValidationError(
            f"Message too long. Maximum {settings.chat_max_message_chars} characters."
        )


def _check_rate(req: ChatRequest) -> None:
    result = check_rate_limit(f"chat:{req.user_id or req.session_id}", settings.chat_rate_limit, 60)
    if not result.allowed:
        raise RateLimitError(
            "Rate limit exceeded. Please try again later.",
            headers=result.headers(),
        )


def handle_chat(agent_id: str, req: ChatRequest) -> ChatResult:
    start = time.time()
    _validate(req)
    _check_rate(req)

    try:
        return _handle_chat(agent_id, req, start)
    except AgentBuilderError as e:
        if e.status_code in (401, 429) or e.status_code >= 500:
            _log_failure(agent_id, req, e, start)
        raise
    except Exception as e:
        log.exception("Chat API error for agent %s", agent_id)
        _log_failure(agent_id, req, e, start)
        raise AgentBuilderError("An unexpected error occurred.", status_code=500, details=str(e))


def _handle_chat(agent_id: str, req: ChatRequest, start: float) -> ChatResult:
    agent = _cached_agent(agent_id)
    if not agent:
        raise NotFoundError(f"Agent {agent_id} not found")
    if not agent["is_active"]:
        raise ValidationError("Agent is currently inactive")
    if req.user_id and agent["use_platform_key"] and not repository.has_credits(req.user_id, 1):
        raise InsufficientCreditsError(
            "Insufficient credits. Please top up your account or configure your own API key."
        )

    new_session = not repository.check_conversation_exists(agent_id, req.session_id)
    if new_session:
        log.info("New chat session %s for agent %s", req.session_id, agent_id)
        recent = []
    else:
        recent = repository.get_conversations(agent_id, req.session_id, HISTORY_MESSAGES)
    sources = repository.get_knowledge_sources(agent_id)

    key = get_api_key_for_agent(agent_id)
    log.info("Using %s API key (%s) for agent %s", key.source, key.provider, agent_id)

    knowledge_context = ""
    retrieved: List[Dict[str, Any]] = []
    searched = False
    if req.use_knowledge_base and sources:
        try:
            knowledge_context, retrieved, searched = retrieve_knowledge(
                agent_id, req.message, sources,
                req.knowledge_result_limit, req.knowledge_search_threshold,
            )
        except Exception as e:
            log.error("Knowledge base search error for agent %s: %s", agent_id, e)

    model = agent.get("model") or settings.default_chat_model
    completion = complete_chat(
        key,
        model,
        generate_system_prompt(agent, knowledge_context),
        build_history(recent) + [{"role": "user", "content": req.message}],
        temperature=agent.get("temperature") or 0.7,
        max_tokens=agent.get("max_tokens") or 1000,
        user=req.session_id,
    )
    response_ms = int((time.time() - start) * 1000)

    conversation = repository.save_conversation(agent_id, req.session_id, req.message, completion.text, {
        **(req.metadata or {}),
        "model": model,
        "tokens_used": completion.tokens_used,
        "tokens_usage_metadata": completion.usage,
        "response_time_ms": response_ms,
        "user_id": req.user_id,
        "api_key_source": key.source,
        "vector_search_performed": searched,
        "knowledge_sources_used": len(retrieved),
        "knowledge_sources": retrieved,
    })

    _record_success(agent_id, req, key.source, completion, response_ms, searched, len(retrieved),
                    new_session)

    body = {
        "response": completion.text,
        "conversationId": conversation["id"],
        "tokensUsed": completion.tokens_used,
        "responseTimeMs": response_ms,
        "agentId": agent_id,
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "apiKeySource": key.source,
        "knowledge": {
            "searchPerformed": searched,
            "sourcesFound": len(retrieved),
            "sources": [
                {"name": s["sourceName"], "relevance": s["relevanceScore"], "preview": s["content"]}
                for s in retrieved
            ],
        },
    }
    headers = {
        "Cache-Control": "no-store, max-age=0",
        "X-Response-Time": f"{response_ms}ms",
        "X-Tokens-Used": str(completion.tokens_used),
        "X-API-Key-Source": key.source,
        "X-Knowledge-Used": "true" if searched else "false",
        "X-Knowledge-Sources": str(len(retrieved)),
    }
    return ChatResult(body=body, headers=headers)


def _record_success(agent_id: str, req: ChatRequest, key_source: str, completion,
                    response_ms: int, searched: bool, sources_used: int,
                    new_session: bool = False) -> None:
    """Analytics and credit deduction; failures here never fail the reply."""
    try:
        repository.log_analytics(agent_id, "conversation", {
            "session_id": req.session_id,
            "user_id": req.user_id,
            "message_length": len(req.message),
            "response_length": len(completion.text),
            "response_time_ms": response_ms,
            "api_key_source": key_source,
            "vector_search_performed": searched,
            "knowledge_sources_used": sources_used,
            "new_session": new_session,
        }, completion.tokens_used, True)
        if req.user_id and key_source == "platform":
            repository.deduct_credits(req.user_id, 1)
    except Exception as e:
        log.error("Post-chat bookkeeping failed for agent %s: %s", agent_id, e)


def _log_failure(agent_id: str, req: ChatRequest, error: Exception, start: float) -> None:
    try:
        repository.log_analytics(agent_id, "conversation", {
            "error": str(error),
            "error_type": error.__class__.__name__,
            "session_id": req.session_id,
            "user_id": req.user_id,
            "response_time_ms": int((time.time() - start) * 1000),
        }, 0, False)
    except Exception as e:
        log.warning("Could not record failed chat analytics: %s", e)


def get_history(agent_id: str, session_id: Optional[str], limit: int = 50) -> List[Dict[str, Any]]:
    if not session_id:
        raise ValidationError("sessionId is required")
    return repository.get_conversations(agent_id, session_id, max(1, min(int(limit), MAX_HISTORY_LIMIT)))
