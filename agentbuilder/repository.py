"""
Agent, knowledge-source, conversation, analytics and credit queries.

Plain functions over the models in agentbuilder.db. Each call runs in its
own session and returns dicts so the routes can serialize them directly.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, literal_column
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from agentbuilder import db
from agentbuilder.config import settings
from agentbuilder.errors import InsufficientCreditsError, NotFoundError, ValidationError

log = logging.getLogger("agentbuilder.repository")

AGENT_UPDATABLE_COLUMNS = frozenset({
    "name", "description", "purpose", "tone", "persona", "model",
    "temperature", "max_tokens", "system_prompt", "is_active", "is_public",
    "use_platform_key", "api_key_id",
})
SOURCE_UPDATABLE_COLUMNS = frozenset({
    "status", "vector_count", "error_message", "processed_at", "content",
    "summary", "file_name", "source_url",
})
MAX_ANALYTICS_LIMIT = 5000


def _required_agent_columns() -> frozenset:
    columns = db.Agent.__table__.columns
    return frozenset(name for name in AGENT_UPDATABLE_COLUMNS if not columns[name].nullable)


# ─────────────────────────────
# AGENTS
# ─────────────────────────────

def create_agent(user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = db.utcnow()
    values = {k: v for k, v in data.items() if k in AGENT_UPDATABLE_COLUMNS and v is not None}
    with db.session_scope() as s:
        agent = db.Agent(**values, user_id=user_id, created_at=now, updated_at=now)
        s.add(agent)
        s.flush()
        out = agent.to_dict()
    log.info("Created agent %s for user %s", out["id"], user_id)
    return out


def get_agent(agent_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Fetch an agent. With ``user_id`` the agent must also belong to that user."""
    with db.session_scope() as s:
        query = s.query(db.Agent).filter(db.Agent.id == agent_id)
        if user_id:
            query = query.filter(db.Agent.user_id == user_id)
        agent = query.one_or_none()
        return agent.to_dict() if agent else None


def get_user_agents(user_id: str) -> List[Dict[str, Any]]:
    with db.session_scope() as s:
        agents = (
            s.query(db.Agent)
            .filter(db.Agent.user_id == user_id)
            .order_by(db.Agent.created_at.desc())
            .all()
        )
        return [a.to_dict() for a in agents]


def verify_agent_ownership(agent_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    if not agent_id or not user_id:
        return None
    return get_agent(agent_id, user_id)


def update_agent(agent_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    values = {k: v for k, v in updates.items() if k in AGENT_UPDATABLE_COLUMNS}
    nulled = sorted(k for k, v in values.items() if v is None and k in _required_agent_columns())
    if nulled:
        raise ValidationError(f"Fields cannot be null: {', '.join(nulled)}")

    with db.session_scope() as s:
        agent = s.get(db.Agent, agent_id)
        if agent is None:
            raise NotFoundError("Agent not found")
        if values:
            for key, value in values.items():
                setattr(agent, key, value)
            agent.updated_at = db.utcnow()
        s.flush()
        return agent.to_dict()


def _dependency_counts(s, agent_id: str) -> Dict[str, int]:
    def _count(model) -> int:
        return s.query(func.count(model.id)).filter(model.agent_id == agent_id).scalar() or 0

    return {
        "knowledgeSources": _count(db.KnowledgeSource),
        "knowledgeVectors": _count(db.KnowledgeVector),
        "conversations": _count(db.Conversation),
        "analytics": _count(db.AnalyticsEvent),
    }


def get_agent_dependencies(agent_id: str) -> Dict[str, int]:
    with db.session_scope() as s:
        return _dependency_counts(s, agent_id)


def delete_agent(agent_id: str, user_id: str) -> Dict[str, int]:
    """Delete an agent and everything hanging off it in one transaction.

    Returns the dependency counts that were removed.
    """
    with db.session_scope() as s:
        agent = s.query(db.Agent).filter_by(id=agent_id, user_id=user_id).one_or_none()
        if agent is None:
            raise NotFoundError("Agent not found or access denied")
        dependencies = _dependency_counts(s, agent_id)
        log.info("Deleting agent %s with dependencies %s", agent_id, dependencies)
        s.delete(agent)
    return dependencies


# ─────────────────────────────
# KNOWLEDGE SOURCES
# ─────────────────────────────

def add_knowledge_source(agent_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    with db.session_scope() as s:
        source = db.KnowledgeSource(
            agent_id=agent_id,
            source_type=data.get("source_type", "text"),
            source_url=data.get("source_url"),
            file_name=data.get("file_name"),
            content=data.get("content", ""),
            summary=data.get("summary", "{}"),
            status=data.get("status", "processing"),
            created_at=db.utcnow(),
        )
        s.add(source)
        s.flush()
        return source.to_dict()


def get_knowledge_source(source_id: str) -> Optional[Dict[str, Any]]:
    with db.session_scope() as s:
        source = s.get(db.KnowledgeSource, source_id)
        return source.to_dict() if source else None


def get_knowledge_sources(agent_id: str) -> List[Dict[str, Any]]:
    with db.session_scope() as s:
        sources = (
            s.query(db.KnowledgeSource)
            .filter(db.KnowledgeSource.agent_id == agent_id)
            .order_by(db.KnowledgeSource.created_at.desc())
            .all()
        )
        return [src.to_dict() for src in sources]


def update_knowledge_source(source_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with db.session_scope() as s:
        source = s.get(db.KnowledgeSource, source_id)
        if source is None:
            return None
        for key, value in updates.items():
            if key in SOURCE_UPDATABLE_COLUMNS:
                setattr(source, key, value)
        s.flush()
        return source.to_dict()


def delete_knowledge_source(source_id: str, agent_id: Optional[str] = None) -> bool:
    with db.session_scope() as s:
        query = s.query(db.KnowledgeSource).filter(db.KnowledgeSource.id == source_id)
        if agent_id:
            query = query.filter(db.KnowledgeSource.agent_id == agent_id)
        return query.delete(synchronize_session=False) > 0


# ─────────────────────────────
# CONVERSATIONS
# ─────────────────────────────

def save_conversation(agent_id: str, session_id: str, user_message: str,
                      agent_response: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    with db.session_scope() as s:
        conversation = db.Conversation(
            agent_id=agent_id,
            session_id=session_id,
            user_message=user_message,
            agent_response=agent_response,
            meta=metadata or {},
            created_at=db.utcnow(),
        )
        s.add(conversation)
        s.flush()
        return conversation.to_dict()


def get_conversations(agent_id: str, session_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent first."""
    with db.session_scope() as s:
        rows = (
            s.query(db.Conversation)
            .filter(db.Conversation.agent_id == agent_id, db.Conversation.session_id == session_id)
            .order_by(db.Conversation.created_at.desc(), literal_column("conversations.rowid").desc())
            .limit(max(int(limit), 0))
            .all()
        )
        return [c.to_dict() for c in rows]


def check_conversation_exists(agent_id: str, session_id: str) -> bool:
    with db.session_scope() as s:
        hit = (
            s.query(db.Conversation.id)
            .filter(db.Conversation.agent_id == agent_id, db.Conversation.session_id == session_id)
            .first()
        )
        return hit is not None


# ─────────────────────────────
# ANALYTICS
# ─────────────────────────────

def log_analytics(agent_id: str, event_type: str, event_data: Dict[str, Any],
                  tokens_used: int = 0, success: bool = True) -> Dict[str, Any]:
    with db.session_scope() as s:
        event = db.AnalyticsEvent(
            agent_id=agent_id,
            event_type=event_type,
            event_data=event_data or {},
            tokens_used=int(tokens_used or 0),
            success=bool(success),
            created_at=db.utcnow(),
        )
        s.add(event)
        s.flush()
        return event.to_dict()


def get_analytics(agent_id: str, event_type: Optional[str] = None, start: Optional[str] = None,
                  end: Optional[str] = None, limit: int = 1000) -> List[Dict[str, Any]]:
    """Events newest first, optionally filtered by type and an ISO date range (inclusive)."""
    with db.session_scope() as s:
        query = s.query(db.AnalyticsEvent).filter(db.AnalyticsEvent.agent_id == agent_id)
        if event_type:
            query = query.filter(db.AnalyticsEvent.event_type == event_type)
        if start:
            query = query.filter(db.AnalyticsEvent.created_at >= start)
        if end:
            query = query.filter(db.AnalyticsEvent.created_at <= end)
        events = (
            query.order_by(db.AnalyticsEvent.created_at.desc())
            .limit(max(1, min(int(limit), MAX_ANALYTICS_LIMIT)))
            .all()
        )
        return [e.to_dict() for e in events]


def summarize_analytics(events: List[Dict[str, Any]]) -> Dict[str, Any]:
    total_tokens = sum(e.get("tokens_used") or 0 for e in events)
    event_types: Dict[str, int] = {}
    for e in events:
        kind = e.get("event_type") or "unknown"
        event_types[kind] = event_types.get(kind, 0) + 1
    return {
        "total_events": len(events),
        "successful_events": sum(1 for e in events if e.get("success")),
        "total_tokens": total_tokens,
        "event_types": event_types,
        "avg_tokens": round(total_tokens / len(events)) if events else 0,
    }


def prune_analytics(agent_id: str, before: str) -> int:
    """Delete an agent's events created before the ISO timestamp *before*."""
    with db.session_scope() as s:
        return (
            s.query(db.AnalyticsEvent)
            .filter(db.AnalyticsEvent.agent_id == agent_id, db.AnalyticsEvent.created_at < before)
            .delete(synchronize_session=False)
        )


# ─────────────────────────────
# CREDITS
# ─────────────────────────────

def get_credits(user_id: str) -> int:
    with db.session_scope() as s:
        account = s.get(db.UserCredits, user_id)
        return int(account.credits) if account else 0


def open_credit_account(user_id: str) -> int:
    """Give a first-seen user STARTING_CREDITS. Returns the current balance."""
    with db.session_scope() as s:
        s.execute(
            sqlite_insert(db.UserCredits)
            .values(user_id=user_id, credits=settings.starting_credits, updated_at=db.utcnow())
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
    return get_credits(user_id)


def grant_credits(user_id: str, amount: int) -> int:
    """Add *amount* to a balance, opening the account if needed."""
    stmt = sqlite_insert(db.UserCredits).values(
        user_id=user_id, credits=int(amount), updated_at=db.utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={
            "credits": db.UserCredits.credits + stmt.excluded.credits,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    with db.session_scope() as s:
        s.execute(stmt)
    return get_credits(user_id)


def has_credits(user_id: str, required: int = 1) -> bool:
    return open_credit_account(user_id) >= required


def deduct_credits(user_id: str, amount: int) -> int:
    with db.session_scope() as s:
        n = (
            s.query(db.UserCredits)
            .filter(db.UserCredits.user_id == user_id, db.UserCredits.credits >= int(amount))
            .update(
                {
                    db.UserCredits.credits: db.UserCredits.credits - int(amount),
                    db.UserCredits.updated_at: db.utcnow(),
                },
                synchronize_session=False,
            )
        )
    if n == 0:
        raise InsufficientCreditsError("Insufficient credits")
    return get_credits(user_id)
