"""
SQLAlchemy models and session handling.

Tables: agents, knowledge_sources, knowledge_vectors, conversations,
analytics, user_credits, user_api_keys. The engine points at
DATABASE_PATH and is rebuilt when that path changes. Timestamps are
ISO-8601 UTC strings.
"""

from __future__ import annotations

import datetime
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from agentbuilder.config import settings


def utcnow() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class _ModelBase:

    def to_dict(self) -> Dict[str, Any]:
        """Column values keyed by column name (``meta`` comes back as ``metadata``)."""
        return {
            attr.columns[0].name: getattr(self, attr.key)
            for attr in inspect(self).mapper.column_attrs
        }


Base = declarative_base(cls=_ModelBase)


class Agent(Base):
    __tablename__ = "agents"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    purpose = Column(String, nullable=False, default="general")
    tone = Column(String, nullable=False, default="friendly")
    persona = Column(Text, nullable=False, default="")
    model = Column(String, nullable=False, default="")
    temperature = Column(Float)
    max_tokens = Column(Integer)
    system_prompt = Column(Text, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    is_public = Column(Boolean, nullable=False, default=False)
    use_platform_key = Column(Boolean, nullable=False, default=True)
    api_key_id = Column(String)
    created_at = Column(String, nullable=False, default=utcnow)
    updated_at = Column(String, nullable=False, default=utcnow)

    knowledge_sources = relationship("KnowledgeSource", cascade="all, delete-orphan")
    knowledge_vectors = relationship("KnowledgeVector", cascade="all, delete-orphan")
    conversations = relationship("Conversation", cascade="all, delete-orphan")
    analytics = relationship("AnalyticsEvent", cascade="all, delete-orphan")


class KnowledgeSource(Base):
    __tablename__ = "knowledge_sources"
    id = Column(String, primary_key=True, default=new_id)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False, index=True)
    source_type = Column(String, nullable=False)
    source_url = Column(Text)
    file_name = Column(String)
    content = Column(Text, nullable=False, default="")
    summary = Column(Text, nullable=False, default="{}")
    status = Column(String, nullable=False, default="processing")
    vector_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    created_at = Column(String, nullable=False, default=utcnow)
    processed_at = Column(String)


class KnowledgeVector(Base):
    __tablename__ = "knowledge_vectors"
    id = Column(String, primary_key=True, default=new_id)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False, index=True)
    knowledge_source_id = Column(String, ForeignKey("knowledge_sources.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    embedding = Column(JSON, nullable=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False, default=utcnow)


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (Index("idx_conversations_session", "agent_id", "session_id"),)
    id = Column(String, primary_key=True, default=new_id)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False)
    session_id = Column(String, nullable=False)
    user_message = Column(Text, nullable=False)
    agent_response = Column(Text, nullable=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False, default=utcnow)


class AnalyticsEvent(Base):
    __tablename__ = "analytics"
    id = Column(String, primary_key=True, default=new_id)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    event_data = Column(JSON, nullable=False, default=dict)
    tokens_used = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=True)
    created_at = Column(String, nullable=False, default=utcnow)


class UserCredits(Base):
    __tablename__ = "user_credits"
    user_id = Column(String, primary_key=True)
    credits = Column(Integer, nullable=False, default=0)
    updated_at = Column(String, nullable=False, default=utcnow)


class UserApiKey(Base):
    __tablename__ = "user_api_keys"
    __table_args__ = (Index("idx_api_keys_user", "user_id", "provider"),)
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    encrypted_key = Column(Text, nullable=False)
    key_name = Column(String, nullable=False, default="")
    key_preview = Column(String, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Engine and sessions
# ---------------------------------------------------------------------------

_lock = threading.Lock()
_engine: Optional[Engine] = None
_engine_path: Optional[Path] = None
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)


def get_engine() -> Engine:
    """Engine for DATABASE_PATH; tables are created on first use."""
    global _engine, _engine_path
    path = Path(settings.database_path)
    if _engine is None or _engine_path != path:
        with _lock:
            if _engine is None or _engine_path != path:
                if _engine is not None:
                    _engine.dispose()
                path.parent.mkdir(parents=True, exist_ok=True)
                engine = create_engine(
                    f"sqlite:///{path}",
                    connect_args={"check_same_thread": False},
                )
                Base.metadata.create_all(engine)
                _engine, _engine_path = engine, path
    return _engine


def get_session() -> Session:
    return SessionLocal(bind=get_engine())


@contextmanager
def session_scope() -> Iterator[Session]:
    """One transaction: commit on success, roll back and re-raise on error."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    get_engine()


def close_db() -> None:
    global _engine, _engine_path
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _engine_path = None
