"""Agent Builder — knowledge base routes.

Upload (file or URL), list, delete, semantic search and instruction-based
knowledge updates for a single agent. The caller passes ``userId`` in the
form, query string or JSON body.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from agentbuilder import knowledge, repository
from agentbuilder.errors import ValidationError


router = APIRouter(prefix="/api/agents/{agent_id}", tags=["knowledge"])


class SearchRequest(BaseModel):
    query: Optional[Any] = None
    limit: int = 5
    threshold: float = 0.7
    userId: Optional[str] = None


class KnowledgeUpdateRequest(BaseModel):
    instructions: Optional[str] = None
    userId: Optional[str] = None


# ---------------------------------------------------------------------------
# Upload / list / delete
# ---------------------------------------------------------------------------

@router.post("/knowledge/upload")
async def api_upload_knowledge(
    agent_id: str,
    user_id: Optional[str] = Form(None, alias="userId"),
    source_type: Optional[str] = Form(None, alias="type"),
    file: Optional[UploadFile] = File(None),
    url: Optional[str] = Form(None),
):
    """Ingest a PDF/TXT/MD file or a web page into the agent's knowledge base."""
    if not user_id:
        raise ValidationError("User ID is required")

    if source_type == "file":
        data = await file.read() if file is not None else None
        filename = file.filename if file is not None else None
        content_type = file.content_type if file is not None else None
        source = await run_in_threadpool(
            knowledge.ingest_file, agent_id, user_id, filename, content_type, data
        )
    elif source_type == "url":
        source = await run_in_threadpool(knowledge.ingest_url, agent_id, user_id, url)
    else:
        raise ValidationError('Invalid source type. Must be "file" or "url"')

    return {"success": True, "knowledgeSource": source}


@router.get("/knowledge/upload")
def api_list_knowledge(agent_id: str, user_id: Optional[str] = Query(None, alias="userId")):
    result = knowledge.list_sources(agent_id, user_id)
    return {"success": True, **result}


@router.delete("/knowledge/upload")
def api_delete_uploaded_knowledge(agent_id: str,
                                  user_id: Optional[str] = Query(None, alias="userId"),
                                  source_id: Optional[str] = Query(None, alias="sourceId")):
    if not user_id or not source_id:
        raise ValidationError("User ID and Source ID are required")
    knowledge.delete_source(agent_id, source_id, user_id)
    return {"success": True, "message": "Knowledge source deleted successfully"}


@router.get("/knowledge")
def api_get_knowledge_sources(agent_id: str):
    return {"success": True, "sources": repository.get_knowledge_sources(agent_id)}


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@router.post("/knowledge/search")
def api_search_knowledge(agent_id: str, req: SearchRequest):
    results = knowledge.search(agent_id, req.userId, req.query, req.limit, req.threshold)
    return {"success": True, "query": req.query, "results": results, "count": len(results)}


@router.get("/knowledge/search")
def api_knowledge_stats(agent_id: str, user_id: Optional[str] = Query(None, alias="userId")):
    return {"success": True, "statistics": knowledge.stats(agent_id, user_id)}


@router.delete("/knowledge/{source_id}")
def api_delete_knowledge_source(agent_id: str, source_id: str):
    knowledge.delete_source(agent_id, source_id)
    return {"success": True, "message": "Knowledge source deleted"}


# ---------------------------------------------------------------------------
# Knowledge update
# ---------------------------------------------------------------------------

@router.post("/knowledge-update")
def api_knowledge_update(agent_id: str, req: KnowledgeUpdateRequest):
    """Turn a free-form instruction into a vectorized knowledge entry."""
    result = knowledge.ingest_instruction(agent_id, req.userId, req.instructions)
    return {"success": True, "agentId": agent_id, "userId": req.userId, **result}
