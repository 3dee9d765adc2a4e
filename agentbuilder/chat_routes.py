"""Agent Builder — chat routes."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agentbuilder.chat import ChatRequest, get_history, handle_chat


router = APIRouter(prefix="/api/agents/{agent_id}", tags=["chat"])


class ChatBody(BaseModel):
    message: Optional[str] = None
    sessionId: Optional[str] = None
    userId: Optional[str] = None
    metadata: Dict[str, Any] = {}
    useKnowledgeBase: bool = True
    knowledgeSearchThreshold: float = 0.7
    knowledgeResultLimit: int = 3


@router.post("/chat")
def api_chat(agent_id: str, body: ChatBody):
    result = handle_chat(agent_id, ChatRequest(
        message=body.message,
        session_id=body.sessionId,
        user_id=body.userId,
        metadata=body.metadata,
        use_knowledge_base=body.useKnowledgeBase,
        knowledge_search_threshold=body.knowledgeSearchThreshold,
        knowledge_result_limit=body.knowledgeResultLimit,
    ))
    return JSONResponse(content=result.body, headers=result.headers)


@router.get("/chat")
def api_chat_history(agent_id: str,
                     session_id: Optional[str] = Query(None, alias="sessionId"),
                     limit: int = 50):
    conversations = get_history(agent_id, session_id, limit)
    return JSONResponse(
        content={"conversations": conversations, "count": len(conversations), "sessionId": session_id},
        headers={
            "Cache-Control": "private, max-age=10",
            "X-Total-Count": str(len(conversations)),
        },
    )
