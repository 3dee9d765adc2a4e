"""Agent Builder — agent and API key routes.

The caller is identified by the ``X-User-Id`` header (set by the auth
proxy in front of this service).
"""
from __future__ import annotations

import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Response
from pydantic import BaseModel

from agentbuilder import api_keys, repository
from agentbuilder.chat import invalidate_agent_cache
from agentbuilder.errors import NotFoundError, UnauthorizedError, ValidationError
from agentbuilder.rate_limiter import RateLimitResult, rate_limit


router = APIRouter(prefix="/api", tags=["agents"])

read_limit = rate_limit("agent-read", 300, 60)
write_limit = rate_limit("agent-write", 100, 60)
delete_limit = rate_limit("agent-delete", 10, 60)

MAX_NAME_CHARS = 100


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise UnauthorizedError("Unauthorized")
    return x_user_id


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------

class AgentCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None
    purpose: Optional[str] = None
    tone: Optional[str] = None
    persona: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None
    use_platform_key: Optional[bool] = None
    api_key_id: Optional[str] = None


class AgentUpdateRequest(AgentCreateRequest):
    name: Optional[str] = None


class ApiKeyRequest(BaseModel):
    provider: Optional[str] = None
    apiKey: Optional[str] = None
    keyName: Optional[str] = None


class AnalyticsEventRequest(BaseModel):
    event_type: Optional[str] = None
    event_data: Dict[str, Any] = {}
    tokens_used: int = 0
    success: bool = True


def _check_name(name: Optional[str]) -> None:
    if name is None:
        return
    if not name.strip():
        raise ValidationError("Agent name cannot be empty")
    if len(name) > MAX_NAME_CHARS:
        raise ValidationError(f"Agent name must be less than {MAX_NAME_CHARS} characters")


def _check_key_binding(user_id: str, updates: Dict[str, Any]) -> None:
    key_id = updates.get("api_key_id")
    if not key_id:
        return
    owned = {k["id"] for k in api_keys.list_api_keys(user_id)}
    if key_id not in owned:
        raise ValidationError("API key not found for this user")


def _owned_agent(agent_id: str, user_id: str) -> Dict[str, Any]:
    agent = repository.get_agent(agent_id, user_id)
    if not agent:
        raise NotFoundError("Agent not found or unauthorized")
    return agent


def _enrich(agent: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **agent,
        "createdDate": agent["created_at"],
        "updatedDate": agent["updated_at"],
        "isActive": bool(agent["is_active"]),
    }


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

@router.get("/user_agents")
def api_user_agents(user_id: str = Depends(current_user_id),
                    _limit: RateLimitResult = Depends(read_limit)):
    """All agents owned by the caller, newest first."""
    return {"agents": repository.get_user_agents(user_id)}


@router.post("/agents", status_code=201)
def api_create_agent(req: AgentCreateRequest, response: Response,
                     user_id: str = Depends(current_user_id),
                     limit: RateLimitResult = Depends(write_limit)):
    _check_name(req.name)
    data = req.model_dump(exclude_none=True)
    _check_key_binding(user_id, data)
    agent = repository.create_agent(user_id, data)
    response.headers.update(limit.headers())
    return {"agent": agent, "message": "Agent created successfully"}


@router.get("/agents/{agent_id}")
def api_get_agent(agent_id: str, response: Response,
                  user_id: str = Depends(current_user_id),
                  limit: RateLimitResult = Depends(read_limit)):
    agent = _owned_agent(agent_id, user_id)
    response.headers.update(limit.headers())
    response.headers["Cache-Control"] = "private, max-age=30"
    response.headers["ETag"] = f'"{agent["updated_at"]}"'
    return _enrich(agent)


@router.patch("/agents/{agent_id}")
def api_update_agent(agent_id: str, req: AgentUpdateRequest, response: Response,
                     user_id: str = Depends(current_user_id),
                     limit: RateLimitResult = Depends(write_limit)):
    _owned_agent(agent_id, user_id)
    updates = req.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationError("No valid fields to update")
    _check_name(updates.get("name"))
    _check_key_binding(user_id, updates)

    agent = repository.update_agent(agent_id, updates)
    invalidate_agent_cache(agent_id)
    response.headers.update(limit.headers())
    return {"agent": agent, "message": "Agent updated successfully"}


@router.delete("/agents/{agent_id}")
def api_delete_agent(agent_id: str, response: Response, confirm: bool = False,
                     user_id: str = Depends(current_user_id),
                     limit: RateLimitResult = Depends(delete_limit)):
    """Delete an agent with its knowledge, conversations and analytics. Needs ``?confirm=true``."""
    _owned_agent(agent_id, user_id)
    if not confirm:
        raise ValidationError("Confirmation required",
                              details="Add ?confirm=true to delete this agent")
    deleted = repository.delete_agent(agent_id, user_id)
    invalidate_agent_cache(agent_id)
    response.headers.update(limit.headers())
    return {"success": True, "message": "Agent deleted successfully", "deleted": deleted}


@router.get("/agents/{agent_id}/dependencies")
def api_agent_dependencies(agent_id: str, user_id: str = Depends(current_user_id),
                           _limit: RateLimitResult = Depends(read_limit)):
    _owned_agent(agent_id, user_id)
    dependencies = repository.get_agent_dependencies(agent_id)
    return {
        "agentId": agent_id,
        "dependencies": dependencies,
        "hasDependencies": any(dependencies.values()),
    }


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

@router.get("/agents/{agent_id}/analytics")
def api_agent_analytics(agent_id: str,
                        start: Optional[str] = None,
                        end: Optional[str] = None,
                        limit: int = Query(1000, ge=1, le=repository.MAX_ANALYTICS_LIMIT),
                        user_id: str = Depends(current_user_id),
                        _limit: RateLimitResult = Depends(read_limit)):
    """Events newest first with totals; ``start`` and ``end`` are inclusive ISO timestamps."""
    _owned_agent(agent_id, user_id)
    events = repository.get_analytics(agent_id, start=start, end=end, limit=limit)
    return {
        "success": True,
        "analytics": events,
        "metrics": repository.summarize_analytics(events),
        "count": len(events),
    }


@router.post("/agents/{agent_id}/analytics")
def api_log_analytics(agent_id: str, req: AnalyticsEventRequest,
                      user_id: str = Depends(current_user_id),
                      _limit: RateLimitResult = Depends(write_limit)):
    _owned_agent(agent_id, user_id)
    if not req.event_type:
        raise ValidationError("Agent ID and event type are required")
    event = repository.log_analytics(agent_id, req.event_type, req.event_data,
                                     req.tokens_used, req.success)
    return {"success": True, "analytics": event}


@router.delete("/agents/{agent_id}/analytics")
def api_prune_analytics(agent_id: str, days: int = Query(90, ge=0),
                        user_id: str = Depends(current_user_id),
                        _limit: RateLimitResult = Depends(delete_limit)):
    _owned_agent(agent_id, user_id)
    cutoff = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=days)
    removed = repository.prune_analytics(agent_id, cutoff.isoformat())
    return {
        "success": True,
        "message": f"Analytics older than {days} days deleted",
        "deleted": removed,
    }


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------

@router.get("/credits")
def api_credits(user_id: str = Depends(current_user_id),
                _limit: RateLimitResult = Depends(read_limit)):
    return {"credits": repository.open_credit_account(user_id)}


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------

@router.post("/api-keys", status_code=201)
def api_save_key(req: ApiKeyRequest, user_id: str = Depends(current_user_id)):
    if not req.provider or not req.apiKey:
        raise ValidationError("Missing provider or apiKey")
    key = api_keys.save_api_key(user_id, req.provider, req.apiKey, req.keyName)
    return {"success": True, "key": key}


@router.get("/api-keys")
def api_list_keys(user_id: str = Depends(current_user_id)):
    return {"keys": api_keys.list_api_keys(user_id)}


@router.delete("/api-keys/{key_id}")
def api_delete_key(key_id: str, user_id: str = Depends(current_user_id)):
    api_keys.delete_api_key(user_id, key_id)
    invalidate_agent_cache()
    return {"success": True}
