"""
Error types and the JSON error envelope used by every route.

Service code raises AgentBuilderError subclasses; the FastAPI handler
registered in main.py turns them into ``{"error": ..., "timestamp": ...}``
responses with the right status code.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agentbuilder.config import settings

log = logging.getLogger("agentbuilder.errors")


class AgentBuilderError(Exception):
    status_code = 500
    error_code: Optional[str] = None

    def __init__(self, message: str, status_code: Optional[int] = None,
                 error_code: Optional[str] = None, details: Any = None,
                 headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.details = details
        self.headers = headers or {}


class ValidationError(AgentBuilderError):
    status_code = 400


class UnauthorizedError(AgentBuilderError):
    status_code = 401


class InsufficientCreditsError(AgentBuilderError):
    status_code = 402


class ForbiddenError(AgentBuilderError):
    status_code = 403


class NotFoundError(AgentBuilderError):
    status_code = 404


class RateLimitError(AgentBuilderError):
    status_code = 429


class ApiKeyError(AgentBuilderError):
    status_code = 500
    error_code = "API_KEY_ERROR"


class DocumentValidationError(ValidationError):
    pass


class EmbeddingError(AgentBuilderError):
    status_code = 500


class ScrapeError(AgentBuilderError):
    status_code = 502


def error_payload(message: str, error_code: Optional[str] = None, details: Any = None) -> Dict[str, Any]:
    """Standard error body. ``details`` only leaves the process in development."""
    body: Dict[str, Any] = {
        "error": message,
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }
    if error_code:
        body["errorCode"] = error_code
    if details is not None and settings.is_development:
        body["details"] = details
    return body


def error_response(exc: AgentBuilderError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc.message, exc.error_code, exc.details),
        headers=exc.headers or None,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AgentBuilderError)
    async def _handle_agentbuilder_error(request: Request, exc: AgentBuilderError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return error_response(exc)

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_payload("Internal server error", details=str(exc)),
        )
