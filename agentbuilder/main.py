from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentbuilder import db
from agentbuilder.agent_routes import router as agent_router
from agentbuilder.chat_routes import router as chat_router
from agentbuilder.config import settings
from agentbuilder.errors import register_exception_handlers
from agentbuilder.knowledge_routes import router as knowledge_router
from agentbuilder.summarize_routes import router as summarize_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger("agentbuilder")


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init_db()
    log.info("Database ready at %s (env=%s)", settings.database_path, settings.environment)
    yield
    db.close_db()


app = FastAPI(title="Agent Builder API", version="1.0.0", lifespan=lifespan)

# Allow the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Response-Time", "X-Tokens-Used", "X-API-Key-Source",
        "X-Knowledge-Used", "X-Knowledge-Sources", "X-Total-Count",
        "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After",
    ],
)

register_exception_handlers(app)

app.include_router(agent_router)
app.include_router(knowledge_router)
app.include_router(chat_router)
app.include_router(summarize_router)


@app.get("/api/health")
def health():
    return {
        "status": "ok",
        "service": "agentbuilder",
        "environment": settings.environment,
        "providers": {
            "openai": bool(settings.openai_api_key),
            "anthropic": bool(settings.anthropic_api_key),
            "gemini": bool(settings.google_api_key),
            "scraperapi": bool(settings.scraper_api_key),
        },
        "rate_limiter": "redis" if settings.redis_url else "memory",
    }
