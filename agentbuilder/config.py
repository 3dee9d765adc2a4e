"""
agentbuilder/config.py — Centralized service configuration
==========================================================
Single source of truth for environment-driven settings. Values are read
once at import (after loading the project-root .env); tests override
individual attributes on the ``settings`` instance.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
_ENV_PATH = ROOT_DIR / ".env"
load_dotenv(dotenv_path=_ENV_PATH, override=False)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


class Settings:
    """Central configuration for the API, the knowledge pipeline and chat."""

    def __init__(self):
        # --- Runtime ---
        self.environment = os.getenv("APP_ENV", "production")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        # --- Storage ---
        self.database_path = Path(os.getenv("DATABASE_PATH", str(ROOT_DIR / "data" / "agentbuilder.db")))
        self.ingest_cache_path = Path(os.getenv("INGEST_CACHE_PATH", str(ROOT_DIR / "data" / "ingest_cache.db")))

        # --- Provider keys ---
        self.openai_api_key = os.getenv("OPENAI_API_KEY", "")
        self.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self.google_api_key = os.getenv("GOOGLE_API_KEY", "")
        self.scraper_api_key = os.getenv("SCRAPER_API_KEY", "")
        self.encryption_secret_key = os.getenv("ENCRYPTION_SECRET_KEY", "")

        # --- Models ---
        self.default_chat_model = os.getenv("DEFAULT_CHAT_MODEL", "gpt-4o-mini")
        self.anthropic_model = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
        self.embedding_model = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
        self.embedding_dimensions = 1536

        # --- Knowledge pipeline ---
        self.chunk_strategy = os.getenv("CHUNK_STRATEGY", "sentence")
        self.chunk_size = 1000
        self.chunk_overlap = 200
        self.embedding_batch_size = 10
        self.max_upload_mb = _env_int("MAX_UPLOAD_MB", 10)
        self.ingest_cache_ttl = 24 * 3600

        # --- Scraping / summarize ---
        self.scraper_api_url = "http://api.scraperapi.com"
        self.scrape_timeout = 30
        self.summary_max_chars = 6000

        # --- Chat ---
        self.chat_rate_limit = _env_int("CHAT_RATE_LIMIT", 20)
        self.chat_max_message_chars = 5000
        self.agent_cache_ttl = 5 * 60
        self.llm_timeout = 30
        self.llm_max_retries = 2

        # --- Credits ---
        self.starting_credits = _env_int("STARTING_CREDITS", 1000)

        # --- Rate limiting ---
        self.redis_url = os.getenv("REDIS_URL", "")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


settings = Settings()
