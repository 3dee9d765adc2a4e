"""
SQLite persistent cache for scraped knowledge pages.

Avoids re-scraping (and re-paying ScraperAPI for) the same URL within the
TTL window. Cache trouble is logged and never fails an ingestion.
"""

from __future__ import annotations
import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Optional, Dict, Any

from agentbuilder.config import settings

log = logging.getLogger("agentbuilder.ingest_cache")

_lock = threading.Lock()
_conn: Optional[sqlite3.Connection] = None
_conn_path: Optional[Path] = None


def _get_conn(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS ingest_cache (
            url_canonical   TEXT PRIMARY KEY,
            retrieved_at    REAL NOT NULL,
            title           TEXT NOT NULL DEFAULT '',
            text            TEXT NOT NULL DEFAULT '',
            text_hash       TEXT NOT NULL DEFAULT '',
            ingest_method   TEXT NOT NULL DEFAULT '',
            quality_json    TEXT NOT NULL DEFAULT '{}'
        )
    """)
    conn.commit()
    return conn


def _db() -> sqlite3.Connection:
    global _conn, _conn_path
    path = Path(settings.ingest_cache_path)
    if _conn is None or _conn_path != path:
        with _lock:
            if _conn is None or _conn_path != path:
                if _conn is not None:
                    _conn.close()
                _conn = _get_conn(path)
                _conn_path = path
    return _conn


def close_ingest_cache() -> None:
    global _conn, _conn_path
    with _lock:
        if _conn is not None:
            _conn.close()
        _conn = None
        _conn_path = None


def get_cached_ingest(url_canonical: str) -> Optional[Dict[str, Any]]:
    """Return cached scrape result if still fresh, else None."""
    try:
        row = _db().execute(
            "SELECT title, text, ingest_method, quality_json, retrieved_at "
            "FROM ingest_cache WHERE url_canonical = ?",
            (url_canonical,),
        ).fetchone()
        if not row:
            return None
        title, text, method, quality_json, retrieved_at = row
        if time.time() - retrieved_at > settings.ingest_cache_ttl:
            _db().execute("DELETE FROM ingest_cache WHERE url_canonical = ?", (url_canonical,))
            _db().commit()
            return None
        return {
            "title": title,
            "text": text,
            "ingest_method": "cache",
            "original_method": method,
            "url_canonical": url_canonical,
            "quality": json.loads(quality_json) if quality_json else {},
        }
    except sqlite3.Error as e:
        log.warning("ingest cache read failed for %s: %s", url_canonical, e)
        return None


def set_cached_ingest(
    url_canonical: str,
    title: str,
    text: str,
    ingest_method: str,
    text_hash: str = "",
    quality: Optional[Dict[str, Any]] = None,
) -> None:
    """Store a scrape result in the cache."""
    try:
        _db().execute(
            "INSERT OR REPLACE INTO ingest_cache "
            "(url_canonical, retrieved_at, title, text, text_hash, ingest_method, quality_json) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (url_canonical, time.time(), title, text, text_hash,
             ingest_method, json.dumps(quality or {})),
        )
        _db().commit()
    except sqlite3.Error as e:
        log.warning("ingest cache write failed for %s: %s", url_canonical, e)


def clear_ingest_cache(url_canonical: Optional[str] = None) -> None:
    try:
        if url_canonical:
            _db().execute("DELETE FROM ingest_cache WHERE url_canonical = ?", (url_canonical,))
        else:
            _db().execute("DELETE FROM ingest_cache")
        _db().commit()
    except sqlite3.Error as e:
        log.warning("ingest cache clear failed: %s", e)
