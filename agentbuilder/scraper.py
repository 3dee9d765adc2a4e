"""
Web page fetching for URL knowledge sources and the summarize route.

ScraperAPI when SCRAPER_API_KEY is configured, otherwise a direct fetch
with browser headers. Page text for knowledge ingestion goes through the
ingest cache keyed by canonical URL.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from agentbuilder.config import settings
from agentbuilder.content_extractor import compute_text_hash, extract_main_content, is_bot_wall
from agentbuilder.errors import ScrapeError, ValidationError
from agentbuilder.ingest_cache import get_cached_ingest, set_cached_ingest
from agentbuilder.metrics import IngestionMetrics
from agentbuilder.url_utils import canonicalize_url

log = logging.getLogger("agentbuilder.scraper")

_BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def fetch_html(url: str, render: bool = False, country_code: str = "us") -> str:
    """Return the raw HTML for *url*. Raises ScrapeError on any failure."""
    try:
        if settings.scraper_api_key:
            resp = httpx.get(
                settings.scraper_api_url,
                params={
                    "api_key": settings.scraper_api_key,
                    "url": url,
                    "render": "true" if render else "false",
                    "country_code": country_code,
                },
                timeout=settings.scrape_timeout,
            )
        else:
            resp = httpx.get(
                url, headers=_BROWSER_HEADERS,
                timeout=settings.scrape_timeout, follow_redirects=True,
            )
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ScrapeError(f"Failed to fetch {url}: HTTP {e.response.status_code}")
    except httpx.HTTPError as e:
        raise ScrapeError(f"Failed to fetch {url}: {e}")
    except httpx.InvalidURL as e:
        raise ValidationError(f"Invalid URL format: {e}")
    return resp.text


def scrape_page(url: str, metrics: Optional[IngestionMetrics] = None) -> Dict[str, Any]:
    """Scrape *url* into clean text, using the ingest cache when fresh."""
    metrics = metrics or IngestionMetrics()
    url_canonical = canonicalize_url(url)

    cached = get_cached_ingest(url_canonical)
    if cached is not None:
        metrics.inc_cache_hit()
        log.info("Scrape cache hit for %s", url_canonical)
        return {"url": url, **cached}
    metrics.inc_cache_miss()

    with metrics.stage("scrape"):
        metrics.inc_scrape()
        html = fetch_html(url)
        extracted = extract_main_content(html, url)

    text = extracted["text"]
    if not text.strip():
        raise ScrapeError("No readable content found", status_code=422)
    if is_bot_wall(text, extracted["quality"]):
        raise ScrapeError("Page is blocked by bot protection", status_code=422)

    method = ("scraperapi_" if settings.scraper_api_key else "direct_") + extracted["extractor_used"]
    set_cached_ingest(
        url_canonical=url_canonical,
        title=extracted["title"],
        text=text,
        ingest_method=method,
        text_hash=compute_text_hash(text),
        quality=extracted["quality"],
    )
    return {
        "url": url,
        "url_canonical": url_canonical,
        "title": extracted["title"] or url,
        "text": text,
        "ingest_method": method,
        "quality": extracted["quality"],
    }
