"""
Readable-text extraction from scraped HTML.

Two extractors:
1. extract_main_content: trafilatura first, then a BeautifulSoup pass that
   drops page chrome. Used for URL knowledge sources.
2. extract_readable_text: headings, paragraphs and list items only. Used by
   the scrape-and-summarize route.

Also scores extracted text and flags bot-protection pages.
"""

from __future__ import annotations
import hashlib
import logging
import re
from collections import Counter
from typing import Any, Dict, Optional, Tuple

import trafilatura
from bs4 import BeautifulSoup

log = logging.getLogger("agentbuilder.extract")

MAX_CONTENT_CHARS = 60000
MIN_ARTICLE_WORDS = 30
SHORT_LINE_CHARS = 40

_CHROME_TAGS = ("script", "style", "noscript", "nav", "footer", "aside", "header", "form", "figcaption")
_CHROME_ATTR = re.compile(
    r"cookie|subscribe|newsletter|navbar|footer|menu|banner|sidebar|popup|modal|advert|social-share",
    re.IGNORECASE,
)


def extract_main_content(html: str, url: str = "") -> Dict[str, Any]:
    """Main text of a page.

    Returns ``{"title", "text", "extractor_used", "quality"}`` where
    ``extractor_used`` is ``"trafilatura"`` or ``"raw"``.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    title = _page_title(soup)

    text, meta_title = _trafilatura_extract(html, url)
    extractor = "trafilatura" if text else "raw"
    if len(meta_title) > len(title):
        title = meta_title

    if not text:
        text = _raw_extract(html, soup)

    text = _truncate_paragraphs(text, max_chars=MAX_CONTENT_CHARS)
    return {
        "title": title,
        "text": text,
        "extractor_used": extractor,
        "quality": _compute_quality(text, extractor),
    }


def extract_readable_text(html: str, selectors: str = "p, h1, h2, h3, li") -> str:
    """Concatenate the text of every element matching *selectors*, whitespace-collapsed."""
    soup = BeautifulSoup(html or "", "html.parser")
    parts = [el.get_text(" ", strip=True) for el in soup.select(selectors)]
    return re.sub(r"\s+", " ", " ".join(p for p in parts if p)).strip()


def compute_text_hash(text: str) -> str:
    return hashlib.sha256(text.strip().lower().encode("utf-8")).hexdigest()[:24]


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

def _page_title(soup: BeautifulSoup) -> str:
    if soup.title is None:
        return ""
    return re.sub(r"\s+", " ", soup.title.get_text()).strip()[:300]


def _trafilatura_extract(html: str, url: str) -> Tuple[str, str]:
    """(text, metadata title); text is empty when trafilatura finds no real article."""
    try:
        text = trafilatura.extract(
            html,
            include_comments=False,
            include_tables=True,
            favor_recall=True,
            url=url or None,
        ) or ""
        if len(text.split()) < MIN_ARTICLE_WORDS:
            return "", ""
        meta = trafilatura.extract_metadata(html, default_url=url or None)
        return text, (meta.title or "") if meta else ""
    except Exception as e:
        log.debug("trafilatura failed for %s: %s", url or "<html>", e)
        return "", ""


def _raw_extract(html: str, soup: Optional[BeautifulSoup] = None) -> str:
    """Visible text with page chrome and repeated menu lines removed."""
    soup = soup or BeautifulSoup(html or "", "html.parser")
    for tag in soup(_CHROME_TAGS):
        tag.decompose()
    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        marker = " ".join(tag.get("class") or []) + " " + (tag.get("id") or "")
        if _CHROME_ATTR.search(marker):
            tag.decompose()

    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in soup.get_text("\n").split("\n")]
    lines = [line for line in lines if line]
    counts = Counter(line for line in lines if len(line) < SHORT_LINE_CHARS)
    kept = [line for line in lines if len(line) >= SHORT_LINE_CHARS or counts[line] <= 2]
    return "\n".join(kept)


def _truncate_paragraphs(text: str, max_chars: int = MAX_CONTENT_CHARS) -> str:
    """Keep whole paragraphs up to *max_chars*."""
    if len(text) <= max_chars:
        return text

    kept: list[str] = []
    used = 0
    for para in text.split("\n\n"):
        if used + len(para) + 2 > max_chars:
            break
        kept.append(para)
        used += len(para) + 2
    return "\n\n".join(kept) if kept else text[:max_chars]


# ---------------------------------------------------------------------------
# Quality and bot walls
# ---------------------------------------------------------------------------

def _compute_quality(text: str, extractor: str) -> Dict[str, Any]:
    lines = text.split("\n")
    short = Counter(l.strip() for l in lines if 0 < len(l.strip()) < SHORT_LINE_CHARS)
    repeated = sum(n for n in short.values() if n > 2)
    return {
        "total_chars": len(text),
        "word_count": len(text.split()),
        "line_count": len(lines),
        "boilerplate_line_ratio": round(repeated / max(len(lines), 1), 3),
        "extractor_used": extractor,
    }


_BOT_SIGNALS = (
    "enable javascript", "captcha", "cloudflare", "access denied",
    "just a moment", "checking your browser", "ray id",
    "please verify", "are you a robot", "bot protection",
    "security check", "ddos protection",
)


def is_bot_wall(text: str, quality: Optional[Dict[str, Any]] = None) -> bool:
    """True for interstitials: two bot signals, or one on a near-empty page."""
    lower = text.lower()
    words = len(text.split())
    hits = sum(1 for s in _BOT_SIGNALS if s in lower)
    if hits >= 2 or (hits == 1 and words < 50):
        return True
    return bool(quality and quality.get("boilerplate_line_ratio", 0) > 0.5 and words < 200)
