"""
URL checks for knowledge-source ingestion.

``canonicalize_url`` gives the ingest cache a stable key: tracking
parameters dropped, scheme and host lowercased, default ports and
trailing slashes removed, fragment discarded.
"""

from __future__ import annotations
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = frozenset({
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "fbclid", "gclid", "ref", "mc_cid", "mc_eid", "si",
})
_DEFAULT_PORTS = {"http": 80, "https": 443}


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not url or not isinstance(url, str):
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme in _DEFAULT_PORTS and bool(parts.hostname)


def canonicalize_url(url: str) -> str:
    if not url:
        return url
    try:
        parts = urlsplit(url.strip())
        scheme = (parts.scheme or "https").lower()
        netloc = (parts.hostname or "").lower()
        if parts.port and parts.port != _DEFAULT_PORTS.get(scheme):
            netloc += f":{parts.port}"
    except ValueError:
        return url

    query = urlencode([
        (k, v) for k, v in parse_qsl(parts.query)
        if k.lower() not in TRACKING_PARAMS
    ])
    return urlunsplit((scheme, netloc, parts.path.rstrip("/") or "/", query, ""))
