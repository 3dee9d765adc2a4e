"""Agent Builder — standalone PDF and web page summarize routes.

These feed the agent-creation form: the browser uploads a PDF or pastes a
URL, and gets back the extracted text plus an LLM summary to review before
adding it as knowledge.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, File, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from agentbuilder.config import settings
from agentbuilder.content_extractor import extract_readable_text
from agentbuilder.document_processor import process_pdf, resolve_content_type
from agentbuilder.errors import AgentBuilderError, DocumentValidationError, NotFoundError, ValidationError
from agentbuilder.scraper import fetch_html
from agentbuilder.summarizer import summarize_document, summarize_web_content
from agentbuilder.url_utils import is_valid_url

log = logging.getLogger("agentbuilder.summarize_routes")

router = APIRouter(prefix="/api", tags=["summarize"])


class UrlSummarizeRequest(BaseModel):
    url: Optional[str] = None


@router.post("/pdf-summarize")
async def api_pdf_summarize(pdf: Optional[UploadFile] = File(None)):
    if pdf is None:
        raise ValidationError("No file provided")
    if resolve_content_type(pdf.filename or "", pdf.content_type) != "application/pdf":
        raise ValidationError("File must be a PDF")

    data = await pdf.read()
    try:
        processed = await run_in_threadpool(process_pdf, data)
    except DocumentValidationError as e:
        log.error("Error processing PDF %s: %s", pdf.filename, e.message)
        raise AgentBuilderError("Failed to extract PDF content", status_code=500, details=e.message)

    summary = await run_in_threadpool(summarize_document, processed.text)
    meta = processed.metadata.get("pdf_metadata") or {}
    return {
        "content": processed.text,
        "summary": summary,
        "pages": processed.metadata["page_count"],
        "info": {
            "title": meta.get("title") or "Unknown",
            "author": meta.get("author") or "Unknown",
        },
    }


@router.post("/url-scrape_summarize")
def api_url_scrape_summarize(req: UrlSummarizeRequest):
    """Scrape a page through ScraperAPI, keep its readable text and summarize it."""
    if not req.url:
        raise ValidationError("Missing URL parameter")
    if not is_valid_url(req.url):
        raise ValidationError("Invalid URL format")

    html = fetch_html(req.url, render=False, country_code="us")
    content = extract_readable_text(html)
    if not content:
        raise NotFoundError("No readable content found")
    content = content[:settings.summary_max_chars]

    return {
        "url": req.url,
        "content": content,
        "summary": summarize_web_content(content),
    }
