"""
Document processing for uploaded knowledge files.

Validates uploads (PDF, TXT, MD), extracts text with PyMuPDF for PDFs and
plain decoding for text, and normalizes the result for vectorization.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from agentbuilder.errors import DocumentValidationError

log = logging.getLogger("agentbuilder.documents")

ALLOWED_TYPES = ("application/pdf", "text/plain", "text/markdown")
_EXTENSION_TYPES = {
    "pdf": "application/pdf",
    "txt": "text/plain",
    "md": "text/markdown",
    "markdown": "text/markdown",
}
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


@dataclass
class ProcessedDocument:
    success: bool
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def resolve_content_type(filename: str, content_type: Optional[str]) -> str:
    """Trust the declared type unless the client sent a generic one."""
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype and ctype != "application/octet-stream":
        return ctype
    ext = filename.rsplit(".", 1)[-1].lower() if "." in (filename or "") else ""
    return _EXTENSION_TYPES.get(ext, ctype)


def validate_file(filename: Optional[str], content_type: Optional[str], size: int,
                  max_size_mb: int = 10) -> str:
    """Raise DocumentValidationError for missing, oversized or unsupported files.

    Returns the resolved content type.
    """
    if not filename:
        raise DocumentValidationError("No file provided")

    if size > max_size_mb * 1024 * 1024:
        raise DocumentValidationError(f"File size exceeds {max_size_mb}MB limit")

    ctype = resolve_content_type(filename, content_type)
    if ctype not in ALLOWED_TYPES:
        raise DocumentValidationError("Unsupported file type. Allowed: PDF, TXT, MD")
    return ctype


def source_type_for(content_type: str) -> str:
    return "pdf" if content_type == "application/pdf" else "text"


def clean_text(text: str) -> str:
    """Strip control characters and collapse all whitespace runs to one space."""
    if not text:
        return ""
    text = _CONTROL_CHARS.sub("", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def _word_count(text: str) -> int:
    return len(text.split())


def process_pdf(data: bytes) -> ProcessedDocument:
    import fitz  # PyMuPDF

    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [page.get_text() for page in doc]
            page_count = doc.page_count
            pdf_meta = {k: v for k, v in (doc.metadata or {}).items() if v}
    except Exception as e:
        raise DocumentValidationError(f"Failed to process PDF: {e}")

    text = clean_text("\n\n".join(pages))
    return ProcessedDocument(
        success=True,
        text=text,
        metadata={
            "page_count": page_count,
            "word_count": _word_count(text),
            "character_count": len(text),
            "pdf_metadata": pdf_meta,
        },
    )


def process_text(data: bytes) -> ProcessedDocument:
    text = clean_text(data.decode("utf-8", errors="replace"))
    return ProcessedDocument(
        success=True,
        text=text,
        metadata={
            "word_count": _word_count(text),
            "character_count": len(text),
        },
    )


def process_file(data: bytes, content_type: str) -> ProcessedDocument:
    """Extract text from an uploaded file. Failures come back as success=False."""
    try:
        if content_type == "application/pdf":
            return process_pdf(data)
        if content_type in ("text/plain", "text/markdown"):
            return process_text(data)
        raise DocumentValidationError(f"Unsupported file type: {content_type}")
    except Exception as e:
        log.warning("Error processing %s file: %s", content_type, e)
        return ProcessedDocument(success=False, text="", metadata={"error": str(e)})
