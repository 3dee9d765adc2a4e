"""
Text chunking for the knowledge vector pipeline.

Splits documents into overlapping chunks with stable IDs and character
offsets so every stored vector can be traced back to its place in the
source text.
"""

from __future__ import annotations
import math
import re
from typing import List, Tuple, TypedDict


class TextChunk(TypedDict):
    chunk_id: str
    chunk_index: int
    text: str
    start_char: int
    end_char: int


def normalize_text(text: str) -> str:
    """Collapse excessive whitespace, normalize newlines, strip leading/trailing."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _make_chunk(chunks: List[TextChunk], text: str, start: int, end: int) -> None:
    raw = text[start:end]
    stripped = raw.strip()
    if not stripped:
        return
    lead = len(raw) - len(raw.lstrip())
    idx = len(chunks)
    chunks.append(TextChunk(
        chunk_id=f"c{idx:04d}",
        chunk_index=idx,
        text=stripped,
        start_char=start + lead,
        end_char=start + lead + len(stripped),
    ))


def _check_window(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")


def split_into_chunks(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[TextChunk]:
    """Fixed character window: every chunk starts ``chunk_size - overlap`` after the last."""
    _check_window(chunk_size, overlap)
    chunks: List[TextChunk] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        _make_chunk(chunks, text, start, end)
        start += chunk_size - overlap
    return chunks


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[TextChunk]:
    """Split text into overlapping chunks that prefer sentence, then word, boundaries.

    Chunking rules:
    - A window ends at the last '.', '?' or '!' if it lies beyond 70% of the window.
    - Otherwise it ends at the last space after the window start.
    - The next window starts ``overlap`` characters before the previous end,
      or at the previous end when that would not move forward.
    """
    _check_window(chunk_size, overlap)
    if not text:
        return []

    chunks: List[TextChunk] = []
    start = 0
    n = len(text)
    while start < n:
        end = start + chunk_size
        if end < n:
            sentence_end = max(text.rfind(p, 0, end + 1) for p in ".?!")
            if sentence_end > start + chunk_size * 0.7:
                end = sentence_end + 1
            else:
                space = text.rfind(" ", 0, end + 1)
                if space > start:
                    end = space
        else:
            end = n

        _make_chunk(chunks, text, start, end)

        if end >= n:
            break
        next_start = end - overlap
        start = next_start if next_start > start else end

    return chunks


def get_chunk_config(text_length: int) -> Tuple[int, int]:
    """(chunk_size, overlap) scaled to document length."""
    if text_length < 5000:
        return 1000, 100
    if text_length < 20000:
        return 1500, 200
    return 2000, 300


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token)."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)
