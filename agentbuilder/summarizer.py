"""
LLM summaries for scraped pages, uploaded PDFs and user instructions.
"""

from __future__ import annotations

import logging
from typing import Optional

from agentbuilder import prompts
from agentbuilder.api_keys import ResolvedKey
from agentbuilder.errors import AgentBuilderError
from agentbuilder.llm import FALLBACK_REPLY, complete_text, platform_key

log = logging.getLogger("agentbuilder.summarizer")

SUMMARY_MODEL = "gpt-4o-mini"
NO_SUMMARY = "Summary could not be generated."
SUMMARY_FAILED = "Failed to generate summary."


def summarize_web_content(content: str, resolved_key: Optional[ResolvedKey] = None) -> str:
    """Refine scraped page text into structured, chatbot-ready content."""
    result = complete_text(
        resolved_key or platform_key(),
        prompts.content_refinement(content),
        system=prompts.CONTENT_REFINEMENT,
        model=SUMMARY_MODEL,
        temperature=0.3,
        max_tokens=500,
    )
    text = result.text.strip()
    if not text or text == FALLBACK_REPLY:
        return NO_SUMMARY
    return text


def summarize_document(text: str, resolved_key: Optional[ResolvedKey] = None) -> str:
    """Summary of extracted PDF text. Never raises."""
    try:
        result = complete_text(
            resolved_key or platform_key(),
            prompts.document_summary(text),
            system=prompts.SYSTEM_DOCUMENT_SUMMARY,
            model=SUMMARY_MODEL,
            temperature=0.7,
            max_tokens=500,
        )
    except Exception as e:
        log.error("Error summarizing PDF: %s", e)
        return SUMMARY_FAILED
    return result.text.strip() or "No summary generated."


def structure_instruction(instructions: str, resolved_key: ResolvedKey) -> str:
    """Turn a free-form user instruction into a knowledge base entry."""
    result = complete_text(
        resolved_key,
        prompts.knowledge_entry(instructions),
        system=prompts.SYSTEM_KNOWLEDGE_ENTRY,
        model=SUMMARY_MODEL,
        temperature=0.3,
        max_tokens=1000,
    )
    text = result.text.strip()
    if not text or text == FALLBACK_REPLY:
        raise AgentBuilderError("Failed to generate knowledge content")
    return text
