"""
Agent Builder — Prompt Registry

All LLM prompts used by chat, knowledge updates and the summarize routes,
centralized for tuning.
"""

import json
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------

CONTENT_REFINEMENT = """ You are a content refinement system.
You will be given raw text scraped from a website. The text may contain menus, ads, boilerplate, duplicate sections, or formatting issues.

Your job is to:
1. Remove irrelevant content such as navigation links, ads, disclaimers, cookie notices, or repeated text.
2. Keep only the meaningful body content (headings, paragraphs, lists, FAQs, descriptions).
3. Rewrite the content in clear, concise, human-friendly language while keeping the original meaning intact.
4. Preserve important factual information, numbers, and domain-specific terms.
5. Organize the cleaned content into a structured format:
   - Headings and subheadings
   - Bullet points where needed
   - Short paragraphs for readability
6. Preserve the hierarchy of the content:
   - Keep headings (H1, H2, H3, etc.)
   - Keep subheadings under their respective headings
   - Keep body text under the right heading/subheading
7. Output should be well-formatted and structured, ready for chatbot training.

Do not invent new information. Do not provide commentary or opinions.  """

SYSTEM_DOCUMENT_SUMMARY = (
    "You are a helpful assistant that summarizes PDF documents clearly and concisely. "
    "Do not forget to consider the entire content"
)

SYSTEM_KNOWLEDGE_ENTRY = (
    "Convert user instructions into clear, structured knowledge entries. "
    "Return ONLY the knowledge content, no meta-commentary."
)

PURPOSE_INSTRUCTIONS = {
    "instagram": "You are an Instagram DM assistant. Respond professionally and help users with their inquiries.",
    "messenger": "You are a Messenger chatbot. Provide helpful responses and guide users.",
    "calendar": "You are a calendar booking assistant. Help users schedule appointments efficiently.",
    "website": "You are a website customer support agent. Answer questions and provide assistance.",
    "general": "You are a helpful AI assistant. Provide accurate and useful information.",
}

TONE_ADJUSTMENTS = {
    "friendly": "Use a warm, approachable, and friendly tone.",
    "professional": "Maintain a formal and business-like tone.",
    "casual": "Use a relaxed and conversational tone.",
    "enthusiastic": "Be energetic, excited, and positive.",
    "helpful": "Focus on being solution-oriented and supportive.",
}


# ---------------------------------------------------------------------------
# Prompt Templates
# ---------------------------------------------------------------------------

def content_refinement(content: str) -> str:
    return f"Follow the instructions  {CONTENT_REFINEMENT}  for the following content :\n\n{content}"


def document_summary(text: str) -> str:
    return f"Summarize the following document:\n\n{text}"


def knowledge_entry(instructions: str) -> str:
    return f"NEW INSTRUCTION:\n{instructions}\n\nConvert this into a clear knowledge base entry."


def agent_system_prompt(agent: Dict[str, Any]) -> str:
    """Base system prompt for an agent from its purpose, tone, persona and extra instructions."""
    purpose = PURPOSE_INSTRUCTIONS.get(agent.get("purpose") or "", PURPOSE_INSTRUCTIONS["general"])
    tone = TONE_ADJUSTMENTS.get(agent.get("tone") or "", TONE_ADJUSTMENTS["friendly"])
    persona = f"Your personality: {agent['persona']}\n" if agent.get("persona") else ""

    prompt = f"You are {agent.get('name')}, an AI assistant. {purpose}\n\n{tone}\n\n{persona}"
    if agent.get("system_prompt"):
        prompt += f"\n\nAdditional Instructions:\n{agent['system_prompt']}"
    return prompt


def knowledge_context(results: List[Dict[str, Any]]) -> str:
    """Context block for vector search hits."""
    out = "\n\n=== KNOWLEDGE BASE CONTEXT ===\n"
    out += (
        "The following information is from documents the user has provided. "
        "This is THE SOURCE OF TRUTH - prioritize this information over your general knowledge:\n\n"
    )
    for i, result in enumerate(results, 1):
        meta = result.get("metadata") or {}
        out += (
            f"[Document {i}] ({meta.get('fileName') or 'Uploaded Document'}) "
            f"- Relevance: {result['similarity'] * 100:.1f}%\n"
        )
        out += f"{result['content']}\n\n"
    out += "=== END KNOWLEDGE BASE CONTEXT ===\n\n"
    return out


def full_document_context(documents: List[Dict[str, str]]) -> str:
    """Context block used when vector search finds nothing. Each item has name + content."""
    out = "\n\n=== KNOWLEDGE BASE CONTEXT (FULL DOCUMENTS) ===\n"
    for i, doc in enumerate(documents, 1):
        out += f"[Document {i}] {doc['name']}\n"
        out += f"{doc['content']}\n\n"
    out += "=== END KNOWLEDGE BASE CONTEXT ===\n\n"
    return out


def instruction_summary(instructions: str, created_at: str, api_key_source: Optional[str]) -> str:
    """JSON stored in the source's summary column for instruction entries."""
    return json.dumps({
        "type": "user_instruction",
        "instruction": instructions,
        "created_at": created_at,
        "api_key_source": api_key_source,
    })
