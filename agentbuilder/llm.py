"""
Chat completion over the key an agent resolved to.

OpenAI for platform keys and user OpenAI keys, Anthropic for user
Anthropic keys. Provider auth and rate-limit failures are translated to
UnauthorizedError / RateLimitError so the routes answer 401 / 429.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import anthropic
import openai
from anthropic import Anthropic
from openai import OpenAI

from agentbuilder.api_keys import ResolvedKey
from agentbuilder.config import settings
from agentbuilder.errors import ApiKeyError, RateLimitError, UnauthorizedError

log = logging.getLogger("agentbuilder.llm")

FALLBACK_REPLY = "I apologize, but I could not generate a response at this time."


@dataclass
class ChatCompletionResult:
    text: str
    tokens_used: int = 0
    usage: Dict[str, Any] = field(default_factory=dict)


def _invalid_key() -> UnauthorizedError:
    return UnauthorizedError(
        "Invalid API key. Please check your API key configuration.",
        error_code="INVALID_API_KEY",
    )


def _busy() -> RateLimitError:
    return RateLimitError(
        "Service temporarily busy. Please try again in a moment.",
        headers={"Retry-After": "60"},
    )


def _openai_chat(key: ResolvedKey, model: str, system: str, messages: List[Dict[str, str]],
                 temperature: float, max_tokens: int, user: Optional[str]) -> ChatCompletionResult:
    client = OpenAI(api_key=key.api_key, timeout=settings.llm_timeout,
                    max_retries=settings.llm_max_retries)
    kwargs: Dict[str, Any] = {}
    if user:
        kwargs["user"] = user
    try:
        resp = client.chat.completions.create(
            model=model,
            messages=[{"role": "system", "content": system}, *messages],
            temperature=temperature,
            max_tokens=max_tokens,
            frequency_penalty=0.3,
            **kwargs,
        )
    except openai.AuthenticationError:
        raise _invalid_key()
    except openai.RateLimitError:
        raise _busy()

    text = ""
    if resp.choices and resp.choices[0].message:
        text = resp.choices[0].message.content or ""
    usage = resp.usage.model_dump() if resp.usage is not None else {}
    return ChatCompletionResult(
        text=text or FALLBACK_REPLY,
        tokens_used=int(usage.get("total_tokens") or 0),
        usage=usage,
    )


def _anthropic_chat(key: ResolvedKey, model: str, system: str, messages: List[Dict[str, str]],
                    temperature: float, max_tokens: int) -> ChatCompletionResult:
    if not model or model.startswith("gpt"):
        model = settings.anthropic_model
    client = Anthropic(api_key=key.api_key, timeout=settings.llm_timeout,
                       max_retries=settings.llm_max_retries)
    try:
        resp = client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=messages,
        )
    except anthropic.AuthenticationError:
        raise _invalid_key()
    except anthropic.RateLimitError:
        raise _busy()

    text = "".join(getattr(block, "text", "") for block in resp.content)
    usage = {
        "prompt_tokens": resp.usage.input_tokens,
        "completion_tokens": resp.usage.output_tokens,
        "total_tokens": resp.usage.input_tokens + resp.usage.output_tokens,
    }
    return ChatCompletionResult(
        text=text or FALLBACK_REPLY,
        tokens_used=usage["total_tokens"],
        usage=usage,
    )


def complete_chat(resolved_key: ResolvedKey, model: Optional[str], system: str,
                  messages: List[Dict[str, str]], temperature: float = 0.7,
                  max_tokens: int = 1000, user: Optional[str] = None) -> ChatCompletionResult:
    """Run one chat completion with the agent's key."""
    model = model or settings.default_chat_model
    log.info("Chat completion provider=%s source=%s model=%s",
             resolved_key.provider, resolved_key.source, model)
    if resolved_key.provider == "openai":
        return _openai_chat(resolved_key, model, system, messages, temperature, max_tokens, user)
    if resolved_key.provider == "anthropic":
        return _anthropic_chat(resolved_key, model, system, messages, temperature, max_tokens)
    raise ApiKeyError(f"Provider {resolved_key.provider} not yet supported. Please use OpenAI.")


def complete_text(resolved_key: ResolvedKey, prompt: str, system: str = "You are a helpful assistant.",
                  model: Optional[str] = None, temperature: float = 0.3,
                  max_tokens: int = 500) -> ChatCompletionResult:
    return complete_chat(
        resolved_key, model, system,
        [{"role": "user", "content": prompt}],
        temperature=temperature, max_tokens=max_tokens,
    )


def platform_key() -> ResolvedKey:
    """The platform OpenAI key, for routes that are not tied to an agent."""
    if not settings.openai_api_key:
        raise ApiKeyError("OpenAI API key is not configured")
    return ResolvedKey(api_key=settings.openai_api_key, source="platform", provider="openai")
