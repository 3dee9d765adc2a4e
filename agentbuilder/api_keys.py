"""
User API key vault and per-agent key resolution.

User keys are stored AES-256-GCM encrypted (base64 of iv ‖ ciphertext+tag,
32-byte key derived from ENCRYPTION_SECRET_KEY padded with '0'). An agent
uses the platform key unless it is bound to an active user key; any
problem with the user key falls back to the platform key.
"""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from agentbuilder import db
from agentbuilder.config import settings
from agentbuilder.errors import ApiKeyError, NotFoundError, ValidationError

log = logging.getLogger("agentbuilder.api_keys")

SUPPORTED_PROVIDERS = ("openai", "anthropic")
_IV_BYTES = 12


@dataclass
class ResolvedKey:
    api_key: str
    source: str  # 'platform' | 'user'
    provider: str


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def _cipher() -> AESGCM:
    secret = settings.encryption_secret_key
    if not secret:
        raise ApiKeyError("ENCRYPTION_SECRET_KEY is not configured")
    return AESGCM(secret.ljust(32, "0")[:32].encode("utf-8")[:32])


def encrypt_secret(plaintext: str) -> str:
    iv = os.urandom(_IV_BYTES)
    sealed = _cipher().encrypt(iv, plaintext.encode("utf-8"), None)
    return base64.b64encode(iv + sealed).decode("ascii")


def decrypt_secret(ciphertext: str) -> str:
    try:
        combined = base64.b64decode(ciphertext)
        iv, sealed = combined[:_IV_BYTES], combined[_IV_BYTES:]
        return _cipher().decrypt(iv, sealed, None).decode("utf-8")
    except (InvalidTag, ValueError) as e:
        raise ApiKeyError(f"Failed to decrypt API key: {e.__class__.__name__}")


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------

def mask_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:3]}...{api_key[-4:]}"


def _public(key: db.UserApiKey) -> Dict[str, Any]:
    return {
        "id": key.id,
        "provider": key.provider,
        "key_name": key.key_name,
        "key_preview": key.key_preview or "",
        "is_active": bool(key.is_active),
        "created_at": key.created_at,
    }


def save_api_key(user_id: str, provider: str, api_key: str, key_name: Optional[str] = None) -> Dict[str, Any]:
    """Encrypt and store a key, deactivating the user's previous key for the provider."""
    provider = (provider or "").lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ValidationError(f"Unsupported provider: {provider or '(none)'}")
    if not api_key or not api_key.strip():
        raise ValidationError("Missing provider or apiKey")

    encrypted = encrypt_secret(api_key.strip())
    with db.session_scope() as s:
        (
            s.query(db.UserApiKey)
            .filter_by(user_id=user_id, provider=provider, is_active=True)
            .update({db.UserApiKey.is_active: False}, synchronize_session=False)
        )
        key = db.UserApiKey(
            user_id=user_id,
            provider=provider,
            encrypted_key=encrypted,
            key_name=key_name or f"{provider} key",
            key_preview=mask_key(api_key.strip()),
            is_active=True,
            created_at=db.utcnow(),
        )
        s.add(key)
        s.flush()
        saved = _public(key)
    log.info("Saved %s API key %s for user %s", provider, saved["id"], user_id)
    return saved


def list_api_keys(user_id: str) -> List[Dict[str, Any]]:
    with db.session_scope() as s:
        keys = (
            s.query(db.UserApiKey)
            .filter(db.UserApiKey.user_id == user_id)
            .order_by(db.UserApiKey.created_at.desc())
            .all()
        )
        return [_public(k) for k in keys]


def delete_api_key(user_id: str, key_id: str) -> None:
    """Delete a key; agents bound to it go back to the platform key."""
    with db.session_scope() as s:
        n = (
            s.query(db.UserApiKey)
            .filter_by(id=key_id, user_id=user_id)
            .delete(synchronize_session=False)
        )
        if n == 0:
            raise NotFoundError("API key not found")
        (
            s.query(db.Agent)
            .filter_by(api_key_id=key_id, user_id=user_id)
            .update(
                {
                    db.Agent.api_key_id: None,
                    db.Agent.use_platform_key: True,
                    db.Agent.updated_at: db.utcnow(),
                },
                synchronize_session=False,
            )
        )


def decrypt_api_key(user_id: str, key_id: Optional[str] = None,
                    provider: Optional[str] = None) -> Dict[str, str]:
    if not key_id and not provider:
        raise ValidationError("Missing keyId or provider")
    with db.session_scope() as s:
        query = s.query(db.UserApiKey).filter_by(user_id=user_id, is_active=True)
        if key_id:
            query = query.filter_by(id=key_id)
        else:
            query = query.filter_by(provider=provider)
        key = query.first()
        if key is None:
            raise NotFoundError("API key not found")
        encrypted, key_provider = key.encrypted_key, key.provider
    return {"api_key": decrypt_secret(encrypted), "provider": key_provider}


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _platform_key(reason: str) -> ResolvedKey:
    if not settings.openai_api_key:
        raise ApiKeyError("No API key available. Please configure your API key in settings.")
    if reason:
        log.warning("%s, falling back to platform key", reason)
    return ResolvedKey(api_key=settings.openai_api_key, source="platform", provider="openai")


def get_api_key_for_agent(agent_id: str) -> ResolvedKey:
    """Pick the key an agent's LLM calls should use."""
    with db.session_scope() as s:
        agent = (
            s.query(db.Agent.api_key_id, db.Agent.use_platform_key, db.Agent.user_id)
            .filter(db.Agent.id == agent_id)
            .one_or_none()
        )
    if not agent:
        return _platform_key(f"Agent {agent_id} not found")

    if agent.use_platform_key or not agent.api_key_id:
        return _platform_key("")

    try:
        decrypted = decrypt_api_key(agent.user_id, key_id=agent.api_key_id)
    except (NotFoundError, ApiKeyError) as e:
        return _platform_key(f"User key unusable for agent {agent_id} ({e.message})")

    return ResolvedKey(api_key=decrypted["api_key"], source="user", provider=decrypted["provider"])
