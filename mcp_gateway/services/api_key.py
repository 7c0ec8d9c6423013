"""
API Key Service - Generation and fingerprinting of customer API keys.

Keys look like sk_live_<urlsafe-random>. Only the SHA-256 fingerprint is
stored; lookups hash the presented key and match on the fingerprint, so the
hash must be deterministic.
"""

import base64
import hashlib
import secrets
from uuid import UUID

from structlog import get_logger

from mcp_gateway.config import settings
from mcp_gateway.services.credential_store import CredentialStore

logger = get_logger(__name__)

KEY_PREFIX_DISPLAY_LENGTH = 12


def hash_api_key(raw_key: str) -> str:
    """SHA-256 hex fingerprint of a raw API key."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


class GeneratedAPIKey:
    """Data class for newly generated API key (includes plaintext, shown once)."""

    def __init__(self, key_id: UUID, plaintext_key: str, key_prefix: str, name: str | None):
        self.key_id = key_id
        self.plaintext_key = plaintext_key
        self.key_prefix = key_prefix
        self.name = name

    def __repr__(self) -> str:
        return f"<GeneratedAPIKey(key_id={self.key_id}, prefix={self.key_prefix})>"


class APIKeyService:
    """Service for API key creation."""

    def __init__(self, store: CredentialStore):
        self.store = store

    @staticmethod
    def generate_api_key() -> tuple[str, str, str]:
        """
        Generate a new API key.

        Returns:
            tuple: (plaintext_key, key_hash, key_prefix)
        """
        random_bytes = secrets.token_bytes(32)
        key_suffix = base64.urlsafe_b64encode(random_bytes).decode("utf-8").rstrip("=")
        plaintext_key = f"{settings.api_key_prefix}{key_suffix}"
        return plaintext_key, hash_api_key(plaintext_key), plaintext_key[:KEY_PREFIX_DISPLAY_LENGTH]

    async def create_api_key(self, user_id: UUID, name: str | None = None) -> GeneratedAPIKey:
        """
        Create a new API key for a user and store its fingerprint.

        Returns:
            GeneratedAPIKey with plaintext key (shown once!)
        """
        plaintext_key, key_hash, key_prefix = self.generate_api_key()
        key_id = await self.store.create_api_key(
            user_id=user_id, key_hash=key_hash, key_prefix=key_prefix, name=name
        )

        logger.info("api_key_created", key_id=str(key_id), user_id=str(user_id), name=name)

        return GeneratedAPIKey(
            key_id=key_id, plaintext_key=plaintext_key, key_prefix=key_prefix, name=name
        )
