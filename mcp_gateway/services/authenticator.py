"""
Authenticator - Resolves an inbound credential into a Principal.

Two schemes, chosen by the headers present:
- Session: Mcp-Session-Id header, or an Authorization bearer carrying the
  session prefix (session_...). Sessions come from the OAuth token endpoint.
- API key: Authorization: Bearer sk_live_...

Both paths converge on Principal{user_id, subscription} and the same
subscription access rule. Successful requests bump last_used_at in a
detached task that never affects the response.
"""

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from mcp_gateway.config import settings
from mcp_gateway.db.session import get_session
from mcp_gateway.exceptions import (
    AuthenticationError,
    AuthorizationError,
    SubscriptionInactiveError,
)
from mcp_gateway.models.api import AuthScheme
from mcp_gateway.models.domain import Principal, SubscriptionData
from mcp_gateway.observability.metrics import metrics
from mcp_gateway.services.api_key import hash_api_key
from mcp_gateway.services.cache import TTLCache, identity_cache
from mcp_gateway.services.credential_store import CredentialStore

logger = get_logger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# Strong references to in-flight fire-and-forget tasks
_background_tasks: set[asyncio.Task[None]] = set()


def _bearer_token(authorization: str | None) -> str | None:
    """Extract the credential from an 'Authorization: Bearer <token>' value."""
    if not authorization:
        return None
    scheme, _, credential = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()


class Authenticator:
    """Turns request headers into an authenticated Principal."""

    def __init__(
        self,
        store: CredentialStore,
        cache: TTLCache[Principal] | None = None,
        session_scope: SessionScope = get_session,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.cache = cache if cache is not None else identity_cache
        self.session_scope = session_scope
        self._now = clock or (lambda: datetime.now(UTC))

    async def authenticate(
        self, authorization: str | None, session_header: str | None = None
    ) -> Principal:
        """
        Authenticate a request from its Authorization / Mcp-Session-Id headers.

        Raises:
            AuthenticationError (401) or AuthorizationError (403)
        """
        bearer = _bearer_token(authorization)

        if session_header and session_header.strip():
            return await self.authenticate_session(session_header.strip())
        if bearer and bearer.startswith(settings.session_prefix):
            return await self.authenticate_session(bearer)
        if bearer:
            return await self.authenticate_api_key(bearer)

        metrics.record_auth("none", "missing")
        raise AuthenticationError(
            f"API key is required in Authorization header "
            f"(Authorization: Bearer {settings.api_key_prefix}...)",
            "MISSING_CREDENTIALS",
        )

    # ========================================================================
    # API key path
    # ========================================================================

    async def authenticate_api_key(self, raw_key: str) -> Principal:
        """Validate an API key, using the identity cache on the hot path."""
        if not raw_key.startswith(settings.api_key_prefix):
            logger.warning("api_key_invalid_format", api_key=raw_key)
            metrics.record_auth(AuthScheme.API_KEY.value, "bad_format")
            raise AuthenticationError(
                f"API key must start with {settings.api_key_prefix}", "INVALID_API_KEY_FORMAT"
            )

        key_hash = hash_api_key(raw_key)
        cache_key = f"api_key:{key_hash}"

        principal = await self._cache_get(cache_key)
        if principal is None:
            principal = await self._load_api_key_principal(key_hash)
            await self._cache_set(cache_key, principal)

        self._check_subscription(principal, AuthScheme.API_KEY)
        metrics.record_auth(AuthScheme.API_KEY.value, "success")

        self._schedule_touch(AuthScheme.API_KEY, key_hash)
        return principal

    async def _load_api_key_principal(self, key_hash: str) -> Principal:
        record = await self.store.get_active_api_key(key_hash)
        if record is None:
            logger.warning("api_key_not_found", key_hash=key_hash[:16])
            metrics.record_auth(AuthScheme.API_KEY.value, "invalid")
            raise AuthenticationError(
                f"Invalid or inactive API key. Generate a new key at {settings.settings_url}",
                "INVALID_API_KEY",
            )

        subscription = await self._require_subscription(record.user_id, AuthScheme.API_KEY)
        return Principal(
            user_id=record.user_id, subscription=subscription, auth_scheme=AuthScheme.API_KEY
        )

    async def _cache_get(self, cache_key: str) -> Principal | None:
        try:
            principal = await self.cache.get(cache_key)
        except Exception as exc:
            # Cache trouble must not block authentication
            logger.warning("identity_cache_read_failed", error=str(exc))
            return None
        metrics.record_cache_lookup(hit=principal is not None)
        return principal

    async def _cache_set(self, cache_key: str, principal: Principal) -> None:
        try:
            await self.cache.set(cache_key, principal)
        except Exception as exc:
            logger.warning("identity_cache_write_failed", error=str(exc))

    # ========================================================================
    # Session path
    # ========================================================================

    async def authenticate_session(self, session_id: str) -> Principal:
        """Validate an OAuth session token."""
        session = await self.store.get_session(session_id)
        if session is None:
            logger.warning("session_not_found", session_id=session_id)
            metrics.record_auth(AuthScheme.SESSION.value, "invalid")
            raise AuthenticationError(
                "Invalid session. Please log in again.", "INVALID_SESSION"
            )

        if session.is_expired(self._now()):
            logger.warning(
                "session_expired",
                session_id=session_id,
                expires_at=session.expires_at.isoformat(),
            )
            await self.store.delete_session(session_id)
            metrics.record_auth(AuthScheme.SESSION.value, "expired")
            raise AuthenticationError(
                "Session expired. Please log in again.", "SESSION_EXPIRED"
            )

        subscription = await self._require_subscription(session.user_id, AuthScheme.SESSION)
        principal = Principal(
            user_id=session.user_id, subscription=subscription, auth_scheme=AuthScheme.SESSION
        )

        self._check_subscription(principal, AuthScheme.SESSION)
        metrics.record_auth(AuthScheme.SESSION.value, "success")

        logger.debug(
            "session_authenticated",
            user_id=str(session.user_id),
            plan=subscription.plan.value,
            session_id=session_id,
        )

        self._schedule_touch(AuthScheme.SESSION, session_id)
        return principal

    # ========================================================================
    # Shared checks
    # ========================================================================

    async def _require_subscription(self, user_id: UUID, scheme: AuthScheme) -> SubscriptionData:
        subscription = await self.store.get_subscription(user_id)
        if subscription is None:
            logger.warning("subscription_not_found", user_id=str(user_id))
            metrics.record_auth(scheme.value, "no_subscription")
            raise AuthorizationError(
                f"No active subscription found. Subscribe at {settings.billing_url}",
                "NO_SUBSCRIPTION",
            )
        return subscription

    def _check_subscription(self, principal: Principal, scheme: AuthScheme) -> None:
        subscription = principal.subscription
        if subscription.grants_access(self._now()):
            return

        logger.warning(
            "subscription_inactive",
            user_id=str(principal.user_id),
            status=subscription.status.value,
        )
        metrics.record_auth(scheme.value, "subscription_inactive")
        raise SubscriptionInactiveError(subscription.status, settings.billing_url)

    # ========================================================================
    # Last-used bookkeeping
    # ========================================================================

    def _schedule_touch(self, scheme: AuthScheme, credential_key: str) -> None:
        """Bump last_used_at without making the caller wait for it."""
        task = asyncio.create_task(self._touch_last_used(scheme, credential_key, self._now()))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    async def _touch_last_used(self, scheme: AuthScheme, credential_key: str, when: datetime) -> None:
        try:
            async with self.session_scope() as session:
                store = CredentialStore(session)
                if scheme == AuthScheme.API_KEY:
                    await store.touch_api_key(credential_key, when)
                else:
                    await store.touch_session(credential_key, when)
            logger.debug("last_used_updated", scheme=scheme.value)
        except Exception as exc:
            logger.error("last_used_update_failed", scheme=scheme.value, error=str(exc))
