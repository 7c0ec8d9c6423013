"""
Token Lifecycle Manager - Guarantees a fresh upstream access token.

A stored access token is handed out only while its expiry lies beyond
now + buffer (5 minutes by default). Otherwise the refresh token is exchanged
at the Login with Amazon token endpoint and the result persisted before the
caller sees it.

Any refresh failure marks the account expired and raises TokenRefreshError.
There is no retry: the user must re-link the account.

Refreshes for one account are serialized with a per-account asyncio.Lock,
since the provider may rotate refresh tokens on use. The second waiter
re-reads the account and reuses the token the first one stored.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import NoReturn
from uuid import UUID

import httpx
from structlog import get_logger

from mcp_gateway.config import Settings, settings as default_settings
from mcp_gateway.exceptions import StoreError, TokenRefreshError
from mcp_gateway.models.api import ConnectionStatus
from mcp_gateway.models.domain import LinkedAccountData, RefreshedToken, ValidToken
from mcp_gateway.observability.metrics import metrics
from mcp_gateway.services.credential_store import CredentialStore

logger = get_logger(__name__)


def needs_refresh(expires_at: datetime, now: datetime, buffer: timedelta) -> bool:
    """True unless the token stays valid past now + buffer."""
    return not expires_at > now + buffer


class TokenLifecycleManager:
    """Hands out valid access tokens for linked accounts, refreshing as needed."""

    def __init__(
        self,
        config: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or default_settings
        self._http_client = http_client
        self._now = clock or (lambda: datetime.now(UTC))
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._lock_users: dict[UUID, int] = {}

    @property
    def buffer(self) -> timedelta:
        return timedelta(seconds=self.config.token_refresh_buffer_seconds)

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.config.token_refresh_timeout_seconds
            )
        return self._http_client

    @asynccontextmanager
    async def _serialized(self, account_id: UUID) -> AsyncIterator[None]:
        """Per-account refresh lock, discarded once nobody holds or awaits it."""
        lock = self._locks.setdefault(account_id, asyncio.Lock())
        self._lock_users[account_id] = self._lock_users.get(account_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[account_id] -= 1
            if not self._lock_users[account_id]:
                del self._lock_users[account_id]
                del self._locks[account_id]

    async def get_valid_token(
        self, store: CredentialStore, account: LinkedAccountData
    ) -> ValidToken:
        """
        Return an access token that is valid beyond the safety buffer.

        Raises:
            TokenRefreshError: If the account is not connected or refresh fails
        """
        if not account.is_connected:
            raise TokenRefreshError(account.id, f"account is {account.connection_status.value}")

        if not needs_refresh(account.token_expires_at, self._now(), self.buffer):
            logger.debug("access_token_fresh", account_id=str(account.id))
            return ValidToken(access_token=account.access_token, account=account)

        if not self.config.token_refresh_serialize:
            return await self.refresh(store, account)

        async with self._serialized(account.id):
            current = await store.get_account(account.id) or account
            if not current.is_connected:
                # A concurrent refresh already failed and flipped the status
                raise TokenRefreshError(
                    account.id, f"account is {current.connection_status.value}"
                )
            if not needs_refresh(current.token_expires_at, self._now(), self.buffer):
                logger.debug("access_token_refreshed_concurrently", account_id=str(account.id))
                return ValidToken(access_token=current.access_token, account=current)
            return await self.refresh(store, current)

    async def refresh(self, store: CredentialStore, account: LinkedAccountData) -> ValidToken:
        """
        Exchange the refresh token and persist the new access token.

        Raises:
            TokenRefreshError: On any failure, after marking the account expired
        """
        logger.info(
            "access_token_refreshing",
            account_id=str(account.id),
            profile_id=account.external_profile_id,
            expires_at=account.token_expires_at.isoformat(),
        )
        started = time.perf_counter()

        refreshed = await self._request_token(store, account)
        expires_at = self._now() + timedelta(seconds=refreshed.expires_in)

        try:
            await store.update_account_tokens(account.id, refreshed.access_token, expires_at)
        except StoreError as exc:
            await self._fail(store, account, f"persist failed: {exc.message}")

        metrics.record_token_refresh(success=True)
        logger.info(
            "access_token_refreshed",
            account_id=str(account.id),
            expires_at=expires_at.isoformat(),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

        return ValidToken(
            access_token=refreshed.access_token,
            account=account.with_token(refreshed.access_token, expires_at),
        )

    async def _request_token(
        self, store: CredentialStore, account: LinkedAccountData
    ) -> RefreshedToken:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": account.refresh_token,
            "client_id": self.config.lwa_client_id,
            "client_secret": self.config.lwa_client_secret,
        }

        try:
            response = await self.http_client.post(self.config.lwa_token_url, data=data)
        except httpx.HTTPError as exc:
            await self._fail(store, account, f"transport error: {type(exc).__name__}")

        if not response.is_success:
            logger.error(
                "token_endpoint_rejected",
                account_id=str(account.id),
                status=response.status_code,
                body=response.text[:200],
            )
            await self._fail(
                store, account, f"token endpoint returned {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            payload = response.json()
            access_token = payload["access_token"]
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as exc:
            await self._fail(store, account, f"malformed token response: {exc}")

        if not isinstance(access_token, str) or not access_token or expires_in <= 0:
            await self._fail(store, account, "token response missing access token or lifetime")

        return RefreshedToken(access_token=access_token, expires_in=expires_in)

    async def _fail(
        self,
        store: CredentialStore,
        account: LinkedAccountData,
        reason: str,
        upstream_status: int | None = None,
    ) -> NoReturn:
        """Mark the account expired and raise. Never returns."""
        metrics.record_token_refresh(success=False)
        logger.error(
            "access_token_refresh_failed",
            account_id=str(account.id),
            profile_id=account.external_profile_id,
            reason=reason,
        )

        try:
            await store.set_connection_status(account.id, ConnectionStatus.EXPIRED)
        except StoreError as exc:
            logger.error(
                "mark_account_expired_failed", account_id=str(account.id), error=exc.message
            )

        raise TokenRefreshError(account.id, reason, upstream_status=upstream_status)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


_token_manager: TokenLifecycleManager | None = None


def get_token_manager() -> TokenLifecycleManager:
    """Process-wide manager, so refresh locks are shared by all requests."""
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenLifecycleManager()
    return _token_manager


async def close_token_manager() -> None:
    global _token_manager
    if _token_manager is not None:
        await _token_manager.close()
        _token_manager = None
