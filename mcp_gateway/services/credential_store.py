"""
Credential Store - CRUD access to keys, subscriptions, sessions and linked accounts.

The relational store is the only source of truth for credentials. Every
method returns immutable domain dataclasses; ORM rows never leave this module.
SQLAlchemy failures are raised as StoreError.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from mcp_gateway.db.models import (
    APIKey,
    LinkedAccount,
    OAuthAuthCode,
    OAuthClient,
    OAuthSession,
    Subscription,
    User,
)
from mcp_gateway.exceptions import StoreError
from mcp_gateway.models.api import ConnectionStatus, Plan, SubscriptionStatus
from mcp_gateway.models.domain import (
    ApiKeyRecord,
    AuthCodeData,
    LinkedAccountData,
    OAuthClientData,
    SessionData,
    SubscriptionData,
    UserCredentials,
)

logger = get_logger(__name__)


def _to_subscription(row: Subscription) -> SubscriptionData:
    return SubscriptionData(
        user_id=row.user_id,
        plan=Plan(row.plan),
        status=SubscriptionStatus(row.status),
        trial_ends_at=row.trial_ends_at,
        current_period_end=row.current_period_end,
    )


def _to_linked_account(row: LinkedAccount) -> LinkedAccountData:
    return LinkedAccountData(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        external_profile_id=row.external_profile_id,
        external_advertiser_id=row.external_advertiser_id,
        marketplace=row.marketplace,
        region=row.region,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        token_expires_at=row.token_expires_at,
        connection_status=ConnectionStatus(row.connection_status),
        created_at=row.created_at,
    )


class CredentialStore:
    """Store operations used by the gateway services."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _execute(self, operation: str, stmt: Any) -> Any:
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("store_operation_failed", operation=operation, error=str(exc))
            raise StoreError(operation, str(exc)) from exc

    async def _write(self, operation: str, stmt: Any) -> Any:
        """Execute a statement and commit, rolling back on failure."""
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
            return result
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("store_operation_failed", operation=operation, error=str(exc))
            raise StoreError(operation, str(exc)) from exc

    async def _add(self, operation: str, row: Any) -> None:
        try:
            self.db.add(row)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("store_operation_failed", operation=operation, error=str(exc))
            raise StoreError(operation, str(exc)) from exc

    # ========================================================================
    # API keys
    # ========================================================================

    async def get_active_api_key(self, key_hash: str) -> ApiKeyRecord | None:
        """Look up an active API key by its fingerprint."""
        stmt = select(APIKey).where(APIKey.key_hash == key_hash, APIKey.is_active.is_(True))
        result = await self._execute("get_active_api_key", stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return ApiKeyRecord(
            key_id=row.id,
            user_id=row.user_id,
            key_hash=row.key_hash,
            is_active=row.is_active,
            last_used_at=row.last_used_at,
        )

    async def create_api_key(
        self, user_id: UUID, key_hash: str, key_prefix: str, name: str | None = None
    ) -> UUID:
        """Persist a new API key fingerprint and return its id."""
        row = APIKey(user_id=user_id, key_hash=key_hash, key_prefix=key_prefix, name=name)
        await self._add("create_api_key", row)
        return row.id

    async def touch_api_key(self, key_hash: str, when: datetime) -> None:
        """Record the last time an API key was used."""
        stmt = update(APIKey).where(APIKey.key_hash == key_hash).values(last_used_at=when)
        await self._write("touch_api_key", stmt)

    # ========================================================================
    # Subscriptions and users
    # ========================================================================

    async def get_subscription(self, user_id: UUID) -> SubscriptionData | None:
        """Fetch a user's subscription."""
        stmt = select(Subscription).where(Subscription.user_id == user_id)
        result = await self._execute("get_subscription", stmt)
        row = result.scalar_one_or_none()
        return _to_subscription(row) if row is not None else None

    async def get_user_by_email(self, email: str) -> UserCredentials | None:
        """Fetch login credentials by (case-insensitive) email."""
        stmt = select(User).where(User.email == email.strip().lower())
        result = await self._execute("get_user_by_email", stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return UserCredentials(user_id=row.id, email=row.email, password_hash=row.password_hash)

    # ========================================================================
    # OAuth sessions, codes and clients
    # ========================================================================

    async def get_session(self, session_id: str) -> SessionData | None:
        """Look up an OAuth session by its opaque id."""
        stmt = select(OAuthSession).where(OAuthSession.session_id == session_id)
        result = await self._execute("get_session", stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return SessionData(
            session_id=row.session_id,
            user_id=row.user_id,
            expires_at=row.expires_at,
            last_used_at=row.last_used_at,
        )

    async def create_session(self, session_id: str, user_id: UUID, expires_at: datetime) -> None:
        """Persist a new OAuth session."""
        row = OAuthSession(session_id=session_id, user_id=user_id, expires_at=expires_at)
        await self._add("create_session", row)

    async def delete_session(self, session_id: str) -> None:
        """Delete an OAuth session."""
        stmt = delete(OAuthSession).where(OAuthSession.session_id == session_id)
        await self._write("delete_session", stmt)

    async def touch_session(self, session_id: str, when: datetime) -> None:
        """Record the last time a session was used."""
        stmt = (
            update(OAuthSession)
            .where(OAuthSession.session_id == session_id)
            .values(last_used_at=when)
        )
        await self._write("touch_session", stmt)

    async def get_oauth_client(self, client_id: str) -> OAuthClientData | None:
        """Fetch a registered OAuth client."""
        stmt = select(OAuthClient).where(OAuthClient.client_id == client_id)
        result = await self._execute("get_oauth_client", stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return OAuthClientData(
            client_id=row.client_id,
            client_secret_hash=row.client_secret_hash,
            redirect_uris=tuple(row.redirect_uris or ()),
            name=row.name,
        )

    async def create_auth_code(self, auth_code: AuthCodeData) -> None:
        """Persist a single-use authorization code."""
        row = OAuthAuthCode(
            code=auth_code.code,
            user_id=auth_code.user_id,
            client_id=auth_code.client_id,
            redirect_uri=auth_code.redirect_uri,
            expires_at=auth_code.expires_at,
        )
        await self._add("create_auth_code", row)

    async def consume_auth_code(self, code: str) -> AuthCodeData | None:
        """
        Claim an authorization code by deleting it.

        The DELETE ... RETURNING runs in one statement, so of two concurrent
        exchanges only one gets the row back.

        Returns:
            The code's data, or None if it does not exist or was already used
        """
        stmt = (
            delete(OAuthAuthCode)
            .where(OAuthAuthCode.code == code)
            .returning(
                OAuthAuthCode.code,
                OAuthAuthCode.user_id,
                OAuthAuthCode.client_id,
                OAuthAuthCode.redirect_uri,
                OAuthAuthCode.expires_at,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            row = result.one_or_none()
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("store_operation_failed", operation="consume_auth_code", error=str(exc))
            raise StoreError("consume_auth_code", str(exc)) from exc

        if row is None:
            return None
        return AuthCodeData(
            code=row.code,
            user_id=row.user_id,
            client_id=row.client_id,
            redirect_uri=row.redirect_uri,
            expires_at=row.expires_at,
        )

    # ========================================================================
    # Linked accounts
    # ========================================================================

    async def list_connected_accounts(self, user_id: UUID) -> list[LinkedAccountData]:
        """Connected accounts for a user, earliest created first."""
        stmt = (
            select(LinkedAccount)
            .where(
                LinkedAccount.user_id == user_id,
                LinkedAccount.connection_status == ConnectionStatus.CONNECTED.value,
            )
            .order_by(LinkedAccount.created_at.asc())
        )
        result = await self._execute("list_connected_accounts", stmt)
        rows: Sequence[LinkedAccount] = result.scalars().all()
        return [_to_linked_account(row) for row in rows]

    async def get_account(self, account_id: UUID) -> LinkedAccountData | None:
        """Fetch a linked account by id, whatever its status."""
        # Bypass the identity map so re-reads see tokens committed elsewhere
        stmt = (
            select(LinkedAccount)
            .where(LinkedAccount.id == account_id)
            .execution_options(populate_existing=True)
        )
        result = await self._execute("get_account", stmt)
        row = result.scalar_one_or_none()
        return _to_linked_account(row) if row is not None else None

    async def get_active_account_id(self, user_id: UUID) -> UUID | None:
        """Read the user's active-account pointer."""
        stmt = select(User.active_linked_account_id).where(User.id == user_id)
        result = await self._execute("get_active_account_id", stmt)
        value: UUID | None = result.scalar_one_or_none()
        return value

    async def set_active_account_id(self, user_id: UUID, account_id: UUID | None) -> None:
        """Set or clear the user's active-account pointer."""
        stmt = update(User).where(User.id == user_id).values(active_linked_account_id=account_id)
        await self._write("set_active_account_id", stmt)

    async def update_account_tokens(
        self, account_id: UUID, access_token: str, expires_at: datetime
    ) -> None:
        """Store a refreshed access token and mark the account connected."""
        stmt = (
            update(LinkedAccount)
            .where(LinkedAccount.id == account_id)
            .values(
                access_token=access_token,
                token_expires_at=expires_at,
                connection_status=ConnectionStatus.CONNECTED.value,
                updated_at=datetime.now(UTC),
            )
        )
        result = await self._write("update_account_tokens", stmt)
        if not result.rowcount:
            raise StoreError("update_account_tokens", f"linked account {account_id} not found")

    async def set_connection_status(self, account_id: UUID, status: ConnectionStatus) -> None:
        """Change a linked account's connection status."""
        stmt = (
            update(LinkedAccount)
            .where(LinkedAccount.id == account_id)
            .values(connection_status=status.value, updated_at=datetime.now(UTC))
        )
        await self._write("set_connection_status", stmt)
