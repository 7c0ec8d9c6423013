"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
The schema itself is owned and migrated outside this service; these models
only describe the tables the gateway reads and writes.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Login identity plus the pointer to the user's active linked account.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Argon2id hash of the login password
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)

    active_linked_account_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("linked_accounts.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email})>"


class Subscription(Base):
    """
    ORM model for subscriptions table.

    One subscription per user; the plan gates which tools may be called.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "plan IN ('starter', 'professional', 'agency')", name="ck_subscriptions_plan"
        ),
        CheckConstraint(
            "status IN ('trialing', 'active', 'past_due', 'canceled', 'inactive')",
            name="ck_subscriptions_status",
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Subscription(user_id={self.user_id}, plan={self.plan}, status={self.status})>"


class APIKey(Base):
    """
    ORM model for api_keys table.

    Stores SHA-256 fingerprints of API keys; the raw key is never persisted.
    """

    __tablename__ = "api_keys"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_api_keys_hash_active", "key_hash", postgresql_where=(is_active.is_(True))),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<APIKey(id={self.id}, prefix={self.key_prefix}, active={self.is_active})>"


class OAuthClient(Base):
    """ORM model for oauth_clients table (registered assistant connectors)."""

    __tablename__ = "oauth_clients"

    client_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    client_secret_hash: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    redirect_uris: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<OAuthClient(client_id={self.client_id}, name={self.name})>"


class OAuthAuthCode(Base):
    """
    ORM model for oauth_auth_codes table.

    Single-use authorization codes, deleted as soon as they are exchanged.
    """

    __tablename__ = "oauth_auth_codes"

    code: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("oauth_clients.client_id", ondelete="CASCADE"), nullable=False
    )
    redirect_uri: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_oauth_auth_codes_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<OAuthAuthCode(code={self.code[:8]}..., client_id={self.client_id})>"


class OAuthSession(Base):
    """
    ORM model for oauth_sessions table.

    Bearer sessions issued by the token endpoint; deleted on detected expiry.
    """

    __tablename__ = "oauth_sessions"

    session_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_oauth_sessions_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<OAuthSession(session={self.session_id[:16]}..., user_id={self.user_id})>"


class LinkedAccount(Base):
    """
    ORM model for linked_accounts table.

    A user's connection to the advertising API with its Login with Amazon
    tokens. Tokens are only usable while connection_status is 'connected'.
    """

    __tablename__ = "linked_accounts"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_profile_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_advertiser_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    marketplace: Mapped[str] = mapped_column(String(32), nullable=False)
    region: Mapped[str] = mapped_column(String(2), nullable=False)

    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    connection_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="connected"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("region IN ('na', 'eu', 'fe')", name="ck_linked_accounts_region"),
        CheckConstraint(
            "connection_status IN ('connected', 'expired', 'disconnected')",
            name="ck_linked_accounts_status",
        ),
        Index("idx_linked_accounts_user_status", "user_id", "connection_status"),
        Index("idx_linked_accounts_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<LinkedAccount(id={self.id}, profile={self.external_profile_id}, "
            f"status={self.connection_status})>"
        )
