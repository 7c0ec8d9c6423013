"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import UUID

from mcp_gateway.models.api import AuthScheme, ConnectionStatus, Plan, SubscriptionStatus


@dataclass(frozen=True)
class SubscriptionData:
    """Immutable subscription snapshot."""

    user_id: UUID
    plan: Plan
    status: SubscriptionStatus
    trial_ends_at: datetime | None = None
    current_period_end: datetime | None = None

    def grants_access(self, now: datetime) -> bool:
        """Active, or trialing with a trial end still in the future."""
        if self.status == SubscriptionStatus.ACTIVE:
            return True
        return (
            self.status == SubscriptionStatus.TRIALING
            and self.trial_ends_at is not None
            and self.trial_ends_at > now
        )


@dataclass(frozen=True)
class Principal:
    """Authenticated identity plus its subscription."""

    user_id: UUID
    subscription: SubscriptionData
    auth_scheme: AuthScheme = AuthScheme.API_KEY

    @property
    def plan(self) -> Plan:
        """Plan of the principal's subscription."""
        return self.subscription.plan


@dataclass(frozen=True)
class ApiKeyRecord:
    """Stored API key (fingerprint only, never the raw secret)."""

    key_id: UUID
    user_id: UUID
    key_hash: str
    is_active: bool
    last_used_at: datetime | None = None


@dataclass(frozen=True)
class SessionData:
    """OAuth session issued by the token endpoint."""

    session_id: str
    user_id: UUID
    expires_at: datetime
    last_used_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        """Whether the session expiry is in the past."""
        return self.expires_at < now


@dataclass(frozen=True)
class AuthCodeData:
    """Single-use OAuth authorization code."""

    code: str
    user_id: UUID
    client_id: str
    redirect_uri: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Whether the code expiry is in the past."""
        return self.expires_at < now


@dataclass(frozen=True)
class OAuthClientData:
    """Registered OAuth client."""

    client_id: str
    client_secret_hash: str
    redirect_uris: tuple[str, ...]
    name: str | None = None

    def allows_redirect(self, redirect_uri: str) -> bool:
        """Whether redirect_uri is on the client's allow-list."""
        return redirect_uri in self.redirect_uris


@dataclass(frozen=True)
class UserCredentials:
    """User login record."""

    user_id: UUID
    email: str
    password_hash: str


@dataclass(frozen=True)
class LinkedAccountData:
    """A user's connection to the advertising API, including its tokens."""

    id: UUID
    user_id: UUID
    external_profile_id: str
    marketplace: str
    region: str
    access_token: str
    refresh_token: str
    token_expires_at: datetime
    connection_status: ConnectionStatus
    created_at: datetime
    name: str | None = None
    external_advertiser_id: str | None = None

    @property
    def is_connected(self) -> bool:
        """Only connected accounts may use their access token."""
        return self.connection_status == ConnectionStatus.CONNECTED

    @property
    def display_name(self) -> str:
        """Account name, falling back to the profile id."""
        return self.name or f"Profile {self.external_profile_id}"

    def with_token(self, access_token: str, expires_at: datetime) -> "LinkedAccountData":
        """Copy carrying a freshly refreshed access token."""
        return replace(
            self,
            access_token=access_token,
            token_expires_at=expires_at,
            connection_status=ConnectionStatus.CONNECTED,
        )

    def __repr__(self) -> str:
        """String representation that never includes tokens."""
        return (
            f"<LinkedAccountData(id={self.id}, profile={self.external_profile_id}, "
            f"marketplace={self.marketplace}, status={self.connection_status.value})>"
        )


@dataclass(frozen=True)
class ValidToken:
    """An access token guaranteed fresh at the time it was handed out."""

    access_token: str
    account: LinkedAccountData

    def __repr__(self) -> str:
        """String representation that never includes the token."""
        return f"<ValidToken(account={self.account.id}, expires={self.account.token_expires_at})>"


@dataclass(frozen=True)
class RefreshedToken:
    """Token endpoint response."""

    access_token: str
    expires_in: int


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of a policy evaluation for one tool and plan."""

    tool_name: str
    plan: Plan
    allowed: bool
    blacklisted: bool = False
    required_plan: Plan | None = None
    message: str | None = None


@dataclass(frozen=True)
class DisabledTool:
    """A catalog entry the caller's plan would reject at call time."""

    name: str
    reason: str
    required_plan: Plan | None

    def to_payload(self) -> dict[str, Any]:
        """Wire representation used in the tools/list result."""
        return {
            "name": self.name,
            "reason": self.reason,
            "requiredPlan": self.required_plan.value if self.required_plan else None,
        }


@dataclass(frozen=True)
class CatalogResult:
    """Post-processed tool catalog."""

    tools: list[dict[str, Any]]
    disabled_tools: list[DisabledTool] = field(default_factory=list)
