"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed, except the
opaque tool arguments and upstream payloads that the gateway forwards.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Plan(str, Enum):
    """Subscription plan tiers, lowest first."""

    STARTER = "starter"
    PROFESSIONAL = "professional"
    AGENCY = "agency"

    @property
    def rank(self) -> int:
        """Position of the plan in the tier ordering."""
        return list(Plan).index(self)


class SubscriptionStatus(str, Enum):
    """Subscription status enumeration."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"


class ConnectionStatus(str, Enum):
    """Linked account connection status."""

    CONNECTED = "connected"
    EXPIRED = "expired"
    DISCONNECTED = "disconnected"


class AuthScheme(str, Enum):
    """Inbound credential scheme."""

    API_KEY = "api_key"
    SESSION = "session"


# ============================================================================
# JSON-RPC Models
# ============================================================================


class JsonRpcRequest(BaseModel):
    """Inbound JSON-RPC 2.0 request."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str = Field(..., min_length=1)
    id: str | int | None = None
    params: dict[str, Any] | None = None

    @property
    def is_notification(self) -> bool:
        """Requests without an id expect no response."""
        return self.id is None


class ToolCallParams(BaseModel):
    """params of a tools/call request."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


class JsonRpcError(BaseModel):
    """JSON-RPC error object."""

    code: int
    message: str
    data: dict[str, Any] | None = None


class JsonRpcResponse(BaseModel):
    """Outbound JSON-RPC 2.0 response envelope."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None = None
    result: dict[str, Any] | None = None
    error: JsonRpcError | None = None


# ============================================================================
# Metadata Models
# ============================================================================


class CapabilitiesResponse(BaseModel):
    """GET /capabilities response."""

    name: str
    version: str
    protocol: str = "json-rpc-2.0"
    methods: list[str]
    auth_schemes: list[str]


class OAuthTokenResponse(BaseModel):
    """POST /oauth/token response body."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
