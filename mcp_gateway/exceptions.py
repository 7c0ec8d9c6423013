"""
Exception Classes - Strongly typed exception hierarchy.

Every failure is raised as one of five kinds (authentication, authorization,
not found, invalid request, upstream, internal). The route layer maps kinds
to HTTP status and JSON-RPC codes in one place (mcp_gateway.api.jsonrpc).
"""

from uuid import UUID

from mcp_gateway.models.api import Plan, SubscriptionStatus


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


# ============================================================================
# Kinds
# ============================================================================


class AuthenticationError(GatewayError):
    """Missing, malformed, unknown or expired credential."""

    default_code = "AUTHENTICATION_REQUIRED"


class AuthorizationError(GatewayError):
    """Valid identity, but not permitted to do this."""

    default_code = "FORBIDDEN"


class NotFoundError(GatewayError):
    """Referenced resource does not exist."""

    default_code = "NOT_FOUND"


class InvalidRequestError(GatewayError):
    """Malformed request or parameters."""

    default_code = "INVALID_PARAMS"


class UpstreamError(GatewayError):
    """The advertising provider failed or answered unexpectedly."""

    default_code = "UPSTREAM_ERROR"

    def __init__(
        self, message: str, code: str | None = None, upstream_status: int | None = None
    ) -> None:
        self.upstream_status = upstream_status
        super().__init__(message, code)


class InternalError(GatewayError):
    """Store failures and unexpected faults."""

    default_code = "INTERNAL_ERROR"


# ============================================================================
# Specific errors
# ============================================================================


class SubscriptionInactiveError(AuthorizationError):
    """Raised when the subscription does not currently grant access."""

    def __init__(self, status: SubscriptionStatus, billing_url: str) -> None:
        self.status = status
        self.billing_url = billing_url
        if status == SubscriptionStatus.PAST_DUE:
            message = "Your payment failed. Please update your payment method."
        elif status == SubscriptionStatus.CANCELED:
            message = "Your subscription has been canceled."
        else:
            message = "Your subscription is inactive."
        super().__init__(f"{message} Manage billing at {billing_url}", "SUBSCRIPTION_INACTIVE")


class ToolNotAllowedError(AuthorizationError):
    """Raised when a plan may not invoke a tool."""

    def __init__(
        self,
        tool_name: str,
        plan: Plan,
        message: str,
        required_plan: Plan | None = None,
        blacklisted: bool = False,
    ) -> None:
        self.tool_name = tool_name
        self.plan = plan
        self.required_plan = required_plan
        self.blacklisted = blacklisted
        code = "TOOL_DISABLED" if blacklisted else "PLAN_UPGRADE_REQUIRED"
        super().__init__(message, code)


class NoConnectedAccountsError(NotFoundError):
    """Raised when a user has no connected advertising account."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(
            "No connected advertising accounts. Connect an account in the dashboard.",
            "NO_CONNECTED_ACCOUNTS",
        )


class MethodNotFoundError(NotFoundError):
    """Raised for JSON-RPC methods the gateway does not serve."""

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"Method not found: {method}", "METHOD_NOT_FOUND")


class AccountNotFoundError(NotFoundError):
    """Raised when an account identifier matches none of the user's accounts."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"No connected account matches '{identifier}'", "ACCOUNT_NOT_FOUND")


class TokenRefreshError(UpstreamError):
    """Raised when an upstream access token could not be refreshed."""

    def __init__(self, account_id: UUID, reason: str, upstream_status: int | None = None) -> None:
        self.account_id = account_id
        self.reason = reason
        super().__init__(
            "Your advertising account authorization has expired. Please reconnect the account.",
            "TOKEN_REFRESH_FAILED",
            upstream_status=upstream_status,
        )


class StoreError(InternalError):
    """Raised when a credential store operation fails unexpectedly."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"Store operation {operation} failed: {message}", "STORE_ERROR")


# ============================================================================
# OAuth authorization server
# ============================================================================


class OAuthFlowError(Exception):
    """RFC 6749 error raised by the OAuth endpoints."""

    def __init__(self, error: str, description: str, status_code: int = 400) -> None:
        self.error = error
        self.description = description
        self.status_code = status_code
        super().__init__(f"{error}: {description}")
