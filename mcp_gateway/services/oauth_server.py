"""
OAuth Authorization Server - Code flow that issues gateway session tokens.

authorize -> login (email + password, Argon2) -> single-use code (10 min)
-> token (code + client secret, Argon2) -> session_<hex> valid for 7 days.

Codes are deleted when claimed at the token endpoint, before any check on them.
"""

import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode, urlsplit

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from structlog import get_logger

from mcp_gateway.config import Settings, settings as default_settings
from mcp_gateway.exceptions import OAuthFlowError
from mcp_gateway.models.api import OAuthTokenResponse
from mcp_gateway.models.domain import AuthCodeData, OAuthClientData
from mcp_gateway.services.credential_store import CredentialStore

logger = get_logger(__name__)

AUTHORIZATION_CODE_GRANT = "authorization_code"
PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"


def append_query(url: str, params: dict[str, str]) -> str:
    """Append query parameters to a URL that may already carry some."""
    separator = "&" if urlsplit(url).query else "?"
    return f"{url}{separator}{urlencode(params)}"


def authorization_server_metadata(base_url: str) -> dict[str, object]:
    """RFC 8414 metadata document."""
    base = base_url.rstrip("/")
    return {
        "issuer": base,
        "authorization_endpoint": f"{base}/oauth/authorize",
        "token_endpoint": f"{base}/oauth/token",
        "response_types_supported": ["code"],
        "grant_types_supported": [AUTHORIZATION_CODE_GRANT],
        "token_endpoint_auth_methods_supported": ["client_secret_post"],
    }


def protected_resource_metadata_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}{PROTECTED_RESOURCE_PATH}"


def bearer_challenge(base_url: str) -> str:
    """WWW-Authenticate value pointing clients at the resource metadata."""
    return f'Bearer resource_metadata="{protected_resource_metadata_url(base_url)}"'


def protected_resource_metadata(base_url: str) -> dict[str, object]:
    """RFC 9728 metadata document for the MCP endpoint."""
    base = base_url.rstrip("/")
    return {
        "resource": f"{base}/mcp",
        "authorization_servers": [base],
        "bearer_methods_supported": ["header"],
    }


class OAuthService:
    """Authorization code flow backed by the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        password_hasher: PasswordHasher | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.password_hasher = password_hasher or PasswordHasher()
        self.config = config or default_settings
        self._now = clock or (lambda: datetime.now(UTC))

    def _verify(self, stored_hash: str, secret: str) -> bool:
        try:
            return self.password_hasher.verify(stored_hash, secret)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    async def validate_client(self, client_id: str, redirect_uri: str) -> OAuthClientData:
        """
        Check client_id and redirect_uri against the registered allow-list.

        Raises:
            OAuthFlowError: invalid_request if either is unknown
        """
        client = await self.store.get_oauth_client(client_id) if client_id else None
        if client is None or not client.allows_redirect(redirect_uri):
            logger.warning("oauth_invalid_client", client_id=client_id, redirect_uri=redirect_uri)
            raise OAuthFlowError("invalid_request", "Invalid client or redirect URI")
        return client

    async def login(
        self, email: str, password: str, client_id: str, redirect_uri: str
    ) -> AuthCodeData | None:
        """
        Verify user credentials and issue an authorization code.

        Returns:
            The stored code, or None when the email/password pair is wrong
        """
        await self.validate_client(client_id, redirect_uri)

        user = await self.store.get_user_by_email(email)
        if user is None or not self._verify(user.password_hash, password):
            logger.warning("oauth_login_failed", email=email, client_id=client_id)
            return None

        auth_code = AuthCodeData(
            code=secrets.token_hex(32),
            user_id=user.user_id,
            client_id=client_id,
            redirect_uri=redirect_uri,
            expires_at=self._now() + timedelta(seconds=self.config.auth_code_ttl_seconds),
        )
        await self.store.create_auth_code(auth_code)

        logger.info(
            "oauth_code_issued", user_id=str(user.user_id), client_id=client_id,
            auth_code=auth_code.code,
        )
        return auth_code

    async def exchange_code(
        self,
        grant_type: str,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str | None = None,
    ) -> OAuthTokenResponse:
        """
        Trade an authorization code for a session token.

        Raises:
            OAuthFlowError: unsupported_grant_type, invalid_client or invalid_grant
        """
        if grant_type != AUTHORIZATION_CODE_GRANT:
            logger.warning("oauth_unsupported_grant", grant_type=grant_type)
            raise OAuthFlowError(
                "unsupported_grant_type", "Only authorization_code grant type is supported"
            )

        client = await self.store.get_oauth_client(client_id) if client_id else None
        if client is None or not self._verify(client.client_secret_hash, client_secret):
            logger.warning("oauth_invalid_client_credentials", client_id=client_id)
            raise OAuthFlowError("invalid_client", "Invalid client credentials", status_code=401)

        # Claim the code before anything else; a replayed code finds no row
        auth_code = await self.store.consume_auth_code(code) if code else None
        if auth_code is None or auth_code.client_id != client_id:
            logger.warning("oauth_invalid_code", client_id=client_id, auth_code=code)
            raise OAuthFlowError("invalid_grant", "Invalid authorization code")

        if auth_code.is_expired(self._now()):
            logger.warning(
                "oauth_code_expired",
                client_id=client_id,
                expires_at=auth_code.expires_at.isoformat(),
            )
            raise OAuthFlowError("invalid_grant", "Authorization code expired")

        if redirect_uri is not None and redirect_uri != auth_code.redirect_uri:
            raise OAuthFlowError("invalid_grant", "redirect_uri does not match the authorization")

        session_id = f"{self.config.session_prefix}{secrets.token_hex(32)}"
        await self.store.create_session(
            session_id,
            auth_code.user_id,
            self._now() + timedelta(seconds=self.config.session_ttl_seconds),
        )

        logger.info("oauth_session_created", user_id=str(auth_code.user_id), session_id=session_id)

        return OAuthTokenResponse(
            access_token=session_id, expires_in=self.config.session_ttl_seconds
        )
