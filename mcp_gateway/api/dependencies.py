"""
FastAPI Dependencies - Service wiring and caller authentication.

Request-scoped services share the request's database session through one
CredentialStore. Process-wide services (policy, token manager, forwarder)
are singletons so locks and HTTP connection pools span requests.
"""

from argon2 import PasswordHasher
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from mcp_gateway.db.session import get_db
from mcp_gateway.models.domain import Principal
from mcp_gateway.services.account_resolver import AccountResolver
from mcp_gateway.services.authenticator import Authenticator
from mcp_gateway.services.credential_store import CredentialStore
from mcp_gateway.services.forwarder import ProxyForwarder, get_forwarder
from mcp_gateway.services.gateway import MCPGateway
from mcp_gateway.services.oauth_server import OAuthService
from mcp_gateway.services.policy import PolicyEngine
from mcp_gateway.services.token_manager import TokenLifecycleManager, get_token_manager
from mcp_gateway.services.transformer import ResponseTransformer

_policy_engine: PolicyEngine | None = None
_password_hasher = PasswordHasher()


def get_policy_engine() -> PolicyEngine:
    """Get policy engine singleton instance."""
    global _policy_engine
    if _policy_engine is None:
        _policy_engine = PolicyEngine()
    return _policy_engine


def get_store(db: AsyncSession = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


def get_authenticator(store: CredentialStore = Depends(get_store)) -> Authenticator:
    return Authenticator(store)


async def get_principal(
    authorization: str | None = Header(default=None),
    mcp_session_id: str | None = Header(default=None, alias="Mcp-Session-Id"),
    authenticator: Authenticator = Depends(get_authenticator),
) -> Principal:
    """
    Authenticate the caller from Authorization / Mcp-Session-Id headers.

    Raises:
        AuthenticationError / AuthorizationError, rendered as JSON-RPC errors
        by the application's GatewayError handler
    """
    return await authenticator.authenticate(authorization, mcp_session_id)


def get_gateway(
    store: CredentialStore = Depends(get_store),
    policy: PolicyEngine = Depends(get_policy_engine),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
    forwarder: ProxyForwarder = Depends(get_forwarder),
) -> MCPGateway:
    return MCPGateway(
        store=store,
        policy=policy,
        resolver=AccountResolver(store),
        token_manager=token_manager,
        forwarder=forwarder,
        transformer=ResponseTransformer(policy),
    )


def get_oauth_service(store: CredentialStore = Depends(get_store)) -> OAuthService:
    return OAuthService(store, password_hasher=_password_hasher)
