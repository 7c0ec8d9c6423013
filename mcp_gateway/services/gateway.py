"""
MCP Gateway - JSON-RPC dispatch for authenticated callers.

tools/list:  resolve account -> fresh token -> forward -> transform catalog
tools/call:  policy check -> resolve account -> fresh token -> forward
Account meta-tools are answered locally and bypass the tier policy.

Policy denials come back as a normal result carrying the explanation text,
so clients show the message instead of retrying what looks like a fault.
"""

from typing import Any

from pydantic import ValidationError
from structlog import get_logger

from mcp_gateway.config import settings
from mcp_gateway.exceptions import (
    InvalidRequestError,
    MethodNotFoundError,
    ToolNotAllowedError,
    UpstreamError,
)
from mcp_gateway.models.api import JsonRpcRequest, ToolCallParams
from mcp_gateway.models.domain import LinkedAccountData, Principal
from mcp_gateway.services.account_resolver import AccountResolver, explicit_profile_id
from mcp_gateway.services.credential_store import CredentialStore
from mcp_gateway.services.forwarder import ProxyForwarder
from mcp_gateway.services.policy import PolicyEngine
from mcp_gateway.services.token_manager import TokenLifecycleManager
from mcp_gateway.services.transformer import (
    GET_ACTIVE_ACCOUNT_TOOL,
    LIST_ACCOUNTS_TOOL,
    META_TOOL_NAMES,
    SWITCH_ACCOUNT_TOOL,
    ResponseTransformer,
    extract_tools,
)

logger = get_logger(__name__)

PROTOCOL_VERSION = "2025-03-26"
SUPPORTED_METHODS = ("initialize", "ping", "tools/list", "tools/call")


def text_result(text: str) -> dict[str, Any]:
    """tools/call result carrying a single text block."""
    return {"content": [{"type": "text", "text": text}]}


def describe_account(account: LinkedAccountData, active: bool = False) -> str:
    line = (
        f"- {account.display_name} (profile {account.external_profile_id}, "
        f"marketplace {account.marketplace}, region {account.region.upper()})"
    )
    if account.external_advertiser_id:
        line += f" advertiser {account.external_advertiser_id}"
    return f"{line} [active]" if active else line


class MCPGateway:
    """Handles one JSON-RPC request on behalf of an authenticated principal."""

    def __init__(
        self,
        store: CredentialStore,
        policy: PolicyEngine,
        resolver: AccountResolver,
        token_manager: TokenLifecycleManager,
        forwarder: ProxyForwarder,
        transformer: ResponseTransformer,
    ):
        self.store = store
        self.policy = policy
        self.resolver = resolver
        self.token_manager = token_manager
        self.forwarder = forwarder
        self.transformer = transformer

    async def handle(self, principal: Principal, request: JsonRpcRequest) -> dict[str, Any]:
        """
        Dispatch a JSON-RPC request and return its result object.

        Raises:
            GatewayError subclasses, mapped to JSON-RPC errors by the route layer
        """
        if request.method == "initialize":
            return self.initialize(request)
        if request.method == "ping":
            return {}
        if request.method == "tools/list":
            return await self.list_tools(principal, request)
        if request.method == "tools/call":
            return await self.call_tool(principal, request)
        raise MethodNotFoundError(request.method)

    @staticmethod
    def initialize(request: JsonRpcRequest) -> dict[str, Any]:
        requested = (request.params or {}).get("protocolVersion")
        return {
            "protocolVersion": requested if isinstance(requested, str) else PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": settings.service_name, "version": settings.api_version},
        }

    async def list_tools(self, principal: Principal, request: JsonRpcRequest) -> dict[str, Any]:
        account = await self.resolver.resolve(principal.user_id)
        token = await self.token_manager.get_valid_token(self.store, account)
        payload = await self.forwarder.forward(request.model_dump(exclude_none=True), token)

        catalog = self.transformer.transform_catalog(extract_tools(payload), principal.plan)

        logger.info(
            "tools_listed",
            user_id=str(principal.user_id),
            plan=principal.plan.value,
            tools=len(catalog.tools),
            disabled=len(catalog.disabled_tools),
        )
        return self.transformer.to_list_result(catalog)

    async def call_tool(self, principal: Principal, request: JsonRpcRequest) -> dict[str, Any]:
        try:
            params = ToolCallParams.model_validate(request.params or {})
        except ValidationError as exc:
            raise InvalidRequestError(
                f"tools/call requires params.name and object params.arguments: "
                f"{exc.errors()[0]['msg']}"
            ) from exc

        if params.name in META_TOOL_NAMES:
            return await self.call_meta_tool(principal, params)

        try:
            self.policy.check(params.name, principal.plan)
        except ToolNotAllowedError as exc:
            return text_result(exc.message)

        account = await self.resolver.resolve(
            principal.user_id,
            explicit_profile_id=explicit_profile_id(params.arguments),
            context=params.arguments,
        )
        token = await self.token_manager.get_valid_token(self.store, account)
        payload = await self.forwarder.forward(request.model_dump(exclude_none=True), token)

        result = payload.get("result")
        if not isinstance(result, dict):
            raise UpstreamError("Advertising API reply had no result", "UPSTREAM_BAD_RESULT")

        logger.info(
            "tool_called",
            user_id=str(principal.user_id),
            tool=params.name,
            account_id=str(account.id),
        )
        return result

    # ========================================================================
    # Account meta-tools
    # ========================================================================

    async def call_meta_tool(self, principal: Principal, params: ToolCallParams) -> dict[str, Any]:
        user_id = principal.user_id

        if params.name == LIST_ACCOUNTS_TOOL:
            accounts = await self.resolver.list_accounts(user_id)
            if not accounts:
                return text_result(
                    f"No connected advertising accounts. Connect one at {settings.settings_url}"
                )
            active = await self.resolver.get_active_account(user_id)
            active_id = active.id if active else None
            lines = [describe_account(a, a.id == active_id) for a in accounts]
            return text_result(f"Connected accounts ({len(accounts)}):\n" + "\n".join(lines))

        if params.name == SWITCH_ACCOUNT_TOOL:
            identifier = params.arguments.get("account_identifier")
            if not isinstance(identifier, str) or not identifier.strip():
                raise InvalidRequestError("account_identifier is required")
            account = await self.resolver.switch_account(user_id, identifier)
            return text_result(
                "Switched active account. Tool calls now target:\n" + describe_account(account, True)
            )

        if params.name != GET_ACTIVE_ACCOUNT_TOOL:
            raise InvalidRequestError(f"Unknown account tool: {params.name}")

        active = await self.resolver.get_active_account(user_id)
        if active is not None:
            return text_result("Active account:\n" + describe_account(active, True))
        accounts = await self.resolver.list_accounts(user_id)
        if not accounts:
            return text_result(
                f"No connected advertising accounts. Connect one at {settings.settings_url}"
            )
        return text_result(
            "No account selected. Tool calls default to:\n" + describe_account(accounts[0])
        )
