"""
End-to-end tests for MCP request dispatch.

Real policy, resolver, token manager, forwarder and transformer; only the
credential store and the upstream endpoint are stubbed.
"""

import json

import httpx
import pytest

from mcp_gateway.exceptions import (
    InvalidRequestError,
    MethodNotFoundError,
    NoConnectedAccountsError,
    UpstreamError,
)
from mcp_gateway.models.api import JsonRpcRequest, Plan
from mcp_gateway.services.account_resolver import AccountResolver
from mcp_gateway.services.forwarder import ProxyForwarder
from mcp_gateway.services.gateway import PROTOCOL_VERSION, MCPGateway
from mcp_gateway.services.policy import PolicyEngine
from mcp_gateway.services.token_manager import TokenLifecycleManager
from mcp_gateway.services.transformer import ResponseTransformer

from conftest import NOW

UPSTREAM_TOOLS = [
    {"name": "profiles-list_profiles", "description": "List profiles"},
    {"name": "campaign_management-get_campaigns", "description": "Get campaigns"},
    {"name": "campaign_management-create_campaign", "description": "Create a campaign"},
]


def upstream_reply(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if body["method"] == "tools/list":
        result = {"tools": UPSTREAM_TOOLS}
    else:
        result = {"content": [{"type": "text", "text": "3 campaigns"}]}
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body.get("id"), "result": result})


def call(name: str, arguments: dict | None = None, request_id: int = 1) -> JsonRpcRequest:
    return JsonRpcRequest(
        id=request_id, method="tools/call", params={"name": name, "arguments": arguments or {}}
    )


@pytest.fixture
def recorder(upstream_recorder):
    return upstream_recorder(upstream_reply)


@pytest.fixture
def gateway(store, recorder, test_settings):
    policy = PolicyEngine(billing_url="https://billing.test/upgrade")
    return MCPGateway(
        store=store,
        policy=policy,
        resolver=AccountResolver(store, require_explicit_account=False),
        token_manager=TokenLifecycleManager(
            config=test_settings, http_client=recorder.client(), clock=lambda: NOW
        ),
        forwarder=ProxyForwarder(config=test_settings, http_client=recorder.client()),
        transformer=ResponseTransformer(policy, max_schema_depth=3),
    )


@pytest.fixture
def linked(store, account_us, account_uk):
    store.list_connected_accounts.return_value = [account_us, account_uk]
    return account_us, account_uk


class TestDispatch:
    async def test_initialize(self, gateway, make_principal):
        result = await gateway.handle(make_principal(), JsonRpcRequest(id=1, method="initialize"))

        assert result["protocolVersion"] == PROTOCOL_VERSION
        assert "tools" in result["capabilities"]

    async def test_ping(self, gateway, make_principal):
        assert await gateway.handle(make_principal(), JsonRpcRequest(id=1, method="ping")) == {}

    async def test_unknown_method(self, gateway, make_principal):
        with pytest.raises(MethodNotFoundError) as exc_info:
            await gateway.handle(make_principal(), JsonRpcRequest(id=1, method="resources/list"))
        assert exc_info.value.code == "METHOD_NOT_FOUND"

    @pytest.mark.parametrize(
        "params", [{}, {"name": ""}, {"name": "x", "arguments": "not an object"}]
    )
    async def test_malformed_tool_call(self, gateway, make_principal, params):
        request = JsonRpcRequest(id=1, method="tools/call", params=params)
        with pytest.raises(InvalidRequestError):
            await gateway.handle(make_principal(), request)


class TestToolsList:
    async def test_catalog_for_starter(self, gateway, make_principal, linked, recorder):
        result = await gateway.handle(
            make_principal(Plan.STARTER), JsonRpcRequest(id=1, method="tools/list")
        )

        names = [tool["name"] for tool in result["tools"]]
        assert names[0].startswith("accounts-")
        assert "profiles-list_profiles" not in names
        assert "campaign_management-create_campaign" in names
        assert result["disabledTools"] == [
            {
                "name": "campaign_management-create_campaign",
                "reason": "PLAN_UPGRADE_REQUIRED",
                "requiredPlan": "professional",
            }
        ]
        assert recorder.requests[0].headers["Amazon-Advertising-API-Scope"] == "1111111111"

    async def test_no_accounts(self, gateway, make_principal, recorder):
        with pytest.raises(NoConnectedAccountsError):
            await gateway.handle(make_principal(), JsonRpcRequest(id=1, method="tools/list"))
        assert recorder.requests == []


class TestToolsCall:
    async def test_allowed_call_is_forwarded(self, gateway, make_principal, linked, recorder):
        result = await gateway.handle(
            make_principal(), call("campaign_management-get_campaigns", request_id=42)
        )

        assert result == {"content": [{"type": "text", "text": "3 campaigns"}]}
        forwarded = json.loads(recorder.requests[0].content)
        assert forwarded["id"] == 42
        assert forwarded["params"]["name"] == "campaign_management-get_campaigns"

    async def test_starter_write_gets_upgrade_text(self, gateway, make_principal, linked, recorder):
        result = await gateway.handle(
            make_principal(Plan.STARTER), call("campaign_management-create_campaign")
        )

        text = result["content"][0]["text"]
        assert "professional" in text.lower()
        assert "https://billing.test/upgrade" in text
        assert recorder.requests == []

    async def test_agency_delete_gets_disabled_text(self, gateway, make_principal, linked, recorder):
        result = await gateway.handle(
            make_principal(Plan.AGENCY), call("campaign_management-delete_campaign")
        )

        text = result["content"][0]["text"].lower()
        assert "upgrade" not in text
        assert "billing" not in text
        assert recorder.requests == []

    async def test_context_routes_to_second_account(
        self, gateway, make_principal, linked, recorder
    ):
        _, second = linked

        await gateway.handle(
            make_principal(),
            call("campaign_management-get_campaigns", {"advertiserId": second.external_advertiser_id}),
        )

        headers = recorder.requests[0].headers
        assert headers["Amazon-Advertising-API-Scope"] == second.external_profile_id
        assert headers["Amazon-Ads-AccountID"] == second.external_advertiser_id

    async def test_explicit_profile_id(self, gateway, make_principal, linked, recorder):
        _, second = linked

        await gateway.handle(
            make_principal(),
            call("campaign_management-get_campaigns", {"profile_id": second.external_profile_id}),
        )

        assert recorder.requests[0].headers["Amazon-Advertising-API-Scope"] == "2222222222"

    async def test_reply_without_result(
        self, store, linked, make_principal, upstream_recorder, test_settings
    ):
        recorder = upstream_recorder(
            lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1})
        )
        policy = PolicyEngine()
        gateway = MCPGateway(
            store=store,
            policy=policy,
            resolver=AccountResolver(store, require_explicit_account=False),
            token_manager=TokenLifecycleManager(config=test_settings, clock=lambda: NOW),
            forwarder=ProxyForwarder(config=test_settings, http_client=recorder.client()),
            transformer=ResponseTransformer(policy),
        )

        with pytest.raises(UpstreamError) as exc_info:
            await gateway.handle(make_principal(), call("campaign_management-get_campaigns"))
        assert exc_info.value.code == "UPSTREAM_BAD_RESULT"


class TestMetaTools:
    async def test_list_linked_accounts_marks_active(self, gateway, store, make_principal, linked):
        _, second = linked
        store.get_active_account_id.return_value = second.id

        result = await gateway.handle(make_principal(), call("accounts-list_linked_accounts"))

        text = result["content"][0]["text"]
        assert "Connected accounts (2)" in text
        assert "Acme Europe (profile 2222222222" in text
        assert text.count("[active]") == 1

    async def test_list_without_accounts(self, gateway, make_principal):
        result = await gateway.handle(make_principal(), call("accounts-list_linked_accounts"))
        assert "No connected advertising accounts" in result["content"][0]["text"]

    async def test_switch_account(self, gateway, store, make_principal, linked, recorder):
        _, second = linked

        result = await gateway.handle(
            make_principal(Plan.STARTER),
            call("accounts-switch_account", {"account_identifier": "Acme Europe"}),
        )

        assert "Acme Europe" in result["content"][0]["text"]
        store.set_active_account_id.assert_awaited_once_with(second.user_id, second.id)
        assert recorder.requests == []

    async def test_switch_requires_identifier(self, gateway, make_principal, linked):
        with pytest.raises(InvalidRequestError):
            await gateway.handle(make_principal(), call("accounts-switch_account"))

    async def test_get_active_defaults_to_earliest(self, gateway, make_principal, linked):
        result = await gateway.handle(make_principal(), call("accounts-get_active_account"))
        assert "No account selected" in result["content"][0]["text"]
        assert "Acme US" in result["content"][0]["text"]
