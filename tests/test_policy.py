"""
Tests for the Policy Engine.

Property-based tests pin down the blacklist and the tier subset chain;
example tests pin down concrete tool names and messages.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from mcp_gateway.exceptions import ToolNotAllowedError
from mcp_gateway.models.api import Plan
from mcp_gateway.services.policy import (
    GLOBAL_BLACKLIST,
    PLAN_DETAILS,
    PolicyEngine,
    action_of,
)

policy = PolicyEngine(billing_url="https://billing.test/upgrade")

namespaces = st.sampled_from(
    ["campaign_management", "reporting", "dsp_management", "billing", "profiles", ""]
)
actions = st.one_of(
    st.sampled_from(
        [
            "get_campaigns",
            "list_ad_groups",
            "create_campaign",
            "create_report",
            "update_keyword_bids",
            "pause_campaign",
            "archive_campaign",
            "delete_report",
            "redeem_invitation",
            "get_dsp_orders",
        ]
    ),
    st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=1, max_size=30),
)


def tool(namespace: str, action: str) -> str:
    return f"{namespace}-{action}" if namespace else action


# ============================================================================
# Properties
# ============================================================================


class TestPolicyProperties:
    @given(namespaces, st.sampled_from(sorted(GLOBAL_BLACKLIST)), st.sampled_from(list(Plan)))
    def test_blacklist_denied_for_every_plan(self, namespace, action, plan):
        assert policy.is_allowed(tool(namespace, action), plan) is False

    @given(namespaces, actions)
    def test_tiers_are_nested(self, namespace, action):
        name = tool(namespace, action)
        starter = policy.is_allowed(name, Plan.STARTER)
        professional = policy.is_allowed(name, Plan.PROFESSIONAL)
        agency = policy.is_allowed(name, Plan.AGENCY)

        assert not starter or professional
        assert not professional or agency

    @given(namespaces, actions)
    def test_agency_allows_everything_not_blacklisted(self, namespace, action):
        name = tool(namespace, action)
        assert policy.is_allowed(name, Plan.AGENCY) is not policy.is_blacklisted(name)

    @given(namespaces, actions, st.sampled_from(list(Plan)))
    def test_evaluate_agrees_with_is_allowed(self, namespace, action, plan):
        name = tool(namespace, action)
        decision = policy.evaluate(name, plan)
        assert decision.allowed == policy.is_allowed(name, plan)
        if not decision.allowed and not decision.blacklisted:
            assert decision.required_plan is not None
            assert decision.required_plan.rank > plan.rank


# ============================================================================
# Examples
# ============================================================================


class TestActionOf:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("campaign_management-get_campaigns", "get_campaigns"),
            ("get_campaigns", "get_campaigns"),
            ("user_invitation-get", "get"),
            ("a-b-c", "b-c"),
        ],
    )
    def test_action_of(self, name, expected):
        assert action_of(name) == expected


class TestTierTable:
    @pytest.mark.parametrize(
        ("name", "plan", "allowed"),
        [
            ("campaign_management-get_campaigns", Plan.STARTER, True),
            ("reporting-create_report", Plan.STARTER, True),
            ("reporting-create_product_report", Plan.STARTER, True),
            ("billing-billing_get_invoices", Plan.STARTER, True),
            ("campaign_management-create_campaign", Plan.STARTER, False),
            ("campaign_management-create_campaign", Plan.PROFESSIONAL, True),
            ("campaign_management-pause_campaign", Plan.PROFESSIONAL, True),
            ("user_invitation-redeem", Plan.PROFESSIONAL, True),
            ("campaign_management-archive_campaign", Plan.PROFESSIONAL, False),
            ("campaign_management-archive_campaign", Plan.AGENCY, True),
            ("dsp_management-get_orders", Plan.STARTER, False),
            ("dsp_management-get_orders", Plan.PROFESSIONAL, False),
            ("dsp_management-get_orders", Plan.AGENCY, True),
            ("reporting-delete_report", Plan.AGENCY, True),
        ],
    )
    def test_is_allowed(self, name, plan, allowed):
        assert policy.is_allowed(name, plan) is allowed

    @pytest.mark.parametrize(
        ("name", "minimum"),
        [
            ("campaign_management-get_campaigns", Plan.STARTER),
            ("campaign_management-create_campaign", Plan.PROFESSIONAL),
            ("campaign_management-archive_campaign", Plan.AGENCY),
            ("dsp_management-get_orders", Plan.AGENCY),
            ("campaign_management-delete_campaign", None),
        ],
    )
    def test_minimum_plan(self, name, minimum):
        assert policy.minimum_plan(name) == minimum


class TestCheck:
    def test_starter_write_names_professional(self):
        with pytest.raises(ToolNotAllowedError) as exc_info:
            policy.check("campaign_management-create_campaign", Plan.STARTER)

        error = exc_info.value
        assert error.code == "PLAN_UPGRADE_REQUIRED"
        assert error.required_plan == Plan.PROFESSIONAL
        assert "professional" in error.message.lower()
        assert PLAN_DETAILS[Plan.STARTER].price in error.message
        assert "https://billing.test/upgrade" in error.message

    def test_blacklisted_for_agency_omits_upgrade(self):
        with pytest.raises(ToolNotAllowedError) as exc_info:
            policy.check("campaign_management-delete_campaign", Plan.AGENCY)

        error = exc_info.value
        assert error.code == "TOOL_DISABLED"
        assert error.blacklisted is True
        assert error.required_plan is None
        assert "upgrade" not in error.message.lower()
        assert "billing" not in error.message.lower()

    def test_allowed_returns_decision(self):
        decision = policy.check("campaign_management-get_campaigns", Plan.STARTER)
        assert decision.allowed is True
        assert decision.message is None
