"""
Tests for domain models.
"""

from datetime import timedelta

import pytest

from mcp_gateway.models.api import ConnectionStatus, JsonRpcRequest, Plan, SubscriptionStatus
from mcp_gateway.models.domain import DisabledTool, SessionData, ValidToken

from conftest import NOW, USER_ID


class TestPlan:
    """Tests for Plan ordering."""

    def test_ranks_follow_tier_order(self):
        """Starter < Professional < Agency."""
        assert Plan.STARTER.rank < Plan.PROFESSIONAL.rank < Plan.AGENCY.rank


class TestSubscriptionData:
    """Tests for the subscription access rule."""

    def test_active_grants_access(self, make_subscription):
        assert make_subscription().grants_access(NOW) is True

    def test_trial_grants_access_until_it_ends(self, make_subscription):
        """A trial is good up to, but not including, its end instant."""
        subscription = make_subscription(
            status=SubscriptionStatus.TRIALING, trial_ends_at=NOW + timedelta(hours=1)
        )

        assert subscription.grants_access(NOW) is True
        assert subscription.grants_access(NOW + timedelta(hours=1)) is False

    def test_trial_without_end_date_is_denied(self, make_subscription):
        subscription = make_subscription(status=SubscriptionStatus.TRIALING)
        assert subscription.grants_access(NOW) is False

    @pytest.mark.parametrize(
        "status",
        [SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED, SubscriptionStatus.INACTIVE],
    )
    def test_other_statuses_are_denied(self, make_subscription, status):
        assert make_subscription(status=status).grants_access(NOW) is False


class TestSessionData:
    def test_expiry(self):
        session = SessionData(session_id="session_x", user_id=USER_ID, expires_at=NOW)

        assert session.is_expired(NOW) is False
        assert session.is_expired(NOW + timedelta(seconds=1)) is True


class TestLinkedAccountData:
    """Tests for LinkedAccountData."""

    def test_display_name_falls_back_to_profile(self, make_account):
        assert make_account(name=None).display_name == "Profile 1111111111"
        assert make_account().display_name == "Acme US"

    def test_with_token_reconnects(self, make_account):
        """A refreshed copy carries the new token and is connected again."""
        account = make_account(status=ConnectionStatus.EXPIRED)

        refreshed = account.with_token("Atza|new", NOW + timedelta(hours=1))

        assert refreshed.access_token == "Atza|new"
        assert refreshed.is_connected
        assert account.access_token != "Atza|new"

    def test_repr_hides_tokens(self, make_account):
        """Tokens must never leak through repr (logs, tracebacks)."""
        account = make_account()
        token = ValidToken(access_token=account.access_token, account=account)

        assert account.access_token not in repr(account)
        assert account.refresh_token not in repr(account)
        assert account.access_token not in repr(token)


class TestDisabledTool:
    def test_payload(self):
        assert DisabledTool("x-create", "PLAN_UPGRADE_REQUIRED", Plan.PROFESSIONAL).to_payload() == {
            "name": "x-create",
            "reason": "PLAN_UPGRADE_REQUIRED",
            "requiredPlan": "professional",
        }


class TestJsonRpcRequest:
    @pytest.mark.parametrize(("request_id", "notification"), [(None, True), (0, False), ("a", False)])
    def test_is_notification(self, request_id, notification):
        request = JsonRpcRequest(method="ping", id=request_id)
        assert request.is_notification is notification
