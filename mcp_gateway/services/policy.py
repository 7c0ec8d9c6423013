"""
Policy Engine - Decides which tools a subscription plan may invoke.

Tool names look like "<namespace>-<action>", e.g.
"campaign_management-get_campaigns". Rules apply to the action part.

Layers, evaluated in order:
1. Global blacklist: destructive actions denied for every plan.
2. Tier prefixes (default deny): starter reads, professional adds writes,
   agency gets everything not blacklisted.
3. Premium channel: DSP tools require agency on top of the prefix rule.

The same engine decides the tools/list disabled set and the tools/call
check, so the catalog never advertises a tool that is then rejected.
"""

from dataclasses import dataclass

from structlog import get_logger

from mcp_gateway.config import settings
from mcp_gateway.exceptions import ToolNotAllowedError
from mcp_gateway.models.api import Plan
from mcp_gateway.models.domain import PolicyDecision
from mcp_gateway.observability.metrics import metrics

logger = get_logger(__name__)


GLOBAL_BLACKLIST: frozenset[str] = frozenset(
    {
        "delete_campaign",
        "delete_ad",
        "delete_ad_group",
        "delete_target",
        "delete_ad_association",
    }
)

_STARTER_PREFIXES: tuple[str, ...] = (
    "get_",
    "get",
    "list_",
    "list",
    "query_",
    "retrieve_",
    "describe_",
    "report_",
    "billing_",
    "account_info_",
    # Requesting a report only reads data
    "create_report",
    "create_product_report",
)

_PROFESSIONAL_PREFIXES: tuple[str, ...] = _STARTER_PREFIXES + (
    "create_",
    "create",
    "update_",
    "update",
    "add_",
    "associate_",
    "disassociate_",
    "pause_",
    "resume_",
    "enable_",
    "disable_",
    "redeem",
)

# None means every non-blacklisted action
TIER_PREFIXES: dict[Plan, tuple[str, ...] | None] = {
    Plan.STARTER: _STARTER_PREFIXES,
    Plan.PROFESSIONAL: _PROFESSIONAL_PREFIXES,
    Plan.AGENCY: None,
}

PREMIUM_CHANNEL_MARKER = "dsp"
PREMIUM_CHANNEL_PLAN = Plan.AGENCY


@dataclass(frozen=True)
class PlanDetails:
    """Display name and list price of a plan."""

    name: str
    price: str


PLAN_DETAILS: dict[Plan, PlanDetails] = {
    Plan.STARTER: PlanDetails(name="Starter", price="$49/mo"),
    Plan.PROFESSIONAL: PlanDetails(name="Professional", price="$149/mo"),
    Plan.AGENCY: PlanDetails(name="Agency", price="$249/mo"),
}


def action_of(tool_name: str) -> str:
    """Action part of a tool name: everything after the first '-'."""
    _, sep, action = tool_name.partition("-")
    return action if sep else tool_name


class PolicyEngine:
    """
    Tier and blacklist policy.

    Usage:
        policy = PolicyEngine()
        policy.is_allowed("campaign_management-get_campaigns", Plan.STARTER)  # True
        policy.check("campaign_management-create_campaign", Plan.STARTER)  # raises
    """

    def __init__(self, billing_url: str | None = None):
        self.billing_url = billing_url or settings.billing_url

    @staticmethod
    def is_blacklisted(tool_name: str) -> bool:
        return action_of(tool_name).lower() in GLOBAL_BLACKLIST

    @staticmethod
    def _tier_allows(action: str, plan: Plan) -> bool:
        prefixes = TIER_PREFIXES[plan]
        if prefixes is None:
            return True
        return action.startswith(prefixes)

    @staticmethod
    def _channel_allows(tool_name: str, plan: Plan) -> bool:
        if PREMIUM_CHANNEL_MARKER not in tool_name.lower():
            return True
        return plan.rank >= PREMIUM_CHANNEL_PLAN.rank

    def is_allowed(self, tool_name: str, plan: Plan) -> bool:
        """Whether plan may invoke tool_name."""
        if self.is_blacklisted(tool_name):
            return False
        action = action_of(tool_name).lower()
        return self._tier_allows(action, plan) and self._channel_allows(tool_name, plan)

    def minimum_plan(self, tool_name: str) -> Plan | None:
        """Lowest plan allowed to invoke tool_name, or None if no plan is."""
        for plan in Plan:
            if self.is_allowed(tool_name, plan):
                return plan
        return None

    def evaluate(self, tool_name: str, plan: Plan) -> PolicyDecision:
        """Full policy decision, including the denial message."""
        if self.is_blacklisted(tool_name):
            return PolicyDecision(
                tool_name=tool_name,
                plan=plan,
                allowed=False,
                blacklisted=True,
                message=self.blacklist_message(tool_name),
            )

        if self.is_allowed(tool_name, plan):
            return PolicyDecision(tool_name=tool_name, plan=plan, allowed=True)

        required = self.minimum_plan(tool_name)
        return PolicyDecision(
            tool_name=tool_name,
            plan=plan,
            allowed=False,
            required_plan=required,
            message=self.upgrade_message(tool_name, plan, required),
        )

    def check(self, tool_name: str, plan: Plan) -> PolicyDecision:
        """
        Enforce the policy for a tool call.

        Raises:
            ToolNotAllowedError: If the plan may not invoke the tool
        """
        decision = self.evaluate(tool_name, plan)
        if decision.allowed:
            return decision

        metrics.record_policy_denial(plan.value, decision.blacklisted)
        logger.info(
            "tool_call_denied",
            tool=tool_name,
            plan=plan.value,
            blacklisted=decision.blacklisted,
            required_plan=decision.required_plan.value if decision.required_plan else None,
        )
        raise ToolNotAllowedError(
            tool_name=tool_name,
            plan=plan,
            message=decision.message or "",
            required_plan=decision.required_plan,
            blacklisted=decision.blacklisted,
        )

    # ========================================================================
    # Messages
    # ========================================================================

    @staticmethod
    def blacklist_message(tool_name: str) -> str:
        # No plan unlocks these, so the message must not point at billing
        return (
            f"The action '{action_of(tool_name)}' is disabled for all accounts. "
            f"Destructive operations cannot be performed through this assistant. "
            f"Use the advertising console directly if you need to remove this item."
        )

    def upgrade_message(self, tool_name: str, plan: Plan, required: Plan | None) -> str:
        current = PLAN_DETAILS[plan]
        target = PLAN_DETAILS[required or Plan.AGENCY]

        if PREMIUM_CHANNEL_MARKER in tool_name.lower():
            feature = "DSP (Demand-Side Platform) features require"
        else:
            feature = f"The action '{action_of(tool_name)}' requires"

        return (
            f"You're currently on the {current.name} plan ({current.price}). "
            f"{feature} the {target.name} plan ({target.price}) or higher. "
            f"Upgrade at {self.billing_url} to unlock this feature."
        )
