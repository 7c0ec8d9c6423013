"""
Response Transformer - Post-processes the upstream tool catalog.

Steps, in order:
1. Drop upstream tools that duplicate the gateway's account discovery.
2. Prepend the gateway's own account meta-tools.
3. Tag each upstream tool with a category and bound its input schema depth.
4. Report which tools the caller's plan would reject (discovery mode: the
   catalog stays complete, the rejected names go in disabledTools).
"""

import copy
from typing import Any

from structlog import get_logger

from mcp_gateway.config import settings
from mcp_gateway.models.api import Plan
from mcp_gateway.models.domain import CatalogResult, DisabledTool
from mcp_gateway.services.policy import PolicyEngine

logger = get_logger(__name__)

LIST_ACCOUNTS_TOOL = "accounts-list_linked_accounts"
SWITCH_ACCOUNT_TOOL = "accounts-switch_account"
GET_ACTIVE_ACCOUNT_TOOL = "accounts-get_active_account"

META_TOOLS: tuple[dict[str, Any], ...] = (
    {
        "name": LIST_ACCOUNTS_TOOL,
        "description": (
            "[ACCOUNT] List every connected advertising account with its name, "
            "profile id, marketplace and region. The active account is flagged."
        ),
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": SWITCH_ACCOUNT_TOOL,
        "description": (
            "[ACCOUNT] Make another connected account the default target for "
            "subsequent tool calls. Accepts an account name, profile id or advertiser id."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "account_identifier": {
                    "type": "string",
                    "description": "Account name, profile id or advertiser id",
                }
            },
            "required": ["account_identifier"],
        },
    },
    {
        "name": GET_ACTIVE_ACCOUNT_TOOL,
        "description": "[ACCOUNT] Show which connected account tool calls currently target.",
        "inputSchema": {"type": "object", "properties": {}},
    },
)

META_TOOL_NAMES: frozenset[str] = frozenset(tool["name"] for tool in META_TOOLS)

DUPLICATE_MARKERS = ("list profile", "get profile", "list account", "get account")

# Checked in order; advanced channels first so "dsp_campaigns" is not [CAMPAIGNS]
CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("[DSP]", ("dsp",)),
    ("[AMC]", ("amc", "marketing cloud")),
    ("[SPONSORED BRANDS]", ("sponsored brands", "sponsoredbrands")),
    ("[SPONSORED DISPLAY]", ("sponsored display", "sponsoreddisplay")),
    ("[REPORTING]", ("report",)),
    ("[BILLING]", ("billing", "invoice", "payment")),
    ("[ACCOUNT]", ("account", "profile", "user", "invitation")),
    ("[CAMPAIGNS]", ("campaign", "keyword", "ad group", "adgroup", "target")),
)

CATEGORY_TAGS: tuple[str, ...] = tuple(tag for tag, _ in CATEGORY_RULES)


def normalize_tool_name(name: str) -> str:
    """Lowercase, with '_' and '-' turned into spaces."""
    return name.replace("_", " ").replace("-", " ").lower()


def is_account_discovery_duplicate(name: str) -> bool:
    normalized = normalize_tool_name(name)
    return any(marker in normalized for marker in DUPLICATE_MARKERS)


def categorize(name: str) -> str | None:
    """Category tag for a tool name, or None when nothing matches."""
    normalized = normalize_tool_name(name)
    for tag, markers in CATEGORY_RULES:
        if any(marker in normalized for marker in markers):
            return tag
    return None


def simplify_schema(schema: Any, max_depth: int, depth: int = 0) -> Any:
    """
    Bound a JSON schema's nesting depth.

    Nodes deeper than max_depth collapse to {type, description}.
    """
    if not isinstance(schema, dict):
        return schema

    if depth > max_depth:
        return {
            "type": schema.get("type", "object"),
            "description": schema.get("description", "Nested structure (details omitted)"),
        }

    simplified: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "properties" and isinstance(value, dict):
            simplified[key] = {
                prop: simplify_schema(sub, max_depth, depth + 1) for prop, sub in value.items()
            }
        elif key in ("items", "additionalProperties") and isinstance(value, dict):
            simplified[key] = simplify_schema(value, max_depth, depth + 1)
        elif key in ("anyOf", "oneOf", "allOf") and isinstance(value, list):
            simplified[key] = [simplify_schema(sub, max_depth, depth + 1) for sub in value]
        else:
            simplified[key] = value
    return simplified


def extract_tools(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Tool list from an upstream reply (result.tools or top-level tools)."""
    result = payload.get("result")
    if isinstance(result, dict) and isinstance(result.get("tools"), list):
        tools = result["tools"]
    elif isinstance(payload.get("tools"), list):
        tools = payload["tools"]
    else:
        return []
    return [tool for tool in tools if isinstance(tool, dict) and tool.get("name")]


class ResponseTransformer:
    """Rewrites tools/list results for a caller's plan."""

    def __init__(self, policy: PolicyEngine, max_schema_depth: int | None = None):
        self.policy = policy
        self.max_schema_depth = (
            settings.catalog_schema_max_depth if max_schema_depth is None else max_schema_depth
        )

    def transform_catalog(self, tools: list[dict[str, Any]], plan: Plan) -> CatalogResult:
        kept = [tool for tool in tools if not is_account_discovery_duplicate(tool["name"])]
        removed = len(tools) - len(kept)

        decorated = [self._decorate(tool) for tool in kept]
        disabled = self.disabled_tools(decorated, plan)

        logger.debug(
            "catalog_transformed",
            plan=plan.value,
            upstream_tools=len(tools),
            duplicates_removed=removed,
            disabled=len(disabled),
        )

        catalog = [copy.deepcopy(tool) for tool in META_TOOLS] + decorated
        return CatalogResult(tools=catalog, disabled_tools=disabled)

    def disabled_tools(self, tools: list[dict[str, Any]], plan: Plan) -> list[DisabledTool]:
        """Tools the plan would be refused at call time. Meta-tools are never listed."""
        disabled: list[DisabledTool] = []
        for tool in tools:
            name = tool["name"]
            if name in META_TOOL_NAMES:
                continue
            decision = self.policy.evaluate(name, plan)
            if decision.allowed:
                continue
            disabled.append(
                DisabledTool(
                    name=name,
                    reason="TOOL_DISABLED" if decision.blacklisted else "PLAN_UPGRADE_REQUIRED",
                    required_plan=decision.required_plan,
                )
            )
        return disabled

    def _decorate(self, tool: dict[str, Any]) -> dict[str, Any]:
        decorated = dict(tool)

        tag = categorize(tool["name"])
        description = tool.get("description") or ""
        if tag and not description.startswith(CATEGORY_TAGS):
            decorated["description"] = f"{tag} {description}".rstrip()

        if isinstance(tool.get("inputSchema"), dict):
            decorated["inputSchema"] = simplify_schema(tool["inputSchema"], self.max_schema_depth)
        return decorated

    @staticmethod
    def to_list_result(catalog: CatalogResult) -> dict[str, Any]:
        """tools/list result body."""
        return {
            "tools": catalog.tools,
            "disabledTools": [tool.to_payload() for tool in catalog.disabled_tools],
        }
