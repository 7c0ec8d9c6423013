"""
Account Resolver - Picks which linked account a tool call targets.

Precedence (first match wins):
1. Explicit profile id in the call arguments (profile_id / profileId).
   Unmatched ids are logged and fall straight through to the default.
2. The user's active-account pointer, if it still points at a connected account.
3. Best-effort heuristic over the serialized call arguments.
4. The earliest-created connected account.

Strict deployments (require_explicit_account) skip the heuristic and refuse
to guess between several accounts.
"""

import json
import re
from collections.abc import Callable
from typing import Any
from uuid import UUID

from structlog import get_logger

from mcp_gateway.config import settings
from mcp_gateway.exceptions import (
    AccountNotFoundError,
    InvalidRequestError,
    NoConnectedAccountsError,
)
from mcp_gateway.models.domain import LinkedAccountData
from mcp_gateway.services.credential_store import CredentialStore

logger = get_logger(__name__)

EXPLICIT_ACCOUNT_KEYS = ("profile_id", "profileId")

MARKETPLACE_DOMAINS: dict[str, str] = {
    "US": "amazon.com",
    "CA": "amazon.ca",
    "MX": "amazon.com.mx",
    "BR": "amazon.com.br",
    "UK": "amazon.co.uk",
    "GB": "amazon.co.uk",
    "DE": "amazon.de",
    "FR": "amazon.fr",
    "IT": "amazon.it",
    "ES": "amazon.es",
    "NL": "amazon.nl",
    "JP": "amazon.co.jp",
    "AU": "amazon.com.au",
    "IN": "amazon.in",
}

# Alias -> marketplace domain suffix. "it" and "es" are ordinary words,
# so those marketplaces only match by country name.
COUNTRY_ALIASES: dict[str, str] = {
    "us": ".com",
    "usa": ".com",
    "united states": ".com",
    "uk": ".co.uk",
    "gb": ".co.uk",
    "united kingdom": ".co.uk",
    "de": ".de",
    "germany": ".de",
    "fr": ".fr",
    "france": ".fr",
    "ca": ".ca",
    "canada": ".ca",
    "italy": ".it",
    "spain": ".es",
    "jp": ".co.jp",
    "japan": ".co.jp",
    "mx": ".com.mx",
    "mexico": ".com.mx",
    "au": ".com.au",
    "australia": ".com.au",
}


def marketplace_domain(marketplace: str) -> str | None:
    """Storefront domain for a marketplace code ("UK") or domain ("amazon.co.uk")."""
    value = marketplace.strip()
    if "." in value:
        return value.lower()
    return MARKETPLACE_DOMAINS.get(value.upper())


def explicit_profile_id(arguments: dict[str, Any] | None) -> str | None:
    """Profile id the caller named in the tool arguments, if any."""
    if not arguments:
        return None
    for key in EXPLICIT_ACCOUNT_KEYS:
        value = arguments.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _contains_term(text: str, term: str) -> bool:
    """Whether term appears in text, not embedded in a longer word or id."""
    if not term:
        return False
    return re.search(rf"(?<![\w]){re.escape(term)}(?![\w])", text) is not None


def _contains_domain(text: str, domain: str) -> bool:
    # amazon.com must not match inside amazon.com.mx
    return re.search(rf"(?<!\w){re.escape(domain)}(?!\w|\.\w)", text) is not None


def _aliased_suffixes(text: str) -> set[str]:
    return {suffix for alias, suffix in COUNTRY_ALIASES.items() if _contains_term(text, alias)}


HeuristicRule = Callable[[LinkedAccountData, str], bool]


def _match_advertiser_id(account: LinkedAccountData, text: str) -> bool:
    advertiser_id = (account.external_advertiser_id or "").lower()
    return _contains_term(text, advertiser_id)


def _match_profile_id(account: LinkedAccountData, text: str) -> bool:
    return _contains_term(text, account.external_profile_id.lower())


def _match_display_name(account: LinkedAccountData, text: str) -> bool:
    name = (account.name or "").strip().lower()
    return bool(name) and name in text


def _match_marketplace_domain(account: LinkedAccountData, text: str) -> bool:
    domain = marketplace_domain(account.marketplace)
    return domain is not None and _contains_domain(text, domain)


def _match_country_alias(account: LinkedAccountData, text: str) -> bool:
    domain = marketplace_domain(account.marketplace)
    if domain is None:
        return False
    return any(domain.endswith(suffix) for suffix in _aliased_suffixes(text))


HEURISTIC_RULES: tuple[tuple[str, HeuristicRule], ...] = (
    ("advertiser_id", _match_advertiser_id),
    ("profile_id", _match_profile_id),
    ("display_name", _match_display_name),
    ("marketplace_domain", _match_marketplace_domain),
    ("country_alias", _match_country_alias),
)


class AccountResolver:
    """Resolves and switches the linked account a user's calls target."""

    def __init__(self, store: CredentialStore, require_explicit_account: bool | None = None):
        self.store = store
        self.require_explicit_account = (
            settings.require_explicit_account
            if require_explicit_account is None
            else require_explicit_account
        )

    async def list_accounts(self, user_id: UUID) -> list[LinkedAccountData]:
        """Connected accounts, earliest created first."""
        accounts = await self.store.list_connected_accounts(user_id)
        return sorted(accounts, key=lambda account: account.created_at)

    async def resolve(
        self,
        user_id: UUID,
        explicit_profile_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> LinkedAccountData:
        """
        Pick the account a call applies to.

        Raises:
            NoConnectedAccountsError: If the user has no connected account
            InvalidRequestError: In strict mode, when several accounts exist and
                none was selected
        """
        accounts = await self.list_accounts(user_id)
        if not accounts:
            logger.warning("no_connected_accounts", user_id=str(user_id))
            raise NoConnectedAccountsError(user_id)

        default = accounts[0]

        if explicit_profile_id:
            for account in accounts:
                if account.external_profile_id == explicit_profile_id:
                    logger.debug(
                        "account_resolved", user_id=str(user_id), rule="explicit",
                        account_id=str(account.id),
                    )
                    return account
            logger.warning(
                "explicit_account_not_found",
                user_id=str(user_id),
                profile_id=explicit_profile_id,
                fallback_account_id=str(default.id),
            )
            return default

        active = await self._active_from(user_id, accounts)
        if active is not None:
            logger.debug(
                "account_resolved", user_id=str(user_id), rule="active_pointer",
                account_id=str(active.id),
            )
            return active

        if self.require_explicit_account:
            if len(accounts) > 1:
                raise InvalidRequestError(
                    "Several advertising accounts are connected. Pass profile_id or "
                    "switch the active account first.",
                    "ACCOUNT_SELECTION_REQUIRED",
                )
            return default

        if context:
            matched = self._match_context(user_id, accounts, context)
            if matched is not None:
                return matched

        logger.debug(
            "account_resolved", user_id=str(user_id), rule="default",
            account_id=str(default.id),
        )
        return default

    def _match_context(
        self, user_id: UUID, accounts: list[LinkedAccountData], context: dict[str, Any]
    ) -> LinkedAccountData | None:
        text = json.dumps(context, default=str).lower()

        for rule_name, rule in HEURISTIC_RULES:
            matches = [account for account in accounts if rule(account, text)]
            if not matches:
                continue
            if len(matches) > 1:
                logger.info(
                    "account_resolution_ambiguous",
                    user_id=str(user_id),
                    rule=rule_name,
                    candidates=[str(account.id) for account in matches],
                    chosen=str(matches[0].id),
                )
            logger.debug(
                "account_resolved", user_id=str(user_id), rule=rule_name,
                account_id=str(matches[0].id),
            )
            return matches[0]
        return None

    async def _active_from(
        self, user_id: UUID, accounts: list[LinkedAccountData]
    ) -> LinkedAccountData | None:
        active_id = await self.store.get_active_account_id(user_id)
        if active_id is None:
            return None
        for account in accounts:
            if account.id == active_id:
                return account
        logger.warning(
            "active_account_unavailable", user_id=str(user_id), account_id=str(active_id)
        )
        return None

    # ========================================================================
    # Meta-operations
    # ========================================================================

    async def get_active_account(self, user_id: UUID) -> LinkedAccountData | None:
        """The account the active pointer names, if it is still connected."""
        return await self._active_from(user_id, await self.list_accounts(user_id))

    async def switch_account(self, user_id: UUID, identifier: str) -> LinkedAccountData:
        """
        Point the user's active account at the account matching identifier.

        Matches on account name (containment either way), exact profile id,
        or exact advertiser id.

        Raises:
            NoConnectedAccountsError: If the user has no connected account
            AccountNotFoundError: If nothing matches; the pointer is left unchanged
        """
        needle = identifier.strip().lower()
        if not needle:
            raise InvalidRequestError("account_identifier must not be empty")

        accounts = await self.list_accounts(user_id)
        if not accounts:
            raise NoConnectedAccountsError(user_id)

        for account in accounts:
            name = (account.name or "").strip().lower()
            if (
                (name and (needle in name or name in needle))
                or account.external_profile_id.lower() == needle
                or (account.external_advertiser_id or "").lower() == needle
            ):
                await self.store.set_active_account_id(user_id, account.id)
                logger.info(
                    "active_account_switched",
                    user_id=str(user_id),
                    account_id=str(account.id),
                    profile_id=account.external_profile_id,
                )
                return account

        logger.warning(
            "account_switch_no_match",
            user_id=str(user_id),
            identifier=identifier,
            available_accounts=len(accounts),
        )
        raise AccountNotFoundError(identifier)

    async def clear_active_account(self, user_id: UUID) -> None:
        """Clear the pointer so resolution reverts to the default account."""
        await self.store.set_active_account_id(user_id, None)
        logger.info("active_account_cleared", user_id=str(user_id))
