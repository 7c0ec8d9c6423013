"""
Proxy Forwarder - Sends JSON-RPC calls to the regional advertising endpoint.

The outbound body is the caller's JSON-RPC request, re-signed with the linked
account's access token. Header names are the provider's contract and must
not change.
"""

import time
from typing import Any

import httpx
from structlog import get_logger

from mcp_gateway.config import ConfigurationError, Settings, settings as default_settings
from mcp_gateway.exceptions import UpstreamError
from mcp_gateway.models.domain import ValidToken
from mcp_gateway.observability.metrics import metrics

logger = get_logger(__name__)

HEADER_AUTHORIZATION = "Authorization"
HEADER_CLIENT_ID = "Amazon-Ads-ClientId"
HEADER_SCOPE = "Amazon-Advertising-API-Scope"
HEADER_ACCOUNT_ID = "Amazon-Ads-AccountID"


def build_upstream_headers(token: ValidToken, client_id: str) -> dict[str, str]:
    """Outbound headers identifying client, profile scope and advertiser account."""
    account = token.account
    headers = {
        HEADER_AUTHORIZATION: f"Bearer {token.access_token}",
        HEADER_CLIENT_ID: client_id,
        HEADER_SCOPE: account.external_profile_id,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if account.external_advertiser_id:
        headers[HEADER_ACCOUNT_ID] = account.external_advertiser_id
    return headers


def _failure_status(upstream_status: int) -> int:
    return upstream_status if upstream_status >= 500 else 502


class ProxyForwarder:
    """Forwards JSON-RPC requests to the advertising provider."""

    def __init__(self, config: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self.config = config or default_settings
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.upstream_timeout_seconds)
        return self._http_client

    async def forward(self, rpc_request: dict[str, Any], token: ValidToken) -> dict[str, Any]:
        """
        POST a JSON-RPC request upstream and return the decoded reply.

        Raises:
            UpstreamError: Transport failure, non-2xx, non-JSON, streaming or
                asynchronous (202) replies, and upstream JSON-RPC errors
        """
        account = token.account
        method = str(rpc_request.get("method", ""))

        try:
            endpoint = self.config.upstream_endpoint_for(account.region)
        except ConfigurationError as exc:
            raise UpstreamError(str(exc), "UNKNOWN_REGION") from exc

        headers = build_upstream_headers(token, self.config.lwa_client_id)
        started = time.perf_counter()

        try:
            response = await self.http_client.post(endpoint, json=rpc_request, headers=headers)
        except httpx.TimeoutException as exc:
            self._record(account.region, method, False, started)
            logger.error("upstream_timeout", region=account.region, method=method)
            raise UpstreamError(
                "The advertising API did not respond in time", "UPSTREAM_TIMEOUT"
            ) from exc
        except httpx.HTTPError as exc:
            self._record(account.region, method, False, started)
            logger.error(
                "upstream_transport_error", region=account.region, method=method, error=str(exc)
            )
            raise UpstreamError(
                "Could not reach the advertising API", "UPSTREAM_UNAVAILABLE"
            ) from exc

        try:
            payload = self._decode(response, account.region, method)
        except UpstreamError:
            self._record(account.region, method, False, started)
            raise
        self._record(account.region, method, True, started)

        error = payload.get("error")
        if isinstance(error, dict):
            logger.warning(
                "upstream_rpc_error",
                region=account.region,
                method=method,
                upstream_code=error.get("code"),
            )
            raise UpstreamError(
                str(error.get("message") or "Advertising API returned an error"),
                "UPSTREAM_RPC_ERROR",
            )

        logger.debug(
            "upstream_request_completed",
            region=account.region,
            method=method,
            profile_id=account.external_profile_id,
            status=response.status_code,
        )
        return payload

    def _decode(self, response: httpx.Response, region: str, method: str) -> dict[str, Any]:
        status = response.status_code
        content_type = response.headers.get("content-type", "").lower()

        def fail(message: str, code: str, upstream_status: int) -> UpstreamError:
            logger.error(
                "upstream_bad_response",
                region=region,
                method=method,
                status=status,
                content_type=content_type,
                reason=code,
            )
            return UpstreamError(message, code, upstream_status=upstream_status)

        if status == 202:
            raise fail("Advertising API accepted the call asynchronously", "UPSTREAM_ASYNC", 502)
        if not response.is_success:
            raise fail(
                f"Advertising API returned HTTP {status}",
                "UPSTREAM_HTTP_ERROR",
                _failure_status(status),
            )
        if "text/event-stream" in content_type:
            raise fail("Advertising API replied with an event stream", "UPSTREAM_STREAM", 502)

        try:
            payload = response.json()
        except ValueError:
            raise fail("Advertising API returned invalid JSON", "UPSTREAM_BAD_JSON", 502) from None

        if not isinstance(payload, dict):
            raise fail("Advertising API returned an unexpected body", "UPSTREAM_BAD_JSON", 502)
        return payload

    @staticmethod
    def _record(region: str, method: str, success: bool, started: float) -> None:
        metrics.record_upstream_request(region, method, success, time.perf_counter() - started)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


_forwarder: ProxyForwarder | None = None


def get_forwarder() -> ProxyForwarder:
    global _forwarder
    if _forwarder is None:
        _forwarder = ProxyForwarder()
    return _forwarder


async def close_forwarder() -> None:
    global _forwarder
    if _forwarder is not None:
        await _forwarder.close()
        _forwarder = None
