"""
Metrics Collection with Prometheus.

Exposes gateway and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Histogram, Gauge, Info

from mcp_gateway.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"
    SCHEME = "scheme"
    OUTCOME = "outcome"
    PLAN = "plan"
    REGION = "region"


class GatewayMetrics:
    """
    Centralized metrics for the MCP gateway.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Authentication outcomes and identity cache effectiveness
    - Policy denials by plan
    - Upstream token refreshes
    - Forwarded upstream calls (rate, duration)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info("gateway_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "gateway_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "gateway_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "gateway_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Authentication Metrics
        # ====================================================================
        self.auth_attempts_total = Counter(
            "gateway_auth_attempts_total",
            "Authentication attempts by scheme and outcome",
            [MetricLabels.SCHEME, MetricLabels.OUTCOME],
        )

        self.identity_cache_total = Counter(
            "gateway_identity_cache_total",
            "Identity cache lookups",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Policy Metrics
        # ====================================================================
        self.policy_denials_total = Counter(
            "gateway_policy_denials_total",
            "Tool calls denied by the policy engine",
            [MetricLabels.PLAN, "blacklisted"],
        )

        # ====================================================================
        # Token Lifecycle Metrics
        # ====================================================================
        self.token_refreshes_total = Counter(
            "gateway_token_refreshes_total",
            "Upstream access token refreshes",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Upstream Metrics
        # ====================================================================
        self.upstream_requests_total = Counter(
            "gateway_upstream_requests_total",
            "Requests forwarded to the upstream MCP server",
            [MetricLabels.REGION, MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.upstream_request_duration_seconds = Histogram(
            "gateway_upstream_request_duration_seconds",
            "Upstream request duration in seconds",
            [MetricLabels.REGION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "gateway_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_auth(self, scheme: str, outcome: str) -> None:
        """Record an authentication attempt."""
        self.auth_attempts_total.labels(scheme=scheme, outcome=outcome).inc()

    def record_cache_lookup(self, hit: bool) -> None:
        """Record an identity cache lookup."""
        self.identity_cache_total.labels(outcome="hit" if hit else "miss").inc()

    def record_policy_denial(self, plan: str, blacklisted: bool) -> None:
        """Record a policy denial."""
        self.policy_denials_total.labels(plan=plan, blacklisted=str(blacklisted)).inc()

    def record_token_refresh(self, success: bool) -> None:
        """Record a token refresh attempt."""
        self.token_refreshes_total.labels(outcome="success" if success else "failure").inc()

    def record_upstream_request(
        self, region: str, operation: str, success: bool, duration: float
    ) -> None:
        """Record a forwarded upstream call."""
        self.upstream_requests_total.labels(
            region=region, operation=operation, outcome="success" if success else "failure"
        ).inc()
        self.upstream_request_duration_seconds.labels(region=region).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = GatewayMetrics()
