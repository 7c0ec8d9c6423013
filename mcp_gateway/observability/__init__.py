"""
Observability module - Logging and Metrics.
"""

from mcp_gateway.observability.logging import get_logger, log_context, setup_logging
from mcp_gateway.observability.metrics import metrics

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
]
