"""
MCP API routes - JSON-RPC endpoint and capabilities metadata.
"""

import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from structlog import get_logger

from mcp_gateway.api.dependencies import get_gateway, get_principal
from mcp_gateway.api.jsonrpc import (
    INVALID_REQUEST,
    PARSE_ERROR,
    error_envelope,
    error_response,
    result_response,
)
from mcp_gateway.config import settings
from mcp_gateway.exceptions import GatewayError, InternalError
from mcp_gateway.models.api import AuthScheme, CapabilitiesResponse, JsonRpcRequest
from mcp_gateway.models.domain import Principal
from mcp_gateway.observability.metrics import metrics
from mcp_gateway.services.gateway import SUPPORTED_METHODS, MCPGateway

logger = get_logger(__name__)
router = APIRouter(tags=["mcp"])


def _request_id(body: Any) -> str | int | None:
    if isinstance(body, dict):
        candidate = body.get("id")
        if isinstance(candidate, (str, int)) and not isinstance(candidate, bool):
            return candidate
    return None


@router.post("/mcp")
async def mcp_endpoint(
    request: Request,
    principal: Annotated[Principal, Depends(get_principal)],
    gateway: Annotated[MCPGateway, Depends(get_gateway)],
) -> Response:
    """
    JSON-RPC 2.0 endpoint: initialize, ping, tools/list, tools/call.

    Notifications (no id) are acknowledged with 202 and no body.
    """
    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError:
        logger.warning("jsonrpc_parse_error", user_id=str(principal.user_id), size=len(raw))
        return JSONResponse(status_code=400, content=error_envelope(PARSE_ERROR, "Parse error"))

    try:
        if not isinstance(body, dict):
            raise ValueError("request must be a single JSON object")
        rpc = JsonRpcRequest.model_validate(body)
    except (ValidationError, ValueError) as exc:
        logger.warning("jsonrpc_invalid_request", user_id=str(principal.user_id), error=str(exc))
        return JSONResponse(
            status_code=400,
            content=error_envelope(INVALID_REQUEST, "Invalid Request", _request_id(body)),
        )

    if rpc.is_notification:
        logger.debug("jsonrpc_notification", method=rpc.method)
        return Response(status_code=202)

    logger.info(
        "mcp_request_received",
        method=rpc.method,
        user_id=str(principal.user_id),
        plan=principal.plan.value,
    )

    try:
        result = await gateway.handle(principal, rpc)
    except GatewayError as exc:
        metrics.record_error(type(exc).__name__, rpc.method)
        logger.warning(
            "mcp_request_failed",
            method=rpc.method,
            user_id=str(principal.user_id),
            error_code=exc.code,
            error=exc.message,
        )
        return error_response(exc, rpc.id)
    except Exception as exc:
        metrics.record_error(type(exc).__name__, rpc.method)
        logger.error(
            "mcp_request_crashed",
            method=rpc.method,
            user_id=str(principal.user_id),
            error=str(exc),
            exc_info=True,
        )
        return error_response(InternalError("An unexpected error occurred"), rpc.id)

    return result_response(result, rpc.id)


@router.get("/capabilities", response_model=CapabilitiesResponse)
async def capabilities() -> CapabilitiesResponse:
    """Static service metadata. No authentication."""
    return CapabilitiesResponse(
        name=settings.api_title,
        version=settings.api_version,
        methods=list(SUPPORTED_METHODS),
        auth_schemes=[scheme.value for scheme in AuthScheme],
    )
