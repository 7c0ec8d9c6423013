"""
JSON-RPC envelopes and the single error-kind mapping.

Every GatewayError reaching the HTTP surface goes through error_status() and
error_response(); no route picks status codes or JSON-RPC codes on its own.
"""

from typing import Any

from fastapi.responses import JSONResponse

from mcp_gateway.config import settings
from mcp_gateway.exceptions import (
    AuthenticationError,
    AuthorizationError,
    GatewayError,
    InvalidRequestError,
    MethodNotFoundError,
    NotFoundError,
    UpstreamError,
)
from mcp_gateway.models.api import JsonRpcError, JsonRpcResponse
from mcp_gateway.services.oauth_server import bearer_challenge

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
AUTHENTICATION_REQUIRED = -32001
FORBIDDEN = -32002
UPSTREAM_FAILURE = -32003
NOT_FOUND = -32004

# Most specific kinds first
ERROR_KINDS: tuple[tuple[type[GatewayError], int, int], ...] = (
    (MethodNotFoundError, 404, METHOD_NOT_FOUND),
    (AuthenticationError, 401, AUTHENTICATION_REQUIRED),
    (AuthorizationError, 403, FORBIDDEN),
    (NotFoundError, 404, NOT_FOUND),
    (InvalidRequestError, 400, INVALID_PARAMS),
    (UpstreamError, 502, UPSTREAM_FAILURE),
)


def error_status(exc: GatewayError) -> tuple[int, int]:
    """(HTTP status, JSON-RPC code) for an error kind."""
    for kind, http_status, rpc_code in ERROR_KINDS:
        if isinstance(exc, kind):
            if isinstance(exc, UpstreamError) and (exc.upstream_status or 0) >= 500:
                return exc.upstream_status or http_status, rpc_code
            return http_status, rpc_code
    return 500, INTERNAL_ERROR


def error_envelope(
    rpc_code: int, message: str, request_id: str | int | None = None, code: str | None = None
) -> dict[str, Any]:
    """JSON-RPC error envelope; data.code carries the machine-readable code."""
    body = JsonRpcResponse(
        id=request_id,
        error=JsonRpcError(
            code=rpc_code, message=message, data={"code": code} if code else None
        ),
    ).model_dump(exclude_none=True)
    # id is null, not absent, when the request id is unknown
    body["id"] = request_id
    return body


def error_response(exc: GatewayError, request_id: str | int | None = None) -> JSONResponse:
    http_status, rpc_code = error_status(exc)
    headers = None
    if isinstance(exc, AuthenticationError):
        # Browser clients discover the OAuth server from this challenge
        headers = {"WWW-Authenticate": bearer_challenge(settings.public_base_url)}
    return JSONResponse(
        status_code=http_status,
        content=error_envelope(rpc_code, exc.message, request_id, exc.code),
        headers=headers,
    )


def result_response(result: dict[str, Any], request_id: str | int | None) -> JSONResponse:
    body = JsonRpcResponse(id=request_id, result=result).model_dump(exclude_none=True)
    # A result is always present, even when empty (ping)
    body["result"] = result
    return JSONResponse(status_code=200, content=body)
