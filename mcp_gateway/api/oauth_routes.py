"""
OAuth routes - Authorization code flow for browser-based MCP clients.

Desktop clients use API keys and never touch these routes.
"""

import html
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Query
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from structlog import get_logger

from mcp_gateway.api.dependencies import get_oauth_service
from mcp_gateway.config import settings
from mcp_gateway.exceptions import OAuthFlowError
from mcp_gateway.models.api import OAuthTokenResponse
from mcp_gateway.services.oauth_server import (
    PROTECTED_RESOURCE_PATH,
    OAuthService,
    append_query,
    authorization_server_metadata,
    protected_resource_metadata,
)

logger = get_logger(__name__)
router = APIRouter(tags=["oauth"])

LOGIN_PAGE = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Log in to {title}</title>
  </head>
  <body>
    <h1>Log in to {title}</h1>
    <p>Connect your account to your AI assistant.</p>
    {error}
    <form method="POST" action="/oauth/login">
      <input type="hidden" name="client_id" value="{client_id}" />
      <input type="hidden" name="redirect_uri" value="{redirect_uri}" />
      <input type="hidden" name="state" value="{state}" />
      <label for="email">Email</label>
      <input type="email" id="email" name="email" required autocomplete="email" />
      <label for="password">Password</label>
      <input type="password" id="password" name="password" required
             autocomplete="current-password" />
      <button type="submit">Log in</button>
    </form>
  </body>
</html>
"""

INVALID_CREDENTIALS = "invalid_credentials"


def oauth_error_response(exc: OAuthFlowError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "error_description": exc.description},
    )


def render_login_page(client_id: str, redirect_uri: str, state: str, error: str | None) -> str:
    message = ""
    if error == INVALID_CREDENTIALS:
        message = '<p class="error">Invalid email or password. Please try again.</p>'
    return LOGIN_PAGE.format(
        title=html.escape(settings.api_title),
        error=message,
        client_id=html.escape(client_id, quote=True),
        redirect_uri=html.escape(redirect_uri, quote=True),
        state=html.escape(state, quote=True),
    )


@router.get("/oauth/authorize", response_model=None)
async def authorize(
    oauth: Annotated[OAuthService, Depends(get_oauth_service)],
    client_id: Annotated[str, Query()] = "",
    redirect_uri: Annotated[str, Query()] = "",
    state: Annotated[str, Query()] = "",
    error: Annotated[str | None, Query()] = None,
) -> HTMLResponse | JSONResponse:
    """Validate the client and render the login form."""
    logger.info("oauth_authorize_request", client_id=client_id, redirect_uri=redirect_uri)
    try:
        await oauth.validate_client(client_id, redirect_uri)
    except OAuthFlowError as exc:
        return oauth_error_response(exc)
    return HTMLResponse(render_login_page(client_id, redirect_uri, state, error))


@router.post("/oauth/login", response_model=None)
async def login(
    oauth: Annotated[OAuthService, Depends(get_oauth_service)],
    email: Annotated[str, Form()],
    password: Annotated[str, Form()],
    client_id: Annotated[str, Form()],
    redirect_uri: Annotated[str, Form()],
    state: Annotated[str, Form()] = "",
) -> RedirectResponse | JSONResponse:
    """Check credentials, then redirect to the client with a single-use code."""
    try:
        auth_code = await oauth.login(email, password, client_id, redirect_uri)
    except OAuthFlowError as exc:
        return oauth_error_response(exc)

    if auth_code is None:
        retry_url = append_query(
            "/oauth/authorize",
            {
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "state": state,
                "error": INVALID_CREDENTIALS,
            },
        )
        return RedirectResponse(url=retry_url, status_code=302)

    return RedirectResponse(
        url=append_query(redirect_uri, {"code": auth_code.code, "state": state}),
        status_code=302,
    )


@router.post("/oauth/token", response_model=None)
async def token(
    oauth: Annotated[OAuthService, Depends(get_oauth_service)],
    grant_type: Annotated[str, Form()] = "",
    code: Annotated[str, Form()] = "",
    client_id: Annotated[str, Form()] = "",
    client_secret: Annotated[str, Form()] = "",
    redirect_uri: Annotated[str | None, Form()] = None,
) -> OAuthTokenResponse | JSONResponse:
    """Exchange an authorization code for a gateway session token."""
    logger.info("oauth_token_request", grant_type=grant_type, client_id=client_id)
    try:
        return await oauth.exchange_code(grant_type, code, client_id, client_secret, redirect_uri)
    except OAuthFlowError as exc:
        return oauth_error_response(exc)


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server() -> dict[str, object]:
    return authorization_server_metadata(settings.public_base_url)


@router.get(PROTECTED_RESOURCE_PATH)
async def protected_resource() -> dict[str, object]:
    return protected_resource_metadata(settings.public_base_url)
