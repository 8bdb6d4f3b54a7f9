"""HTTP routes for HubSpot authentication and the read-only CRM proxy."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI
from fastapi.responses import JSONResponse, RedirectResponse

from .broker import HubSpotBroker
from .config import AUTH_PATH, FORCE_AUTH_PATH, LOGOUT_PATH
from .errors import HubSpotError, MissingCode
from .proxy import ProxyResult

CONTACTS_PATH = "/api/hubspot/contacts"
LISTS_PATH = "/api/hubspot/lists"
PROPERTIES_PATH = "/api/hubspot/properties"

AUTH_LINKS = {
    "auth": AUTH_PATH,
    "forceAuth": FORCE_AUTH_PATH,
    "logout": LOGOUT_PATH,
}


def create_app(broker: HubSpotBroker, *, manage_lifecycle: bool = True) -> FastAPI:
    """Build the FastAPI app serving the OAuth flow and proxy routes.

    Args:
        broker: Token lifecycle components shared with the MCP tools.
        manage_lifecycle: Load persisted tokens on startup and close the HTTP
            client on shutdown. Disable when the caller owns the broker.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            broker.load()
        yield
        if manage_lifecycle:
            await broker.aclose()

    app = FastAPI(title="HubSpot MCP", lifespan=lifespan)
    app.state.broker = broker

    @app.get(AUTH_PATH)
    async def authorize(force: bool = False) -> Any:
        """Redirect to the HubSpot consent screen."""
        if not broker.settings.has_credentials:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "HubSpot API credentials not configured",
                    "message": (
                        "Please set HUBSPOT_CLIENT_ID and HUBSPOT_CLIENT_SECRET "
                        "in your .env file."
                    ),
                },
            )
        return RedirectResponse(broker.flow.build_authorization_url(force_reauth=force))

    @app.get("/oauth/callback")
    async def oauth_callback(code: str | None = None, error: str | None = None) -> Any:
        """Handle the OAuth callback from HubSpot.

        Args:
            code: Authorization code from HubSpot.
            error: Error reported by HubSpot if the user denied access.
        """
        if error:
            return JSONResponse(
                status_code=400,
                content={
                    "error": "Authentication failed",
                    "message": error,
                    "auth_url": AUTH_PATH,
                },
            )

        try:
            await broker.flow.handle_callback(code)
        except MissingCode as exc:
            return JSONResponse(
                status_code=400, content=exc.to_dict() | {"auth_url": AUTH_PATH}
            )
        except HubSpotError as exc:
            return JSONResponse(
                status_code=502, content=exc.to_dict() | {"auth_url": FORCE_AUTH_PATH}
            )

        return RedirectResponse(CONTACTS_PATH, status_code=303)

    @app.get(LOGOUT_PATH)
    async def logout() -> dict[str, Any]:
        broker.flow.logout()
        return {
            "status": "success",
            "message": "Logged out successfully",
            "auth_url": AUTH_PATH,
        }

    @app.get("/api/hubspot/check-token")
    async def check_token() -> dict[str, Any]:
        status = broker.proxy.token_status()
        return {
            "has_token": status.has_token,
            "is_expired": status.is_expired,
            "action": status.recommended_action,
            "links": AUTH_LINKS,
        }

    @app.get("/api/hubspot/debug")
    async def debug() -> dict[str, Any]:
        """Show token state, a live test call and which credentials are set."""
        settings = broker.settings
        connection: dict[str, Any] = {"api_response": None, "api_error": None}
        if broker.store.has_token:
            connection = await broker.proxy.check_connection()
        return {
            "token": broker.proxy.token_info(),
            **connection,
            "env": {
                "has_app_id": bool(settings.app_id),
                "has_client_id": bool(settings.client_id),
                "has_client_secret": bool(settings.client_secret),
            },
            "links": AUTH_LINKS,
        }

    @app.get(CONTACTS_PATH)
    async def contacts(limit: int = 100) -> Any:
        result = await broker.proxy.call("contacts", {"limit": limit})
        return _proxy_response(result, {"lists": LISTS_PATH, "logout": LOGOUT_PATH})

    @app.get(LISTS_PATH)
    async def lists() -> Any:
        result = await broker.proxy.call("lists")
        return _proxy_response(
            result, {"contacts": CONTACTS_PATH, "logout": LOGOUT_PATH}
        )

    @app.get(PROPERTIES_PATH)
    async def properties() -> Any:
        result = await broker.proxy.call("properties")
        return _proxy_response(
            result, {"contacts": CONTACTS_PATH, "logout": LOGOUT_PATH}
        )

    return app


def _proxy_response(result: Any, links: dict[str, str]) -> Any:
    if isinstance(result, ProxyResult):
        return result.to_dict() | {"links": links}
    status_code = 401 if result.unauthenticated else 502
    return JSONResponse(status_code=status_code, content=result.to_dict())
