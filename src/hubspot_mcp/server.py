"""HubSpot MCP Server - Main server implementation."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import uvicorn
from mcp.server.fastmcp import FastMCP

from .broker import HubSpotBroker
from .config import Settings, load_settings
from .errors import HubSpotError
from .oauth import create_app

logger = logging.getLogger(__name__)


def create_server(broker: HubSpotBroker) -> FastMCP:
    """Register the HubSpot tools on a new FastMCP server."""
    mcp = FastMCP("hubspot-mcp")
    settings = broker.settings

    # =========================================================================
    # Authentication Tools
    # =========================================================================

    @mcp.tool()
    async def get_auth_status() -> dict[str, Any]:
        """Check current HubSpot authentication status.

        Returns:
            Whether a token is stored, whether it is expired, and what to do next.
        """
        status = broker.proxy.token_status()
        return {
            "has_token": status.has_token,
            "is_expired": status.is_expired,
            "recommended_action": status.recommended_action,
            "token": broker.proxy.token_info(),
        }

    @mcp.tool()
    async def get_auth_url(force: bool = False) -> dict[str, Any]:
        """Get the HubSpot authorization URL to start the OAuth flow.

        Args:
            force: Discard the stored token before starting a new flow.

        Returns:
            The authorization URL and instructions.
        """
        settings.require_credentials()
        url = broker.flow.build_authorization_url(force_reauth=force)
        return {
            "auth_url": url,
            "redirect_uri": settings.redirect_uri,
            "instructions": (
                "1. Open the auth_url in your browser\n"
                "2. Authorize the application on HubSpot\n"
                "3. Tokens are saved automatically by the callback server\n"
                "4. Return here and use list_contacts() or list_lists()"
            ),
        }

    @mcp.tool()
    async def authenticate(code: str) -> dict[str, Any]:
        """Exchange an authorization code for access tokens.

        Only needed when the callback server could not receive the redirect.

        Args:
            code: The authorization code from HubSpot's OAuth redirect.
        """
        try:
            pair = await broker.flow.handle_callback(code)
        except HubSpotError as exc:
            return {"success": False, **exc.to_dict()}
        return {
            "success": True,
            "message": "Successfully authenticated with HubSpot",
            "expires_at": pair.expires_at.isoformat(),
        }

    @mcp.tool()
    async def logout() -> dict[str, Any]:
        """Remove the stored HubSpot tokens (logout)."""
        broker.flow.logout()
        return {"success": True, "message": "Logged out successfully."}

    # =========================================================================
    # CRM Tools
    # =========================================================================

    @mcp.tool()
    async def list_contacts(limit: int = 100) -> dict[str, Any]:
        """List contacts in the connected HubSpot account.

        Args:
            limit: Maximum number of contacts to return (default 100).
        """
        result = await broker.proxy.call("contacts", {"limit": limit})
        return result.to_dict()

    @mcp.tool()
    async def list_lists() -> dict[str, Any]:
        """List contact lists (segments) in the connected HubSpot account."""
        result = await broker.proxy.call("lists")
        return result.to_dict()

    @mcp.tool()
    async def list_contact_properties() -> dict[str, Any]:
        """List the property definitions of HubSpot contacts."""
        result = await broker.proxy.call("properties")
        return result.to_dict()

    return mcp


async def serve(settings: Settings) -> None:
    """Run the OAuth callback server and the MCP stdio transport together.

    Both share one event loop and one broker, so refreshes triggered from
    either side go through the same single-flight lock.
    """
    broker = HubSpotBroker(settings)
    broker.load()

    app = create_app(broker, manage_lifecycle=False)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level="warning",
    )
    http_server = uvicorn.Server(config)
    mcp = create_server(broker)

    async def run_mcp() -> None:
        try:
            await mcp.run_stdio_async()
        finally:
            http_server.should_exit = True

    try:
        await asyncio.gather(http_server.serve(), run_mcp())
    finally:
        await broker.aclose()


def main() -> None:
    """Main entry point for the MCP server."""
    # stdout carries the MCP stdio protocol
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(serve(load_settings()))


if __name__ == "__main__":
    main()
