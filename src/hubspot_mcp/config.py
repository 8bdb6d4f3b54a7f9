"""Environment-driven settings for the HubSpot MCP server."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_SCOPES = (
    "crm.lists.read",
    "crm.objects.contacts.read",
    "crm.objects.custom.read",
    "crm.schemas.contacts.read",
    "crm.schemas.custom.read",
    "oauth",
)

AUTH_PATH = "/auth/hubspot"
FORCE_AUTH_PATH = "/auth/hubspot?force=true"
LOGOUT_PATH = "/auth/logout"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one HubSpot account."""

    client_id: str = ""
    client_secret: str = ""
    app_id: str = ""
    redirect_uri: str = "http://localhost:5000/oauth/callback"
    authorize_url: str = "https://app-na2.hubspot.com/oauth/authorize"
    api_base: str = "https://api.hubapi.com"
    scopes: tuple[str, ...] = field(default=DEFAULT_SCOPES)
    token_path: Path = Path("hubspot-tokens.json")
    persist_tokens: bool = True
    http_timeout: float = 30.0
    host: str = "127.0.0.1"
    port: int = 5000

    @property
    def token_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/oauth/v1/token"

    @property
    def has_credentials(self) -> bool:
        """Check if HubSpot client credentials are configured."""
        return bool(self.client_id and self.client_secret)

    def require_credentials(self) -> None:
        """Raise if the OAuth client credentials are missing."""
        if not self.client_id:
            raise ValueError("HUBSPOT_CLIENT_ID environment variable not set")
        if not self.client_secret:
            raise ValueError("HUBSPOT_CLIENT_SECRET environment variable not set")


def load_settings() -> Settings:
    """Build settings from the process environment and an optional ``.env`` file."""
    load_dotenv(override=True)

    production = os.getenv("ENVIRONMENT", "").lower() == "production"
    scopes = os.getenv("HUBSPOT_SCOPES")

    return Settings(
        client_id=os.getenv("HUBSPOT_CLIENT_ID", ""),
        client_secret=os.getenv("HUBSPOT_CLIENT_SECRET", ""),
        app_id=os.getenv("HUBSPOT_APP_ID", ""),
        redirect_uri=os.getenv(
            "HUBSPOT_REDIRECT_URI", "http://localhost:5000/oauth/callback"
        ),
        authorize_url=os.getenv(
            "HUBSPOT_AUTHORIZE_URL", "https://app-na2.hubspot.com/oauth/authorize"
        ),
        api_base=os.getenv("HUBSPOT_API_BASE", "https://api.hubapi.com"),
        scopes=tuple(scopes.split()) if scopes else DEFAULT_SCOPES,
        token_path=Path(os.getenv("HUBSPOT_TOKEN_PATH", "hubspot-tokens.json")),
        persist_tokens=_env_flag("HUBSPOT_PERSIST_TOKENS", not production),
        http_timeout=float(os.getenv("HUBSPOT_HTTP_TIMEOUT", "30")),
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "5000")),
    )
