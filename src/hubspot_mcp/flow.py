"""Authorization-code flow for connecting the HubSpot account."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from .config import Settings
from .errors import MissingCode
from .refresher import TokenRefresher
from .tokens import TokenPair, TokenStore

logger = logging.getLogger(__name__)


class AuthorizationFlow:
    """Builds the consent URL, handles the callback, and logs out."""

    def __init__(
        self, settings: Settings, store: TokenStore, refresher: TokenRefresher
    ) -> None:
        self._settings = settings
        self._store = store
        self._refresher = refresher

    def build_authorization_url(self, force_reauth: bool = False) -> str:
        """Return the HubSpot consent-screen URL.

        Args:
            force_reauth: Clear the stored token first so a stale one cannot
                short-circuit the new flow.
        """
        if force_reauth:
            logger.info("Force reauthorization requested, clearing tokens")
            self._store.clear()

        query = urlencode(
            {
                "client_id": self._settings.client_id,
                "redirect_uri": self._settings.redirect_uri,
                "scope": " ".join(self._settings.scopes),
            }
        )
        return f"{self._settings.authorize_url}?{query}"

    async def handle_callback(self, code: str | None) -> TokenPair:
        """Exchange the callback code and store the resulting token pair.

        Raises:
            MissingCode: If the callback carried no code.
            HubSpotError: Any failure from the token exchange; the store is
                left untouched.
        """
        if not code:
            logger.error("No code provided in callback")
            raise MissingCode("No authorization code provided")

        pair = await self._refresher.exchange_code(code, self._settings.redirect_uri)
        self._store.set(pair)
        return pair

    def logout(self) -> None:
        self._store.clear()
        logger.info("Logged out, tokens cleared")
