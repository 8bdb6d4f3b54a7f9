"""Wiring of the token lifecycle components for one HubSpot account."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import httpx

from .config import Settings
from .flow import AuthorizationFlow
from .proxy import ProxyClient
from .refresher import TokenRefresher
from .tokens import (
    JsonFileTokenStorage,
    NullTokenStorage,
    TokenStorage,
    TokenStore,
    utcnow,
)

logger = logging.getLogger(__name__)


class HubSpotBroker:
    """Owns the token slot and the components that share it.

    Every component receives the same ``TokenStore`` instance; there is no
    module-level token state.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        storage: TokenStorage | None = None,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.http = http or httpx.AsyncClient(timeout=settings.http_timeout)
        self.store = TokenStore(storage or default_storage(settings))
        self.refresher = TokenRefresher(settings, self.http, clock=clock)
        self.flow = AuthorizationFlow(settings, self.store, self.refresher)
        self.proxy = ProxyClient(
            settings, self.store, self.refresher, self.http, clock=clock
        )

    def load(self) -> None:
        """Restore persisted tokens at startup."""
        self.store.load()

    async def aclose(self) -> None:
        await self.http.aclose()


def default_storage(settings: Settings) -> TokenStorage:
    if not settings.persist_tokens:
        logger.info("Token persistence disabled, keeping tokens in memory only")
        return NullTokenStorage()
    return JsonFileTokenStorage(settings.token_path)
