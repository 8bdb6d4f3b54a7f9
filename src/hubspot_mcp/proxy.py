"""Authenticated read-only proxy for the HubSpot CRM API.

Every proxied call goes through ``ProxyClient.call``, which makes sure a
usable access token is attached. Tokens close to expiry are refreshed before
the request, and a 401 from HubSpot triggers one refresh and one retry.
Refreshes are single-flight: concurrent callers wait on one in-flight
refresh instead of spending the refresh token twice, and share its failure
when it fails.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx

from .config import AUTH_PATH, FORCE_AUTH_PATH, Settings
from .errors import (
    HubSpotError,
    MalformedUpstreamResponse,
    Unauthenticated,
    UpstreamRejected,
    UpstreamUnreachable,
)
from .refresher import TokenRefresher, json_or_text
from .tokens import TokenPair, TokenStore, utcnow

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(minutes=5)


@dataclass(frozen=True)
class Endpoint:
    """A read endpoint on the HubSpot API.

    ``collection_key`` names the list inside the JSON object; ``None`` means
    the body itself is the list.
    """

    name: str
    path: str
    collection_key: str | None
    default_params: dict[str, Any] = field(default_factory=dict)


ENDPOINTS: dict[str, Endpoint] = {
    "contacts": Endpoint(
        name="contacts",
        path="/crm/v3/objects/contacts",
        collection_key="results",
        default_params={"limit": 100},
    ),
    "lists": Endpoint(name="lists", path="/contacts/v1/lists", collection_key="lists"),
    "properties": Endpoint(
        name="properties",
        path="/properties/v1/contacts/properties",
        collection_key=None,
    ),
}

# Read by the debug surface to confirm the token works end to end.
CONNECTION_CHECK = Endpoint(
    name="contact schema", path="/crm/v3/schemas/contacts", collection_key=None
)


@dataclass(frozen=True)
class ProxyResult:
    endpoint: str
    count: int
    items: list[Any]

    ok = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "success",
            "count": self.count,
            self.endpoint: self.items,
        }


@dataclass(frozen=True)
class ProxyFailure:
    """A proxied call that could not be completed, with a remediation link."""

    endpoint: str
    error: HubSpotError
    auth_url: str

    ok = False

    @property
    def unauthenticated(self) -> bool:
        return isinstance(self.error, Unauthenticated)

    def to_dict(self) -> dict[str, Any]:
        data = self.error.to_dict()
        data.setdefault("status", None)
        data.setdefault("details", None)
        data["auth_url"] = self.auth_url
        return data


@dataclass(frozen=True)
class TokenStatus:
    has_token: bool
    is_expired: bool
    recommended_action: str


class ProxyClient:
    """Forwards read requests to HubSpot with a valid bearer token.

    Args:
        settings: API base URL and remediation links come from here.
        store: The token slot shared with ``AuthorizationFlow``.
        refresher: Used for proactive and reactive refreshes.
        http: Shared async HTTP client.
        clock: Source of the current time for expiry checks.
    """

    def __init__(
        self,
        settings: Settings,
        store: TokenStore,
        refresher: TokenRefresher,
        http: httpx.AsyncClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._refresher = refresher
        self._http = http
        self._clock = clock
        self._refresh_lock = asyncio.Lock()
        # bumped after every refresh attempt; waiters compare it on wake-up
        self._refresh_generation = 0
        self._failed_refresh: tuple[TokenPair, HubSpotError] | None = None

    async def call(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> ProxyResult | ProxyFailure:
        """Fetch ``endpoint`` and normalize the outcome.

        Raises:
            KeyError: If ``endpoint`` is not a known endpoint name.
        """
        spec = ENDPOINTS[endpoint]
        try:
            items = await self._fetch(spec, params)
        except Unauthenticated as exc:
            return ProxyFailure(endpoint=endpoint, error=exc, auth_url=AUTH_PATH)
        except HubSpotError as exc:
            logger.error("Error fetching HubSpot %s: %s", endpoint, exc)
            return ProxyFailure(endpoint=endpoint, error=exc, auth_url=FORCE_AUTH_PATH)
        return ProxyResult(endpoint=endpoint, count=len(items), items=items)

    def token_status(self) -> TokenStatus:
        pair = self._store.get()
        if pair is None:
            return TokenStatus(False, True, "authentication needed")
        if pair.is_expired(self._clock()):
            return TokenStatus(True, True, "refresh needed")
        return TokenStatus(True, False, "token valid")

    def token_info(self) -> dict[str, Any]:
        """Describe the stored token without exposing the credentials."""
        pair = self._store.get()
        if pair is None:
            return {"has_token": False}
        now = self._clock()
        return {
            "has_token": True,
            "access_token": f"{pair.access_token[:10]}...",
            "has_refresh_token": bool(pair.refresh_token),
            "expires_at": pair.expires_at.isoformat(),
            "seconds_to_expiry": int((pair.expires_at - now).total_seconds()),
            "is_expired": pair.is_expired(now),
        }

    async def check_connection(self) -> dict[str, Any]:
        """Make one live read against HubSpot and report how it went.

        The call follows the same token rules as proxied calls, so a stale
        token is refreshed first and a 401 is retried once.
        """
        try:
            response = await self._send(CONNECTION_CHECK, None)
        except HubSpotError as exc:
            logger.warning("HubSpot connection check failed: %s", exc)
            return {"api_response": None, "api_error": exc.to_dict()}

        body = json_or_text(response)
        if not response.is_success:
            error = UpstreamRejected(
                "HubSpot connection check failed",
                status=response.status_code,
                body=body,
            )
            return {"api_response": None, "api_error": error.to_dict()}

        properties = body.get("properties") if isinstance(body, dict) else None
        return {
            "api_response": {
                "status": response.status_code,
                "has_data": bool(body),
                "properties": len(properties) if isinstance(properties, list) else 0,
            },
            "api_error": None,
        }

    async def _fetch(self, spec: Endpoint, params: dict[str, Any] | None) -> list[Any]:
        response = await self._send(spec, params)
        body = json_or_text(response)
        if not response.is_success:
            raise UpstreamRejected(
                f"Failed to access HubSpot {spec.name}",
                status=response.status_code,
                body=body,
            )
        return _collection(spec, body)

    async def _send(
        self, spec: Endpoint, params: dict[str, Any] | None
    ) -> httpx.Response:
        pair = await self._valid_token()
        response = await self._get(spec, pair, params)

        if response.status_code == httpx.codes.UNAUTHORIZED:
            logger.info("HubSpot rejected the access token, refreshing once")
            pair = await self._refresh_rejected(pair)
            response = await self._get(spec, pair, params)
        return response

    async def _valid_token(self) -> TokenPair:
        pair = self._store.get()
        if pair is None:
            raise Unauthenticated("Not authenticated with HubSpot")
        if not pair.expires_within(REFRESH_MARGIN, self._clock()):
            return pair

        generation = self._refresh_generation
        async with self._refresh_lock:
            pair = self._store.get()
            if pair is None:
                raise Unauthenticated("Not authenticated with HubSpot")
            if not pair.expires_within(REFRESH_MARGIN, self._clock()):
                return pair
            self._raise_shared_failure(pair, generation)
            logger.info("Token expired or about to expire, refreshing")
            return await self._refresh(pair)

    async def _refresh_rejected(self, rejected: TokenPair) -> TokenPair:
        generation = self._refresh_generation
        async with self._refresh_lock:
            pair = self._store.get()
            if pair is None:
                raise Unauthenticated("Not authenticated with HubSpot")
            if pair.access_token != rejected.access_token:
                return pair
            self._raise_shared_failure(pair, generation)
            return await self._refresh(pair)

    def _raise_shared_failure(self, pair: TokenPair, generation: int) -> None:
        """Fail waiters whose refresh already failed while they were queued."""
        failed = self._failed_refresh
        if generation == self._refresh_generation or failed is None:
            return
        failed_pair, cause = failed
        if failed_pair is pair:
            raise Unauthenticated("Failed to refresh authentication token") from cause

    async def _refresh(self, current: TokenPair) -> TokenPair:
        """Refresh under the lock and write the result to the store."""
        try:
            refreshed = await self._refresher.refresh(current)
        except HubSpotError as exc:
            logger.warning("Token refresh failed: %s", exc)
            self._failed_refresh = (current, exc)
            raise Unauthenticated("Failed to refresh authentication token") from exc
        else:
            self._failed_refresh = None
        finally:
            self._refresh_generation += 1

        latest = self._store.get()
        if latest is not current:
            # logout or a new consent flow replaced the slot mid-refresh
            logger.info("Token slot changed during refresh, discarding result")
            if latest is None:
                raise Unauthenticated("Logged out during token refresh")
            return latest

        self._store.set(refreshed)
        return refreshed

    async def _get(
        self, spec: Endpoint, pair: TokenPair, params: dict[str, Any] | None
    ) -> httpx.Response:
        query = {**spec.default_params, **(params or {})}
        query = {key: value for key, value in query.items() if value is not None}
        url = f"{self._settings.api_base.rstrip('/')}{spec.path}"
        try:
            return await self._http.get(
                url,
                params=query,
                headers={"Authorization": f"Bearer {pair.access_token}"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamUnreachable(f"Request to HubSpot failed: {exc}") from exc


def _collection(spec: Endpoint, body: Any) -> list[Any]:
    if spec.collection_key is None:
        items = body
    elif isinstance(body, dict):
        items = body.get(spec.collection_key) or []
    else:
        items = None

    if not isinstance(items, list):
        raise MalformedUpstreamResponse(
            f"Unexpected response shape from HubSpot {spec.name}", body=body
        )
    return items
