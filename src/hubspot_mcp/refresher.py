"""Token exchange against the HubSpot OAuth endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx

from .config import Settings
from .errors import (
    MalformedUpstreamResponse,
    MissingCode,
    Unauthenticated,
    UpstreamRejected,
    UpstreamUnreachable,
)
from .tokens import TokenPair, utcnow

logger = logging.getLogger(__name__)

# HubSpot access tokens live for 30 minutes.
DEFAULT_EXPIRES_IN = 1800


class TokenRefresher:
    """Exchanges authorization codes and refresh tokens for token pairs.

    The refresher holds no token state and never writes to a ``TokenStore``;
    callers store what it returns. Failures are raised, never retried.

    Args:
        settings: Client credentials and endpoint URLs.
        http: Shared async HTTP client.
        clock: Source of the current time, used to compute ``expires_at``.
    """

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._http = http
        self._clock = clock

    async def refresh(self, current: TokenPair | None) -> TokenPair:
        """Mint a new access token from the refresh token in ``current``.

        Raises:
            Unauthenticated: If there is no refresh token to use.
            UpstreamRejected: If HubSpot rejects the refresh.
            MalformedUpstreamResponse: If the response lacks an access token.
        """
        if current is None or not current.refresh_token:
            logger.info("No refresh token available")
            raise Unauthenticated("No refresh token available")

        payload, issued_at = await self._request_token(
            {"grant_type": "refresh_token", "refresh_token": current.refresh_token}
        )
        refreshed = current.with_refresh(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=issued_at + _lifetime(payload),
        )
        logger.info("Token refreshed successfully")
        return refreshed

    async def exchange_code(self, code: str | None, redirect_uri: str) -> TokenPair:
        """Exchange an authorization code for the initial token pair.

        Raises:
            MissingCode: If ``code`` is empty.
            UpstreamRejected: If HubSpot rejects the code.
            MalformedUpstreamResponse: If the response lacks an access token.
        """
        if not code:
            raise MissingCode("No authorization code provided")

        logger.info("Exchanging authorization code for tokens")
        payload, issued_at = await self._request_token(
            {
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
                "code": code,
            }
        )
        logger.info(
            "Token exchange successful (expires_in=%s, has_refresh_token=%s)",
            payload.get("expires_in"),
            bool(payload.get("refresh_token")),
        )
        return TokenPair(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or "",
            expires_at=issued_at + _lifetime(payload),
        )

    async def _request_token(
        self, grant: dict[str, str]
    ) -> tuple[dict[str, Any], datetime]:
        form = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            **grant,
        }
        issued_at = self._clock()
        try:
            response = await self._http.post(self._settings.token_url, data=form)
        except httpx.HTTPError as exc:
            logger.error("Token request to HubSpot failed: %s", exc)
            raise UpstreamUnreachable(f"Token request failed: {exc}") from exc

        body = json_or_text(response)
        if not response.is_success:
            logger.error(
                "HubSpot token endpoint returned %s: %s", response.status_code, body
            )
            raise UpstreamRejected(
                f"Token request failed with status {response.status_code}",
                status=response.status_code,
                body=body,
            )

        if not isinstance(body, dict) or not body.get("access_token"):
            raise MalformedUpstreamResponse(
                "Token response did not include an access_token", body=body
            )
        return body, issued_at


def _lifetime(payload: dict[str, Any]) -> timedelta:
    try:
        seconds = int(payload["expires_in"])
    except (KeyError, TypeError, ValueError, OverflowError):
        seconds = 0
    if seconds <= 0:
        logger.warning(
            "Token response has no usable expires_in, assuming %ss",
            DEFAULT_EXPIRES_IN,
        )
        seconds = DEFAULT_EXPIRES_IN
    return timedelta(seconds=seconds)


def json_or_text(response: httpx.Response) -> Any:
    """Decode a JSON body, falling back to the raw text."""
    try:
        return response.json()
    except ValueError:
        return response.text
