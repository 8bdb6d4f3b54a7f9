"""Failure types raised by the token lifecycle and proxy components."""

from __future__ import annotations

from typing import Any


class HubSpotError(Exception):
    """Base class for every failure the broker reports to its callers."""

    error = "HubSpot error"

    def __init__(self, message: str, *, remediation_url: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.remediation_url = remediation_url

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error,
            "message": self.message,
            "auth_url": self.remediation_url,
        }


class MissingCode(HubSpotError):
    """The OAuth callback was invoked without an authorization code."""

    error = "Missing authorization code"


class Unauthenticated(HubSpotError):
    """No token is stored, or the stored one could not be refreshed."""

    error = "Authentication required"


class UpstreamRejected(HubSpotError):
    """HubSpot answered with a non-success HTTP status."""

    error = "HubSpot request failed"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: Any = None,
        remediation_url: str | None = None,
    ) -> None:
        super().__init__(message, remediation_url=remediation_url)
        self.status = status
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status
        data["details"] = self.body
        return data


class UpstreamUnreachable(UpstreamRejected):
    """The request to HubSpot never produced a response."""

    error = "HubSpot unreachable"


class MalformedUpstreamResponse(HubSpotError):
    """HubSpot answered 2xx but the body lacked the expected fields."""

    error = "Malformed HubSpot response"

    def __init__(
        self, message: str, *, body: Any = None, remediation_url: str | None = None
    ) -> None:
        super().__init__(message, remediation_url=remediation_url)
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["details"] = self.body
        return data


class PersistenceUnavailable(HubSpotError):
    """Token persistence failed. Logged only, never surfaced."""

    error = "Token persistence unavailable"


__all__ = [
    "HubSpotError",
    "MalformedUpstreamResponse",
    "MissingCode",
    "PersistenceUnavailable",
    "Unauthenticated",
    "UpstreamRejected",
    "UpstreamUnreachable",
]
