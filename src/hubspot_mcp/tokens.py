"""Token management for the HubSpot MCP server.

The broker holds exactly one token pair in memory. A storage backend may
mirror it to disk so a restart does not force a new consent flow, but the
in-memory copy is always authoritative: a failing backend is logged and
otherwise ignored.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from .errors import PersistenceUnavailable

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    """An access/refresh token pair and the moment the access token expires."""

    access_token: str
    refresh_token: str
    expires_at: datetime

    def expires_within(self, margin: timedelta, now: datetime | None = None) -> bool:
        """Check whether the access token expires within ``margin`` of ``now``."""
        now = now or utcnow()
        return self.expires_at - margin <= now

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_within(timedelta(0), now)

    def with_refresh(
        self, access_token: str, expires_at: datetime, refresh_token: str | None = None
    ) -> TokenPair:
        """Return a copy updated from a refresh response.

        The refresh token is only replaced when the response carried one.
        """
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            expires_at=expires_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted layout; ``expiry_date`` is epoch milliseconds."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry_date": int(self.expires_at.timestamp() * 1000),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenPair:
        """Build a pair from the persisted layout.

        Raises:
            KeyError, TypeError, ValueError: If the data is incomplete or corrupt.
        """
        access_token = data["access_token"]
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("access_token must be a non-empty string")
        refresh_token = data.get("refresh_token") or ""
        if not isinstance(refresh_token, str):
            raise ValueError("refresh_token must be a string")
        expiry_date = data["expiry_date"]
        try:
            expires_at = datetime.fromtimestamp(
                float(expiry_date) / 1000, tz=timezone.utc
            )
        except (OverflowError, OSError) as exc:
            raise ValueError(f"expiry_date out of range: {expiry_date!r}") from exc
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )


class TokenStorage(ABC):
    """Durable side channel for the token slot."""

    @abstractmethod
    def load(self) -> dict[str, Any] | None:
        """Return the persisted token data, or None if nothing is stored."""

    @abstractmethod
    def save(self, data: dict[str, Any]) -> None:
        """Persist token data, replacing anything stored before."""

    @abstractmethod
    def delete(self) -> None:
        """Remove persisted token data. Must succeed when nothing is stored."""


class NullTokenStorage(TokenStorage):
    """Storage for read-only or ephemeral filesystems. Persists nothing."""

    def load(self) -> dict[str, Any] | None:
        return None

    def save(self, data: dict[str, Any]) -> None:
        return None

    def delete(self) -> None:
        return None


class JsonFileTokenStorage(TokenStorage):
    """Persist tokens to a JSON file on disk."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object in {self.path}")
        return data

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)

        try:
            os.chmod(self.path, 0o600)
        except OSError as exc:  # pragma: no cover - depends on platform
            logger.warning("Could not set permissions on %s: %s", self.path, exc)

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)


class TokenStore:
    """The single in-memory token slot.

    Args:
        storage: Optional durable backend. Defaults to ``NullTokenStorage``.
    """

    def __init__(self, storage: TokenStorage | None = None) -> None:
        self._storage = storage or NullTokenStorage()
        self._pair: TokenPair | None = None

    @property
    def has_token(self) -> bool:
        return self._pair is not None

    def get(self) -> TokenPair | None:
        """Return the current token pair, or None if not authenticated."""
        return self._pair

    def set(self, pair: TokenPair) -> None:
        """Replace the token pair and try to persist it."""
        self._pair = pair
        try:
            self._persist(lambda: self._storage.save(pair.to_dict()), "save")
        except PersistenceUnavailable as exc:
            logger.warning("%s", exc)

    def clear(self) -> None:
        """Drop the token pair and try to remove the persisted copy."""
        self._pair = None
        try:
            self._persist(self._storage.delete, "delete")
        except PersistenceUnavailable as exc:
            logger.warning("%s", exc)

    def load(self) -> TokenPair | None:
        """Restore a previously persisted token pair into memory.

        Missing or corrupt data leaves the store empty.
        """
        try:
            data = self._storage.load()
        except (OSError, ValueError) as exc:
            logger.warning("Could not read persisted tokens: %s", exc)
            return None

        if not data:
            logger.info("No saved tokens found")
            return None

        try:
            pair = TokenPair.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring corrupt persisted tokens: %s", exc)
            return None

        self._pair = pair
        logger.info("Loaded tokens from storage")
        return pair

    def _persist(self, action: Callable[[], None], verb: str) -> None:
        try:
            action()
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceUnavailable(
                f"Could not {verb} persisted tokens: {exc}"
            ) from exc
