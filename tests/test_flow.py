"""Tests for the authorization-code flow."""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from hubspot_mcp.errors import MissingCode, UpstreamRejected


class TestBuildAuthorizationUrl:
    """Tests for AuthorizationFlow.build_authorization_url."""

    def test_builds_consent_url(self, broker):
        """Should carry client_id, redirect_uri and the scopes."""
        url = broker.flow.build_authorization_url()

        parts = urlsplit(url)
        query = parse_qs(parts.query)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == (
            "https://app-na2.hubspot.com/oauth/authorize"
        )
        assert query["client_id"] == ["test_client_id"]
        assert query["redirect_uri"] == ["http://localhost:5000/oauth/callback"]
        assert "crm.lists.read" in query["scope"][0].split()
        assert "oauth" in query["scope"][0].split()

    def test_keeps_token_without_force(self, broker, valid_pair):
        broker.store.set(valid_pair)

        broker.flow.build_authorization_url()

        assert broker.store.get() == valid_pair

    def test_force_clears_token(self, broker, valid_pair):
        """Should clear the stored token before a forced flow."""
        broker.store.set(valid_pair)

        broker.flow.build_authorization_url(force_reauth=True)

        assert broker.store.get() is None


class TestHandleCallback:
    """Tests for AuthorizationFlow.handle_callback."""

    @pytest.mark.asyncio
    async def test_stores_exchanged_tokens(self, broker, hubspot_api):
        """Should write the exchanged pair into the store."""
        hubspot_api.post("/oauth/v1/token").mock(
            return_value=httpx.Response(
                200,
                json={
                    "access_token": "new_access_token",
                    "refresh_token": "new_refresh_token",
                    "expires_in": 1800,
                },
            )
        )

        pair = await broker.flow.handle_callback("test_auth_code")

        assert broker.store.get() == pair
        assert pair.access_token == "new_access_token"

    @pytest.mark.asyncio
    async def test_missing_code(self, broker, hubspot_api):
        route = hubspot_api.post("/oauth/v1/token")

        with pytest.raises(MissingCode):
            await broker.flow.handle_callback(None)

        assert route.call_count == 0
        assert broker.store.get() is None

    @pytest.mark.asyncio
    async def test_failed_exchange_leaves_store_untouched(
        self, broker, hubspot_api, valid_pair
    ):
        broker.store.set(valid_pair)
        hubspot_api.post("/oauth/v1/token").mock(
            return_value=httpx.Response(400, json={"message": "invalid code"})
        )

        with pytest.raises(UpstreamRejected):
            await broker.flow.handle_callback("bad_code")

        assert broker.store.get() == valid_pair


class TestLogout:
    """Tests for AuthorizationFlow.logout."""

    def test_clears_token(self, broker, valid_pair):
        broker.store.set(valid_pair)

        broker.flow.logout()

        assert broker.store.get() is None

    def test_is_idempotent(self, broker):
        """Should succeed even when no tokens exist."""
        broker.flow.logout()
        broker.flow.logout()

        assert broker.store.get() is None
