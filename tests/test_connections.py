"""Tests for the connection store and OAuth access-token provider."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from frontdesk.errors import IntegrationError, TransientError, ValidationError
from frontdesk.services.connections import (
    ConnectionStore,
    GoogleOAuthFlow,
    GoogleTokenProvider,
    decode_state,
    encode_state,
)


def _provider(store: ConnectionStore, http: MagicMock) -> GoogleTokenProvider:
    return GoogleTokenProvider(
        store, client_id="cid", client_secret="secret", http_client=http,
    )


class TestConnectionStore:
    def test_status_reflects_refresh_token_and_scopes(self):
        store = ConnectionStore()
        store.save_tokens("u1", "calendar", {
            "refresh_token": "r1",
            "scopes": "https://www.googleapis.com/auth/calendar.events openid",
        })
        record = store.status("u1", "calendar")
        assert record.connected is True
        assert record.scopes == ["https://www.googleapis.com/auth/calendar.events", "openid"]

    def test_unknown_user_is_not_connected(self):
        assert ConnectionStore().status("nobody", "calendar").connected is False

    def test_save_merges(self):
        store = ConnectionStore()
        store.save_tokens("u1", "calendar", {"refresh_token": "r1"})
        store.save_tokens("u1", "calendar", {"scopes": ["openid"]})
        assert store.refresh_token("u1", "calendar") == "r1"

    def test_missing_refresh_token_is_integration_error(self):
        with pytest.raises(IntegrationError) as exc_info:
            ConnectionStore().refresh_token("u1", "calendar")
        assert exc_info.value.reason == "missing_refresh_token"
        assert "Google Calendar" in exc_info.value.user_message

    def test_users_are_isolated(self):
        store = ConnectionStore()
        store.save_tokens("u1", "calendar", {"refresh_token": "r1"})
        assert store.status("u2", "calendar").connected is False


class TestGoogleTokenProvider:
    def test_exchanges_and_caches_token(self, mock_response):
        store = ConnectionStore()
        store.save_tokens("u1", "calendar", {"refresh_token": "r1"})
        http = MagicMock()
        http.post.return_value = mock_response({"access_token": "a1", "expires_in": 3600})
        provider = _provider(store, http)

        assert provider.access_token("u1") == "a1"
        assert provider.access_token("u1") == "a1"
        assert http.post.call_count == 1
        assert http.post.call_args.kwargs["data"]["grant_type"] == "refresh_token"

    def test_invalidate_forces_refresh(self, mock_response):
        store = ConnectionStore()
        store.save_tokens("u1", "calendar", {"refresh_token": "r1"})
        http = MagicMock()
        http.post.return_value = mock_response({"access_token": "a1", "expires_in": 3600})
        provider = _provider(store, http)

        provider.access_token("u1")
        provider.invalidate("u1")
        provider.access_token("u1")
        assert http.post.call_count == 2

    def test_invalid_grant_revokes_connection(self, mock_response):
        store = ConnectionStore()
        store.save_tokens("u1", "calendar", {"refresh_token": "r1"})
        http = MagicMock()
        http.post.return_value = mock_response({"error": "invalid_grant"}, 400)

        with pytest.raises(IntegrationError):
            _provider(store, http).access_token("u1")
        assert store.status("u1", "calendar").connected is False

    def test_token_endpoint_outage_is_transient(self, mock_response):
        store = ConnectionStore()
        store.save_tokens("u1", "calendar", {"refresh_token": "r1"})
        http = MagicMock()
        http.post.side_effect = httpx.ConnectError("down")
        with pytest.raises(TransientError):
            _provider(store, http).access_token("u1")

    def test_no_stored_token_never_calls_endpoint(self):
        http = MagicMock()
        with pytest.raises(IntegrationError):
            _provider(ConnectionStore(), http).access_token("u1")
        http.post.assert_not_called()


def _flow(store: ConnectionStore, http: MagicMock) -> GoogleOAuthFlow:
    return GoogleOAuthFlow(
        store,
        client_id="cid",
        client_secret="secret",
        redirect_uri="https://app.test/api/google/oauth/callback",
        http_client=http,
    )


class TestGoogleOAuthFlow:
    def test_consent_url_carries_user_in_state(self):
        url = httpx.URL(_flow(ConnectionStore(), MagicMock()).authorization_url("u1", "acme"))

        assert url.host == "accounts.google.com"
        assert url.params["access_type"] == "offline"
        assert url.params["prompt"] == "consent"
        assert "https://www.googleapis.com/auth/calendar.events" in url.params["scope"]
        assert decode_state(url.params["state"]) == {
            "provider": "calendar", "uid": "u1", "tenantId": "acme",
        }

    def test_callback_stores_refresh_token(self, mock_response):
        store = ConnectionStore()
        http = MagicMock()
        http.post.return_value = mock_response({
            "access_token": "a1",
            "refresh_token": "r1",
            "scope": "https://www.googleapis.com/auth/calendar.events openid",
        })

        user_id = _flow(store, http).complete("code-1", encode_state({"provider": "calendar", "uid": "u1"}))

        assert user_id == "u1"
        assert store.refresh_token("u1", "calendar") == "r1"
        assert store.status("u1", "calendar").scopes == [
            "https://www.googleapis.com/auth/calendar.events", "openid",
        ]
        data = http.post.call_args.kwargs["data"]
        assert data["grant_type"] == "authorization_code"
        assert data["code"] == "code-1"

    def test_connected_store_feeds_token_provider(self, mock_response):
        store = ConnectionStore()
        http = MagicMock()
        http.post.side_effect = [
            mock_response({"refresh_token": "r1", "scope": "openid"}),
            mock_response({"access_token": "a1", "expires_in": 3600}),
        ]
        _flow(store, http).complete("code-1", encode_state({"provider": "calendar", "uid": "u1"}))
        assert _provider(store, http).access_token("u1") == "a1"

    def test_missing_refresh_token_is_rejected(self, mock_response):
        store = ConnectionStore()
        http = MagicMock()
        http.post.return_value = mock_response({"access_token": "a1"})

        with pytest.raises(ValidationError) as exc_info:
            _flow(store, http).complete("code-1", encode_state({"provider": "calendar", "uid": "u1"}))
        assert "missing refresh_token" in exc_info.value.user_message
        assert store.status("u1", "calendar").connected is False

    @pytest.mark.parametrize("state", ["", "bm90LWpzb24", encode_state({"provider": "gmail", "uid": "u1"})])
    def test_bad_state_never_calls_google(self, state):
        http = MagicMock()
        with pytest.raises(ValidationError):
            _flow(ConnectionStore(), http).complete("code-1", state)
        http.post.assert_not_called()

    def test_missing_code(self):
        with pytest.raises(ValidationError):
            _flow(ConnectionStore(), MagicMock()).complete("", encode_state({"provider": "calendar", "uid": "u1"}))

    def test_rejected_code_is_integration_error(self, mock_response):
        http = MagicMock()
        http.post.return_value = mock_response({"error": "invalid_grant"}, 400)
        with pytest.raises(IntegrationError):
            _flow(ConnectionStore(), http).complete("stale", encode_state({"provider": "calendar", "uid": "u1"}))

    def test_configured(self):
        assert _flow(ConnectionStore(), MagicMock()).configured is True
        assert GoogleOAuthFlow(ConnectionStore(), http_client=MagicMock()).configured is False
