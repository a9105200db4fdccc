"""Tests for bearer-token verification."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from frontdesk.errors import AuthenticationError
from frontdesk.services.identity import FirebaseIdentityVerifier, build_identity_verifier


def _verifier(http: MagicMock) -> FirebaseIdentityVerifier:
    return FirebaseIdentityVerifier("web-key", http_client=http)


class TestFirebaseIdentityVerifier:
    def test_resolves_account(self, mock_response):
        http = MagicMock()
        http.post.return_value = mock_response({"users": [{"localId": "uid-1", "tenantId": "acme"}]})

        identity = _verifier(http).verify("id-token")

        assert identity.user_id == "uid-1"
        assert identity.tenant_id == "acme"
        assert http.post.call_args.kwargs["json"] == {"idToken": "id-token"}
        assert http.post.call_args.kwargs["params"] == {"key": "web-key"}

    def test_rejected_token(self, mock_response):
        http = MagicMock()
        http.post.return_value = mock_response({"error": {"message": "INVALID_ID_TOKEN"}}, 400)
        with pytest.raises(AuthenticationError):
            _verifier(http).verify("bad")

    def test_no_account(self, mock_response):
        http = MagicMock()
        http.post.return_value = mock_response({"users": []})
        with pytest.raises(AuthenticationError):
            _verifier(http).verify("orphan")

    def test_network_failure(self):
        http = MagicMock()
        http.post.side_effect = httpx.ConnectError("down")
        with pytest.raises(AuthenticationError):
            _verifier(http).verify("id-token")

    def test_empty_token_never_calls_service(self):
        http = MagicMock()
        with pytest.raises(AuthenticationError):
            _verifier(http).verify("")
        http.post.assert_not_called()


def test_no_verifier_without_api_key():
    assert build_identity_verifier() is None
