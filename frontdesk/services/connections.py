"""Per-user connection records and OAuth access tokens.

Each user keeps their own provider payload (refresh token, granted scopes)
under their user id.  :class:`GoogleTokenProvider` exchanges the stored
refresh token for a short-lived access token; a missing or revoked refresh
token surfaces as :class:`~frontdesk.errors.IntegrationError` so callers can
tell the user to reconnect rather than retry.

:class:`GoogleOAuthFlow` is how a refresh token gets here in the first
place: it builds the consent URL (``state`` carries the verified user) and
trades the callback's ``code`` for tokens.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
from typing import Any

import httpx

from frontdesk.config import (
    CALENDAR_SCOPES,
    GOOGLE_AUTH_URL,
    GOOGLE_OAUTH_CLIENT_ID,
    GOOGLE_OAUTH_CLIENT_SECRET,
    GOOGLE_TOKEN_URL,
    OAUTH_REDIRECT_URI,
)
from frontdesk.errors import IntegrationError, TransientError, ValidationError
from frontdesk.models import ConnectionRecord
from frontdesk.services.metrics import metrics

logger = logging.getLogger(__name__)

PROVIDER_LABELS = {"calendar": "Google Calendar"}

REQUEST_TIMEOUT_SECONDS = 10.0
# Refresh a little before Google's stated expiry.
EXPIRY_MARGIN_SECONDS = 60


def provider_label(provider: str) -> str:
    return PROVIDER_LABELS.get(provider, provider)


class ConnectionStore:
    """Thread-safe in-memory store of provider tokens keyed by user id."""

    def __init__(self) -> None:
        self._connections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def save_tokens(self, user_id: str, provider: str, tokens: dict[str, Any]) -> None:
        """Merge *tokens* into the user's payload for *provider*."""
        with self._lock:
            existing = self._connections.setdefault(user_id, {}).get(provider, {})
            self._connections[user_id][provider] = {**existing, **tokens}
        logger.info("Saved %s tokens for user %s", provider, user_id)

    def revoke(self, user_id: str, provider: str) -> None:
        with self._lock:
            self._connections.get(user_id, {}).pop(provider, None)
        logger.info("Dropped %s tokens for user %s", provider, user_id)

    def refresh_token(self, user_id: str, provider: str) -> str:
        with self._lock:
            payload = self._connections.get(user_id, {}).get(provider, {})
        token = payload.get("refresh_token")
        if not token:
            raise IntegrationError(provider_label(provider), "missing_refresh_token")
        return token

    def status(self, user_id: str, provider: str) -> ConnectionRecord:
        with self._lock:
            payload = dict(self._connections.get(user_id, {}).get(provider, {}))
        scopes = payload.get("scopes") or []
        if isinstance(scopes, str):
            scopes = scopes.split()
        return ConnectionRecord(
            provider=provider,
            connected=bool(payload.get("refresh_token")),
            scopes=list(scopes),
        )


class GoogleTokenProvider:
    """Hands out access tokens, refreshing them from the stored refresh token."""

    def __init__(
        self,
        store: ConnectionStore,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        http_client: httpx.Client | None = None,
    ):
        self._store = store
        self._client_id = client_id or GOOGLE_OAUTH_CLIENT_ID
        self._client_secret = client_secret or GOOGLE_OAUTH_CLIENT_SECRET
        self._token_url = token_url
        self._http = http_client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)
        # (user_id, provider) → (access_token, expires_at_monotonic)
        self._tokens: dict[tuple[str, str], tuple[str, float]] = {}
        self._lock = threading.Lock()

    def access_token(self, user_id: str, provider: str = "calendar") -> str:
        key = (user_id, provider)
        with self._lock:
            cached = self._tokens.get(key)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        refresh_token = self._store.refresh_token(user_id, provider)
        if not (self._client_id and self._client_secret):
            raise IntegrationError(provider_label(provider), "oauth_client_not_configured")

        try:
            with metrics.timed("google_oauth", "POST /token"):
                response = self._http.post(
                    self._token_url,
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": refresh_token,
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                    },
                )
        except (httpx.TimeoutException, httpx.ConnectError) as exc:
            raise TransientError(f"token refresh failed: {type(exc).__name__}") from exc

        if response.status_code >= 500:
            raise TransientError(f"token endpoint error {response.status_code}")
        if response.status_code >= 400:
            error = _error_code(response)
            logger.warning(
                "Token refresh for %s/%s rejected (%s)", user_id, provider, error,
            )
            if error == "invalid_grant":
                self._store.revoke(user_id, provider)
            raise IntegrationError(provider_label(provider), error or "token_rejected")

        data = response.json()
        token = data["access_token"]
        expires_at = time.monotonic() + int(data.get("expires_in", 3600)) - EXPIRY_MARGIN_SECONDS
        with self._lock:
            self._tokens[key] = (token, expires_at)
        return token

    def invalidate(self, user_id: str, provider: str = "calendar") -> None:
        """Forget the cached access token (e.g. after a 401 from the API)."""
        with self._lock:
            self._tokens.pop((user_id, provider), None)


class GoogleOAuthFlow:
    """Consent URL and code exchange for connecting a Google Calendar."""

    def __init__(
        self,
        store: ConnectionStore,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        http_client: httpx.Client | None = None,
    ):
        self._store = store
        self._client_id = client_id or GOOGLE_OAUTH_CLIENT_ID
        self._client_secret = client_secret or GOOGLE_OAUTH_CLIENT_SECRET
        self._redirect_uri = redirect_uri or OAUTH_REDIRECT_URI
        self._token_url = token_url
        self._http = http_client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._redirect_uri)

    def authorization_url(
        self, user_id: str, tenant_id: str | None = None, provider: str = "calendar",
    ) -> str:
        """Google consent URL asking for offline calendar access."""
        state = encode_state({"provider": provider, "uid": user_id, "tenantId": tenant_id})
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "scope": " ".join(CALENDAR_SCOPES),
            "state": state,
        }
        return str(httpx.URL(GOOGLE_AUTH_URL, params=params))

    def complete(self, code: str, state: str) -> str:
        """Exchange *code*, store the refresh token, and return the user id.

        Raises :class:`ValidationError` for a bad callback (missing code,
        unreadable state, no refresh token granted).
        """
        if not code:
            raise ValidationError("Missing code", field="code")
        payload = decode_state(state)
        provider = payload.get("provider")
        user_id = payload.get("uid")
        if provider not in PROVIDER_LABELS or not user_id:
            raise ValidationError("Invalid provider", field="state")

        try:
            with metrics.timed("google_oauth", "POST /token"):
                response = self._http.post(
                    self._token_url,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                        "redirect_uri": self._redirect_uri,
                    },
                )
        except (httpx.TimeoutException, httpx.ConnectError) as exc:
            raise TransientError(f"code exchange failed: {type(exc).__name__}") from exc

        if response.status_code >= 500:
            raise TransientError(f"token endpoint error {response.status_code}")
        if response.status_code >= 400:
            error = _error_code(response)
            logger.warning("Code exchange for user %s rejected (%s)", user_id, error)
            raise IntegrationError(provider_label(provider), error or "code_rejected")

        tokens = response.json()
        if not tokens.get("refresh_token"):
            raise ValidationError(
                "Connected, but missing refresh_token. Please revoke the app at "
                "https://myaccount.google.com/permissions and connect again.",
                field="refresh_token",
            )

        record: dict[str, Any] = {"refresh_token": tokens["refresh_token"]}
        if isinstance(tokens.get("scope"), str):
            record["scopes"] = tokens["scope"].split()
        if payload.get("tenantId"):
            record["tenant_id"] = payload["tenantId"]
        self._store.save_tokens(user_id, provider, record)
        return user_id


def encode_state(payload: dict[str, Any]) -> str:
    """Base64url JSON, without padding."""
    raw = json.dumps({k: v for k, v in payload.items() if v is not None}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_state(state: str) -> dict[str, Any]:
    if not state:
        raise ValidationError("Missing state", field="state")
    try:
        padded = state + "=" * (-len(state) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (ValueError, UnicodeError) as exc:
        raise ValidationError("Invalid state", field="state") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Invalid state", field="state")
    return payload


def _error_code(response: httpx.Response) -> str:
    try:
        return str(response.json().get("error", ""))
    except ValueError:
        return ""
