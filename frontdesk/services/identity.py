"""Bearer-token verification against Firebase Authentication.

Uses the Identity Toolkit ``accounts:lookup`` REST endpoint, which accepts a
Firebase ID token and returns the account it belongs to.  Any failure to
resolve the token is an :class:`~frontdesk.errors.AuthenticationError`.
"""

from __future__ import annotations

import logging

import httpx

from frontdesk.config import FIREBASE_WEB_API_KEY
from frontdesk.errors import AuthenticationError
from frontdesk.models import Identity
from frontdesk.services.metrics import metrics

logger = logging.getLogger(__name__)

LOOKUP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:lookup"
REQUEST_TIMEOUT_SECONDS = 10.0


class FirebaseIdentityVerifier:
    def __init__(self, api_key: str, *, http_client: httpx.Client | None = None):
        self._api_key = api_key
        self._http = http_client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)

    def verify(self, bearer_token: str) -> Identity:
        if not bearer_token:
            raise AuthenticationError("missing bearer token")
        try:
            with metrics.timed("identity", "accounts:lookup"):
                response = self._http.post(
                    LOOKUP_URL,
                    params={"key": self._api_key},
                    json={"idToken": bearer_token},
                )
        except httpx.HTTPError as exc:
            logger.warning("Identity lookup failed: %s", type(exc).__name__)
            raise AuthenticationError("identity service unavailable") from exc

        if response.status_code != 200:
            logger.info("Identity lookup rejected token (%d)", response.status_code)
            raise AuthenticationError("invalid token")

        users = response.json().get("users") or []
        if not users or not users[0].get("localId"):
            raise AuthenticationError("token has no account")
        return Identity(user_id=users[0]["localId"], tenant_id=users[0].get("tenantId"))


def build_identity_verifier() -> FirebaseIdentityVerifier | None:
    """The configured verifier, or ``None`` when identity is not set up."""
    if not FIREBASE_WEB_API_KEY:
        return None
    return FirebaseIdentityVerifier(FIREBASE_WEB_API_KEY)
