"""HTTP client for the Google Calendar API v3.

Every call is keyed by the user id; the client asks the token provider for
that user's access token.  The client makes exactly one attempt per call
and classifies failures so the Tool Execution Contract can decide what to
retry:

* 401/403 or a missing refresh token → :class:`IntegrationError`
* timeouts, connection errors, 429 and 5xx → :class:`TransientError`
* any other 4xx → :class:`CalendarAPIError` carrying the status code

API docs: https://developers.google.com/calendar/api/v3/reference
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from frontdesk.config import CALENDAR_BASE_URL
from frontdesk.errors import IntegrationError, TransientError
from frontdesk.services.connections import GoogleTokenProvider, provider_label
from frontdesk.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 15.0
CALENDAR_ID = "primary"


class CalendarAPIError(Exception):
    """A non-retryable, non-auth error response from the calendar API."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class CalendarProvider(Protocol):
    """The calendar collaborator the Tool Execution Contract drives."""

    def free_busy(
        self, user_id: str, start_iso: str, end_iso: str, timezone: str,
    ) -> list[dict[str, str]]: ...

    def create_event(self, user_id: str, *, event_id: str, summary: str, description: str,
                     start_iso: str, end_iso: str, timezone: str,
                     attendees: list[str]) -> dict[str, Any]: ...

    def update_event(self, user_id: str, event_id: str, *, summary: str, description: str,
                     start_iso: str, end_iso: str, timezone: str, attendees: list[str],
                     notify: bool = True) -> dict[str, Any]: ...

    def cancel_event(self, user_id: str, event_id: str, reason: str = "") -> dict[str, Any]: ...

    def get_event(self, user_id: str, event_id: str) -> dict[str, Any]: ...

    def find_events(self, user_id: str, start_iso: str, end_iso: str) -> list[dict[str, Any]]: ...


class GoogleCalendarClient:
    """Thin wrapper around the Calendar v3 REST API for the primary calendar."""

    def __init__(
        self,
        tokens: GoogleTokenProvider,
        base_url: str | None = None,
        *,
        http_client: httpx.Client | None = None,
    ):
        self._tokens = tokens
        self._base_url = base_url or CALENDAR_BASE_URL
        self._client = http_client or httpx.Client(
            base_url=self._base_url,
            headers={"Content-Type": "application/json"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        user_id: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute one HTTP request and classify the outcome."""
        token = self._tokens.access_token(user_id, "calendar")
        operation = f"{method} {path.split('/')[1] if '/' in path else path}"
        try:
            with metrics.timed("calendar", operation):
                response = self._client.request(
                    method,
                    path,
                    params=params,
                    json=json_body,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except (httpx.TimeoutException, httpx.ConnectError) as exc:
            logger.warning("Calendar %s %s failed: %s", method, path, type(exc).__name__)
            raise TransientError(f"calendar {type(exc).__name__}") from exc

        status = response.status_code
        if status in (401, 403):
            self._tokens.invalidate(user_id, "calendar")
            raise IntegrationError(provider_label("calendar"), f"http_{status}")
        if status == 429 or status >= 500:
            raise TransientError(f"calendar server error {status}")
        if status >= 400:
            raise CalendarAPIError(
                f"Client error {status}: {response.text}", status_code=status,
            )
        if status == 204 or not response.content:
            return {}
        return response.json()

    # ── Public API methods ───────────────────────────────────────────

    def free_busy(
        self, user_id: str, start_iso: str, end_iso: str, timezone: str,
    ) -> list[dict[str, str]]:
        """Return busy windows (``{"start", "end"}``) on the primary calendar."""
        data = self._request(
            "POST",
            "/freeBusy",
            user_id,
            json_body={
                "timeMin": start_iso,
                "timeMax": end_iso,
                "timeZone": timezone,
                "items": [{"id": CALENDAR_ID}],
            },
        )
        return data.get("calendars", {}).get(CALENDAR_ID, {}).get("busy", [])

    def create_event(
        self,
        user_id: str,
        *,
        event_id: str,
        summary: str,
        description: str,
        start_iso: str,
        end_iso: str,
        timezone: str,
        attendees: list[str],
    ) -> dict[str, Any]:
        """Insert an event with a Meet link.

        *event_id* is chosen by the caller so that a replayed insert is
        idempotent: Google answers 409 and the existing event is returned.
        """
        body = {
            "id": event_id,
            "summary": summary,
            "description": description,
            "start": {"dateTime": start_iso, "timeZone": timezone},
            "end": {"dateTime": end_iso, "timeZone": timezone},
            "attendees": [{"email": email} for email in attendees],
            "conferenceData": {"createRequest": {"requestId": event_id}},
        }
        try:
            return self._request(
                "POST",
                f"/calendars/{CALENDAR_ID}/events",
                user_id,
                params={"conferenceDataVersion": 1, "sendUpdates": "all"},
                json_body=body,
            )
        except CalendarAPIError as exc:
            if exc.status_code != 409:
                raise
            logger.info("Event %s already exists; treating insert as replayed", event_id)
            return self.get_event(user_id, event_id)

    def update_event(
        self,
        user_id: str,
        event_id: str,
        *,
        summary: str,
        description: str,
        start_iso: str,
        end_iso: str,
        timezone: str,
        attendees: list[str],
        notify: bool = True,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start_iso, "timeZone": timezone},
            "end": {"dateTime": end_iso, "timeZone": timezone},
        }
        if attendees:
            body["attendees"] = [{"email": email} for email in attendees]
        return self._request(
            "PATCH",
            f"/calendars/{CALENDAR_ID}/events/{event_id}",
            user_id,
            params={
                "conferenceDataVersion": 1,
                "sendUpdates": "all" if notify else "none",
            },
            json_body=body,
        )

    def cancel_event(self, user_id: str, event_id: str, reason: str = "") -> dict[str, Any]:
        """Mark an event cancelled and notify attendees."""
        body: dict[str, Any] = {"status": "cancelled"}
        if reason:
            body["description"] = reason
        return self._request(
            "PATCH",
            f"/calendars/{CALENDAR_ID}/events/{event_id}",
            user_id,
            params={"sendUpdates": "all"},
            json_body=body,
        )

    def get_event(self, user_id: str, event_id: str) -> dict[str, Any]:
        return self._request("GET", f"/calendars/{CALENDAR_ID}/events/{event_id}", user_id)

    def find_events(self, user_id: str, start_iso: str, end_iso: str) -> list[dict[str, Any]]:
        """List confirmed single events overlapping ``[start_iso, end_iso)``."""
        data = self._request(
            "GET",
            f"/calendars/{CALENDAR_ID}/events",
            user_id,
            params={
                "timeMin": start_iso,
                "timeMax": end_iso,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return [e for e in data.get("items", []) if e.get("status") != "cancelled"]
