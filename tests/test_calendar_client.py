"""Tests for the Google Calendar client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest

from frontdesk.errors import IntegrationError, TransientError
from frontdesk.services.calendar_client import CalendarAPIError, GoogleCalendarClient


@pytest.fixture
def tokens():
    provider = MagicMock()
    provider.access_token.return_value = "access-123"
    return provider


@pytest.fixture
def client(tokens):
    return GoogleCalendarClient(tokens, base_url="https://calendar.test/v3")


class TestRequestClassification:
    def test_sends_bearer_token_for_user(self, client, tokens, mock_response):
        with patch.object(client._client, "request", return_value=mock_response({"items": []})) as req:
            client.find_events("user-1", "2026-10-27T00:00:00-07:00", "2026-10-28T00:00:00-07:00")
        tokens.access_token.assert_called_once_with("user-1", "calendar")
        assert req.call_args.kwargs["headers"] == {"Authorization": "Bearer access-123"}

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_errors_raise_integration_error_and_drop_token(
        self, client, tokens, mock_response, status,
    ):
        with patch.object(client._client, "request", return_value=mock_response({}, status)):
            with pytest.raises(IntegrationError) as exc_info:
                client.get_event("user-1", "evt1")
        assert exc_info.value.provider == "Google Calendar"
        tokens.invalidate.assert_called_once_with("user-1", "calendar")

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_server_errors_are_transient(self, client, mock_response, status):
        with patch.object(client._client, "request", return_value=mock_response({}, status)):
            with pytest.raises(TransientError):
                client.get_event("user-1", "evt1")

    def test_timeout_is_transient(self, client):
        with patch.object(client._client, "request", side_effect=httpx.ReadTimeout("slow")):
            with pytest.raises(TransientError):
                client.get_event("user-1", "evt1")

    def test_other_client_errors_keep_status(self, client, mock_response):
        with patch.object(client._client, "request", return_value=mock_response({"error": "x"}, 404)):
            with pytest.raises(CalendarAPIError) as exc_info:
                client.get_event("user-1", "evt1")
        assert exc_info.value.status_code == 404

    def test_single_attempt_per_call(self, client, mock_response):
        with patch.object(client._client, "request", return_value=mock_response({}, 500)) as req:
            with pytest.raises(TransientError):
                client.get_event("user-1", "evt1")
        assert req.call_count == 1


class TestFreeBusy:
    def test_returns_primary_busy_windows(self, client, mock_response):
        busy = [{"start": "2026-10-27T16:00:00Z", "end": "2026-10-27T17:00:00Z"}]
        data = {"calendars": {"primary": {"busy": busy}}}
        with patch.object(client._client, "request", return_value=mock_response(data)) as req:
            result = client.free_busy(
                "user-1", "2026-10-27T00:00:00-07:00", "2026-10-28T00:00:00-07:00", "America/Los_Angeles",
            )
        assert result == busy
        body = req.call_args.kwargs["json"]
        assert body["timeZone"] == "America/Los_Angeles"
        assert body["items"] == [{"id": "primary"}]


class TestCreateEvent:
    def _create(self, client):
        return client.create_event(
            "user-1",
            event_id="abc123",
            summary="Meeting-Acme",
            description="",
            start_iso="2026-10-27T09:00:00-07:00",
            end_iso="2026-10-27T10:00:00-07:00",
            timezone="America/Los_Angeles",
            attendees=["jane@example.com"],
        )

    def test_requests_meet_link_and_notifications(self, client, mock_response):
        with patch.object(client._client, "request", return_value=mock_response({"id": "abc123"})) as req:
            assert self._create(client)["id"] == "abc123"
        kwargs = req.call_args.kwargs
        assert kwargs["params"] == {"conferenceDataVersion": 1, "sendUpdates": "all"}
        assert kwargs["json"]["conferenceData"]["createRequest"]["requestId"] == "abc123"
        assert kwargs["json"]["attendees"] == [{"email": "jane@example.com"}]

    def test_conflict_returns_existing_event(self, client, mock_response):
        existing = {"id": "abc123", "hangoutLink": "https://meet.google.com/x"}
        with patch.object(
            client._client,
            "request",
            side_effect=[mock_response({}, 409), mock_response(existing)],
        ) as req:
            assert self._create(client) == existing
        assert req.call_args_list[1].args[:2] == ("GET", "/calendars/primary/events/abc123")


class TestCancelAndFind:
    def test_cancel_patches_status(self, client, mock_response):
        with patch.object(client._client, "request", return_value=mock_response({"id": "e1"})) as req:
            client.cancel_event("user-1", "e1", "no longer needed")
        assert req.call_args.args[:2] == ("PATCH", "/calendars/primary/events/e1")
        assert req.call_args.kwargs["json"]["status"] == "cancelled"

    def test_find_skips_cancelled_events(self, client, mock_response):
        data = {"items": [{"id": "a", "status": "confirmed"}, {"id": "b", "status": "cancelled"}]}
        with patch.object(client._client, "request", return_value=mock_response(data)):
            events = client.find_events("user-1", "2026-10-27T00:00:00-07:00", "2026-10-28T00:00:00-07:00")
        assert [e["id"] for e in events] == ["a"]
