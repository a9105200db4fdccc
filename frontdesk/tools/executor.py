"""Tool Execution Contract: dispatch a validated request to the calendar.

:meth:`ToolExecutor.execute` is a function of ``(context, request)`` only.
The user identity arrives in the :class:`~frontdesk.models.ToolContext`;
nothing is captured from a session.  Provider failures never escape as
exceptions: they come back as a :class:`~frontdesk.models.ToolCallResult`
with a typed :class:`~frontdesk.errors.ErrorKind` and a user-safe message.

Error mapping:

=====================================  =============================
provider failure                       kind
=====================================  =============================
missing/revoked credential, 401, 403   ``integration_not_connected``
timeout, connect error, 429, 5xx       ``transient`` (retried once)
400, 404, 409, 422, bad arguments      ``validation``
anything else                          ``unknown``
=====================================  =============================
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from frontdesk.config import BUSINESS_HOURS_END, BUSINESS_HOURS_START, CANONICAL_TIMEZONE
from frontdesk.errors import (
    ErrorKind,
    IntegrationError,
    TransientError,
    UnknownError,
    ValidationError,
)
from frontdesk.models import ToolCallResult, ToolContext
from frontdesk.services.calendar_client import CalendarAPIError, CalendarProvider
from frontdesk.timeutil import day_bounds, meeting_end, now_pt, parse_iso, to_iso
from frontdesk.tools.contract import (
    AvailabilityRequest,
    BookRequest,
    CancelRequest,
    RescheduleRequest,
    ToolCallRequest,
)

logger = logging.getLogger(__name__)

VALIDATION_STATUSES = frozenset({400, 404, 409, 422})
TRANSIENT_MESSAGE = (
    "The calendar service didn't respond just now. Please try again in a moment."
)
UNKNOWN_MESSAGE = "Sorry, something went wrong on our side. Please try again."


class ToolExecutor:
    """Issues calendar operations and maps their failures to typed kinds."""

    def __init__(
        self,
        calendar: CalendarProvider,
        *,
        max_attempts: int = 2,
        clock: Callable[[], datetime] = now_pt,
    ):
        self._calendar = calendar
        self._max_attempts = max_attempts
        self._clock = clock
        # Destructive calls go through one at a time so each sees the
        # calendar as left by the previous one.
        self._mutation_lock = threading.Lock()

    # ── Public API ───────────────────────────────────────────────────

    def execute(self, context: ToolContext, request: ToolCallRequest) -> ToolCallResult:
        handler = {
            "availability": self._availability,
            "book": self._book,
            "reschedule": self._reschedule,
            "cancel": self._cancel,
        }[request.kind]

        # The insert id is fixed before the first attempt so a retried
        # insert replays instead of duplicating.
        event_id = uuid.uuid4().hex if request.kind == "book" else ""
        logger.info("Executing %s for user %s", request.kind, context.user_id)
        if request.mutating:
            with self._mutation_lock:
                return self._run(lambda: handler(context, request, event_id), request.kind)
        return self._run(lambda: handler(context, request, event_id), request.kind)

    def find_events(self, context: ToolContext, start_iso: str, end_iso: str) -> ToolCallResult:
        """Look up events overlapping a window (used to identify a cancel target)."""

        def lookup() -> dict[str, Any]:
            events = self._calendar.find_events(context.user_id, start_iso, end_iso)
            return {"events": [normalize_event(e) for e in events]}

        return self._run(lookup, "find_events")

    # ── Retry + error mapping ────────────────────────────────────────

    def _run(self, call: Callable[[], dict[str, Any]], operation: str) -> ToolCallResult:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return ToolCallResult.ok(call())
            except TransientError as exc:
                logger.warning(
                    "%s attempt %d/%d failed transiently: %s",
                    operation, attempt, self._max_attempts, exc,
                )
                if attempt == self._max_attempts:
                    return ToolCallResult.failed(ErrorKind.TRANSIENT, TRANSIENT_MESSAGE)
            except IntegrationError as exc:
                logger.info("%s blocked: %s", operation, exc)
                return ToolCallResult.failed(ErrorKind.INTEGRATION_NOT_CONNECTED, exc.user_message)
            except ValidationError as exc:
                return ToolCallResult.failed(ErrorKind.VALIDATION, exc.user_message)
            except CalendarAPIError as exc:
                if exc.status_code in VALIDATION_STATUSES:
                    logger.info("%s rejected by calendar: %s", operation, exc)
                    return ToolCallResult.failed(
                        ErrorKind.VALIDATION, _rejection_message(exc.status_code),
                    )
                return _unknown(operation, exc)
            except Exception as exc:
                return _unknown(operation, exc)
        return ToolCallResult.failed(ErrorKind.TRANSIENT, TRANSIENT_MESSAGE)

    # ── Operations ───────────────────────────────────────────────────

    def _availability(
        self, context: ToolContext, request: AvailabilityRequest, _event_id: str,
    ) -> dict[str, Any]:
        if request.windows:
            starts = [parse_iso(w) for w in request.windows]
            busy = self._busy(context, min(starts), meeting_end(max(starts)))
            free, taken = [], []
            for start in starts:
                window = {"start": to_iso(start), "end": to_iso(meeting_end(start))}
                (taken if _overlaps(start, meeting_end(start), busy) else free).append(window)
            return {"windows": free, "busy": taken}

        range_start = parse_iso(request.range_start)
        range_end = parse_iso(request.range_end)
        busy = self._busy(context, range_start, range_end)
        return {
            "windows": suggest_windows(
                range_start, range_end, busy,
                limit=request.max_suggestions, not_before=self._clock(),
            ),
            "busy": [],
        }

    def _book(self, context: ToolContext, request: BookRequest, event_id: str) -> dict[str, Any]:
        event = self._calendar.create_event(
            context.user_id,
            event_id=event_id,
            summary=request.title,
            description=request.description,
            start_iso=request.start_time,
            end_iso=request.end_time,
            timezone=CANONICAL_TIMEZONE,
            attendees=[a.email for a in request.attendees],
        )
        return normalize_event(event, fallback_start=request.start_time)

    def _reschedule(
        self, context: ToolContext, request: RescheduleRequest, _event_id: str,
    ) -> dict[str, Any]:
        event = self._calendar.update_event(
            context.user_id,
            request.event_id,
            summary=request.title,
            description=request.description,
            start_iso=request.new_start_time,
            end_iso=request.new_end_time,
            timezone=CANONICAL_TIMEZONE,
            attendees=[a.email for a in request.attendees],
            notify=request.notify_attendees,
        )
        return normalize_event(event, fallback_start=request.new_start_time)

    def _cancel(self, context: ToolContext, request: CancelRequest, _event_id: str) -> dict[str, Any]:
        event = self._calendar.cancel_event(context.user_id, request.event_id, request.reason)
        payload = normalize_event(event, fallback_start=request.meeting_time)
        payload["event_id"] = payload["event_id"] or request.event_id
        payload["status"] = "cancelled"
        return payload

    def _busy(
        self, context: ToolContext, start: datetime, end: datetime,
    ) -> list[tuple[datetime, datetime]]:
        raw = self._calendar.free_busy(
            context.user_id, to_iso(start), to_iso(end), CANONICAL_TIMEZONE,
        )
        return [(parse_iso(b["start"]), parse_iso(b["end"])) for b in raw]


# ── Helpers ──────────────────────────────────────────────────────────


def normalize_event(event: dict[str, Any], fallback_start: str = "") -> dict[str, Any]:
    """Reduce a provider event to ``event_id``, ``start``, ``end``, ``join_link``."""
    join_link = event.get("hangoutLink") or ""
    if not join_link:
        entry_points = event.get("conferenceData", {}).get("entryPoints") or []
        if entry_points:
            join_link = entry_points[0].get("uri", "")

    start = event.get("start", {}).get("dateTime") or fallback_start
    end = event.get("end", {}).get("dateTime") or ""
    if start:
        start = to_iso(parse_iso(start))
        end = to_iso(parse_iso(end)) if end else to_iso(meeting_end(parse_iso(start)))
    return {
        "event_id": event.get("id", ""),
        "summary": event.get("summary", ""),
        "start": start,
        "end": end,
        "join_link": join_link,
        "status": event.get("status", ""),
    }


def suggest_windows(
    range_start: datetime,
    range_end: datetime,
    busy: list[tuple[datetime, datetime]],
    *,
    limit: int = 3,
    not_before: datetime | None = None,
) -> list[dict[str, str]]:
    """Pick up to *limit* free 60-minute windows on the hour within business hours."""
    windows: list[dict[str, str]] = []
    day: date = range_start.date()
    while day <= range_end.date() and len(windows) < limit:
        open_at, close_at = day_bounds(day, BUSINESS_HOURS_START, BUSINESS_HOURS_END)
        slot = open_at
        while meeting_end(slot) <= close_at and len(windows) < limit:
            end = meeting_end(slot)
            if (
                slot >= range_start
                and end <= range_end
                and (not_before is None or slot > not_before)
                and not _overlaps(slot, end, busy)
            ):
                windows.append({"start": to_iso(slot), "end": to_iso(end)})
            slot += timedelta(hours=1)
        day += timedelta(days=1)
    return windows


def _overlaps(start: datetime, end: datetime, busy: list[tuple[datetime, datetime]]) -> bool:
    return any(b_start < end and start < b_end for b_start, b_end in busy)


def _rejection_message(status: int | None) -> str:
    if status == 404:
        return "I couldn't find that event on your calendar. Please check which meeting you mean."
    if status == 409:
        return "That change conflicts with the calendar's current state. Please pick another time."
    return "The calendar didn't accept those details. Please check the time and attendees and try again."


def _unknown(operation: str, exc: Exception) -> ToolCallResult:
    """Log *exc* as an :class:`UnknownError` and return the generic failure."""
    error = UnknownError(f"{operation} failed unexpectedly ({type(exc).__name__})")
    logger.error("%s", error, exc_info=exc)
    return ToolCallResult.failed(error.kind, UNKNOWN_MESSAGE)
