"""Scheduling State Machine: confirmation-gated calendar actions.

States::

    CLASSIFYING_SUBINTENT → AWAITING_DETAILS → AWAITING_CONFIRMATION
                                             → EXECUTING → REPORTED

A destructive request (book, reschedule, cancel) is stored as ``pending``
together with the exact proposal text that restated it.  It executes only
when the *current* message is an explicit affirmative AND the assistant
message immediately before it is that same proposal.  Everything else
re-proposes or restates; consent is never inferred.

Availability never mutates, so it runs as soon as the slot is understood.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Any

from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field, field_validator

from frontdesk.errors import ValidationError
from frontdesk.llm import build_history_context, parse_json_reply
from frontdesk.models import ConversationTurn, TimeSlotUnderstanding, ToolContext
from frontdesk.prompts import SUBINTENT_PROMPT
from frontdesk.services.metrics import metrics
from frontdesk.slots import SlotParser
from frontdesk.timeutil import day_bounds, format_pt, meeting_end, now_pt, parse_date, parse_iso, to_iso
from frontdesk.tools.contract import (
    BookRequest,
    CancelRequest,
    RescheduleRequest,
    ToolCallRequest,
    build_request,
    validate_email,
)
from frontdesk.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


class SchedulingState(StrEnum):
    CLASSIFYING_SUBINTENT = "classifying_subintent"
    AWAITING_DETAILS = "awaiting_details"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    REPORTED = "reported"


class SubIntent(StrEnum):
    AVAILABILITY = "availability"
    SCHEDULE = "schedule"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    UNKNOWN = "unknown"


# ── Replies ──────────────────────────────────────────────────────────

ASK_SUBINTENT = (
    "I can check availability, schedule a new meeting, or reschedule or cancel "
    "an existing one. Which would you like?"
)
ASK_AVAILABILITY_TIME = (
    'Which day or time should I check? For example "next Tuesday at 9am" or '
    '"Friday". All times are in PT.'
)
ASK_MEETING_TIME = (
    "What day and time would you like to meet? Please give a specific date and "
    "time in PT, for example \"next Tuesday at 9am\"."
)
ASK_NEW_TIME = "What new day and time would you like for the meeting? All times are in PT."
ASK_CANCEL_EVENT = (
    "To cancel, I need to know exactly which meeting you mean. Please tell me its "
    "date and time (PT) or its event ID. I'll restate the cancellation, and I'll "
    'only go ahead once you reply "yes".'
)
ASK_RESCHEDULE_EVENT = (
    "To reschedule, I need to know exactly which meeting you mean. Please tell me "
    "its event ID. I'll restate the change, and I'll only go ahead once you "
    'reply "yes".'
)
PAST_TIME = "That time has already passed. Which future day and time (PT) would you like?"
DECLINED = "No problem, I won't make that change. Is there anything else I can help with?"
CONFIRM_SUFFIX = ' Reply "yes" to confirm.'


# ── Confirmation vocabulary ──────────────────────────────────────────

_WORD_RE = re.compile(r"[a-z']+")
_NOT_WORD_RE = re.compile(r"[^a-z']+")

AFFIRMATIVE_WORDS = frozenset({
    "yes", "yeah", "yep", "yup", "y", "sure", "ok", "okay", "confirm",
    "confirmed", "correct", "absolutely", "definitely", "affirmative",
})
AFFIRMATIVE_PHRASES = ("go ahead", "do it", "book it", "sounds good", "that works", "please do")
NEGATIVE_WORDS = frozenset({"no", "nope", "nah", "stop"})
NEGATIVE_PHRASES = ("never mind", "don't", "dont", "do not")
# Words that may accompany a yes/no without changing its meaning.
FILLERS = frozenset({"please", "thanks", "thank", "you", "so", "much", "that's", "fine", "great", "perfect"})


def _words(text: str, phrases: tuple[str, ...], marker: str) -> list[str]:
    # Punctuation becomes spaces so "Don't." and "never mind!" still match.
    words = _NOT_WORD_RE.sub(" ", text.lower().replace("’", "'"))
    lowered = f" {words} "
    for phrase in phrases:
        lowered = lowered.replace(f" {phrase} ", f" {marker} ")
    return _WORD_RE.findall(lowered)


def is_affirmative(text: str) -> bool:
    """True only for a bare, unhedged yes ("Yes", "ok, go ahead", "yes please")."""
    words = _words(text, AFFIRMATIVE_PHRASES, "yes")
    return (
        bool(words)
        and all(w in AFFIRMATIVE_WORDS or w in FILLERS for w in words)
        and any(w in AFFIRMATIVE_WORDS for w in words)
    )


def is_negative(text: str) -> bool:
    words = _words(text, NEGATIVE_PHRASES, "no")
    return (
        bool(words)
        and all(w in NEGATIVE_WORDS or w in FILLERS for w in words)
        and any(w in NEGATIVE_WORDS for w in words)
    )


def is_confirmation_reply(text: str) -> bool:
    return is_affirmative(text) or is_negative(text)


# ── Session ──────────────────────────────────────────────────────────


class SchedulingDetails(BaseModel):
    """What the user has told us so far about the scheduling action."""

    sub_intent: SubIntent = SubIntent.UNKNOWN
    event_id: str = ""
    guest_name: str = ""
    guest_email: str = ""
    company: str = ""
    agenda: str = ""
    reason: str = ""

    @field_validator("sub_intent", mode="before")
    @classmethod
    def _known_sub_intent(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        value = value.strip().lower()
        return value if value in {s.value for s in SubIntent} else SubIntent.UNKNOWN

    @field_validator("event_id", "guest_name", "guest_email", "company", "agenda", "reason")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    def merged_with(self, newer: SchedulingDetails) -> SchedulingDetails:
        """Overlay the non-empty fields of *newer*."""
        updates = {
            name: value
            for name, value in newer.model_dump().items()
            if value and value != SubIntent.UNKNOWN
        }
        return self.model_copy(update=updates)


class SchedulingSession(BaseModel):
    """Per-user scheduling progress, stored in the conversation checkpoint."""

    state: SchedulingState = SchedulingState.CLASSIFYING_SUBINTENT
    details: SchedulingDetails = Field(default_factory=SchedulingDetails)
    slot: TimeSlotUnderstanding = Field(default_factory=TimeSlotUnderstanding.not_understood)
    pending: ToolCallRequest | None = None
    proposal: str = ""
    # event_id / start / join_link of the last meeting booked or moved here
    last_event: dict[str, str] = Field(default_factory=dict)

    @property
    def sub_intent(self) -> SubIntent:
        return self.details.sub_intent

    def fresh(self) -> SchedulingSession:
        """A new session that remembers only the last event."""
        return SchedulingSession(last_event=dict(self.last_event))


# ── Sub-intent extraction ────────────────────────────────────────────


class SubIntentExtractor:
    """Reads the scheduling sub-intent and any stated details from a message."""

    def __init__(self, llm: Any, *, max_turns: int = 3):
        self._llm = llm
        self._max_turns = max_turns

    def extract(self, turn: ConversationTurn) -> SchedulingDetails:
        prompt = SUBINTENT_PROMPT.format(
            context=build_history_context(turn.history, self._max_turns),
            message=turn.text,
        )
        try:
            with metrics.timed("anthropic", "subintent_extract"):
                response = self._llm.invoke([HumanMessage(content=prompt)])
            return parse_json_reply(response, SchedulingDetails)
        except Exception as exc:
            logger.warning("Sub-intent extraction failed: %s", exc)
            return SchedulingDetails()


# ── Machine ──────────────────────────────────────────────────────────


class SchedulingMachine:
    """Drives the Tool Execution Contract under the confirmation gate."""

    def __init__(
        self,
        executor: ToolExecutor,
        slot_parser: SlotParser,
        extractor: SubIntentExtractor,
        *,
        clock: Callable[[], datetime] = now_pt,
    ):
        self._executor = executor
        self._slots = slot_parser
        self._extractor = extractor
        self._clock = clock

    def handle(
        self,
        context: ToolContext,
        session: SchedulingSession,
        turn: ConversationTurn,
    ) -> tuple[str, SchedulingSession]:
        """Advance *session* by one user message and return the reply."""
        offered = offered_slot(session)
        if session.state in (SchedulingState.REPORTED, SchedulingState.EXECUTING):
            session = session.fresh()

        if session.pending is not None and session.state == SchedulingState.AWAITING_CONFIRMATION:
            if is_affirmative(turn.text):
                if turn.last_assistant_message() == session.proposal:
                    return self._execute(context, session)
                logger.info("Affirmative without a directly preceding proposal; restating")
                return session.proposal, session
            if is_negative(turn.text):
                logger.info("User declined pending %s", session.pending.kind)
                return DECLINED, session.fresh()

        details = session.details.merged_with(self._extractor.extract(turn))
        if offered is not None and details.sub_intent == SubIntent.UNKNOWN and is_affirmative(turn.text):
            # "Yes" to "Let me know if you'd like me to book it"
            details = details.model_copy(update={"sub_intent": SubIntent.SCHEDULE})
        slot = self._slots.parse(turn.text, now=self._clock())
        if not slot.understood:
            slot = session.slot
            if offered is not None and details.sub_intent == SubIntent.SCHEDULE:
                slot = offered

        if (
            session.pending is not None
            and details == session.details
            and slot == session.slot
        ):
            # Nothing new: ask again with the identical proposal.
            return session.proposal, session

        session = session.model_copy(
            update={"details": details, "slot": slot, "pending": None, "proposal": ""},
        )
        logger.info("Planning %s (slot understood=%s)", details.sub_intent, slot.understood)

        if details.sub_intent == SubIntent.AVAILABILITY:
            return self._availability(context, session)
        if details.sub_intent == SubIntent.SCHEDULE:
            return self._schedule(context, session)
        if details.sub_intent == SubIntent.RESCHEDULE:
            return self._reschedule(context, session)
        if details.sub_intent == SubIntent.CANCEL:
            return self._cancel(context, session)
        return ASK_SUBINTENT, session.model_copy(
            update={"state": SchedulingState.CLASSIFYING_SUBINTENT},
        )

    # ── Sub-intents ──────────────────────────────────────────────────

    def _availability(
        self, context: ToolContext, session: SchedulingSession,
    ) -> tuple[str, SchedulingSession]:
        slot = session.slot
        if not slot.understood:
            return ASK_AVAILABILITY_TIME, _awaiting_details(session)

        if slot.start:
            result = self._executor.execute(
                context, build_request("availability", windows=[slot.start]),
            )
            if not result.success:
                return result.message, session.fresh()
            if result.payload["windows"]:
                reply = (
                    f"Good news: {format_pt(slot.start)} is free. "
                    "Let me know if you'd like me to book it."
                )
                return reply, _reported(session)
            reply, _ = self._suggest_for_day(context, slot.start[:10], busy_start=slot.start)
            # A taken time is not on offer for the next message.
            taken = session.model_copy(update={"slot": TimeSlotUnderstanding.not_understood()})
            return reply, _reported(taken)

        reply, _ = self._suggest_for_day(context, slot.date_only)
        return reply, _reported(session)

    def _schedule(
        self, context: ToolContext, session: SchedulingSession,
    ) -> tuple[str, SchedulingSession]:
        details = session.details
        if details.guest_email:
            error = validate_email(details.guest_email)
            if error:
                return error, _awaiting_details(session)

        start, reply = self._free_start(context, session)
        if not start:
            return reply, _awaiting_details(session)

        attendees = []
        if details.guest_email:
            attendees.append({"name": details.guest_name, "email": details.guest_email})
        try:
            request = build_request(
                "book",
                start_time=start,
                attendees=attendees,
                title=meeting_title(details),
                description=details.agenda[:2000],
            )
        except ValidationError as exc:
            return exc.user_message, _awaiting_details(session)

        guest = f" with {details.guest_name or details.guest_email}" if attendees else ""
        proposal = (
            f"Just to confirm: shall I book a 60-minute meeting{guest} on "
            f"{format_pt(start)}?" + CONFIRM_SUFFIX
        )
        return proposal, _awaiting_confirmation(session, request, proposal)

    def _reschedule(
        self, context: ToolContext, session: SchedulingSession,
    ) -> tuple[str, SchedulingSession]:
        event_id = session.details.event_id or session.last_event.get("event_id", "")
        if not event_id:
            return ASK_RESCHEDULE_EVENT, _awaiting_confirmation(session, None, "")

        start, reply = self._free_start(context, session)
        if not start:
            return reply, _awaiting_details(session)

        try:
            request = build_request(
                "reschedule",
                event_id=event_id,
                new_start_time=start,
                title=meeting_title(session.details),
                description=session.details.agenda[:2000],
            )
        except ValidationError as exc:
            return exc.user_message, _awaiting_details(session)

        proposal = (
            f"Just to confirm: shall I move {_describe_event(event_id, session.last_event)} "
            f"to {format_pt(start)}?" + CONFIRM_SUFFIX
        )
        return proposal, _awaiting_confirmation(session, request, proposal)

    def _cancel(
        self, context: ToolContext, session: SchedulingSession,
    ) -> tuple[str, SchedulingSession]:
        event_id = session.details.event_id
        meeting_time = ""
        if not event_id and session.slot.understood:
            event_id, meeting_time, reply = self._find_single_event(context, session.slot)
            if not event_id:
                return reply, _awaiting_confirmation(session, None, "")
        if not event_id and session.last_event.get("event_id"):
            event_id = session.last_event["event_id"]
            meeting_time = session.last_event.get("start", "")
        if not event_id:
            return ASK_CANCEL_EVENT, _awaiting_confirmation(session, None, "")
        if event_id == session.last_event.get("event_id") and not meeting_time:
            meeting_time = session.last_event.get("start", "")

        try:
            request = build_request(
                "cancel",
                event_id=event_id,
                reason=session.details.reason[:500],
                meeting_time=meeting_time,
            )
        except ValidationError as exc:
            return exc.user_message, _awaiting_confirmation(session, None, "")

        what = (
            f"the meeting on {format_pt(meeting_time)} (event {event_id})"
            if meeting_time else f"meeting {event_id}"
        )
        proposal = f"Just to confirm: shall I cancel {what}?" + CONFIRM_SUFFIX
        return proposal, _awaiting_confirmation(session, request, proposal)

    # ── Execution ────────────────────────────────────────────────────

    def _execute(
        self, context: ToolContext, session: SchedulingSession,
    ) -> tuple[str, SchedulingSession]:
        request = session.pending
        if request is None:
            logger.warning("Confirmation arrived with nothing pending; restating")
            return session.proposal or ASK_SUBINTENT, session.fresh()
        session = session.model_copy(update={"state": SchedulingState.EXECUTING})
        result = self._executor.execute(context, request)
        if not result.success:
            logger.info("%s failed with %s", request.kind, result.error)
            return result.message, session.fresh()

        payload = result.payload
        last_event = dict(session.last_event)
        if isinstance(request, BookRequest | RescheduleRequest):
            last_event = {
                "event_id": payload.get("event_id", ""),
                "start": payload.get("start", ""),
                "join_link": payload.get("join_link", ""),
            }
        elif isinstance(request, CancelRequest) and last_event.get("event_id") == request.event_id:
            last_event = {}

        reply = report(request, payload)
        return reply, session.model_copy(update={
            "state": SchedulingState.REPORTED,
            "pending": None,
            "proposal": "",
            "last_event": last_event,
        })

    # ── Helpers ──────────────────────────────────────────────────────

    def _free_start(self, context: ToolContext, session: SchedulingSession) -> tuple[str, str]:
        """Return ``(start, "")`` for a usable free start, else ``("", reply)``."""
        slot = session.slot
        if not slot.understood:
            return "", ASK_NEW_TIME if session.sub_intent == SubIntent.RESCHEDULE else ASK_MEETING_TIME
        if not slot.start:
            reply, _ = self._suggest_for_day(context, slot.date_only)
            return "", reply
        if parse_iso(slot.start) <= self._clock():
            return "", PAST_TIME

        result = self._executor.execute(
            context, build_request("availability", windows=[slot.start]),
        )
        if not result.success:
            return "", result.message
        if not result.payload["windows"]:
            reply, _ = self._suggest_for_day(context, slot.start[:10], busy_start=slot.start)
            return "", reply
        return slot.start, ""

    def _suggest_for_day(
        self, context: ToolContext, day: str, *, busy_start: str = "",
    ) -> tuple[str, list[dict[str, str]]]:
        """Reply with up to three open windows on *day* (a ``YYYY-MM-DD`` date)."""
        open_at, close_at = day_bounds(parse_date(day), 0, 23)
        close_at = meeting_end(close_at)
        result = self._executor.execute(
            context,
            build_request("availability", range_start=to_iso(open_at), range_end=to_iso(close_at)),
        )
        if not result.success:
            return result.message, []

        windows = result.payload["windows"]
        intro = f"{format_pt(busy_start)} is already taken. " if busy_start else ""
        if not windows:
            return (
                f"{intro}I don't see any open times on {parse_date(day):%a %d %b %Y}. "
                "Could you suggest another day?"
            ), []
        lines = [f"{intro}Here are some open times:"]
        lines.extend(f"  • {format_pt(w['start'])}" for w in windows)
        lines.append("Which one works for you?")
        return "\n".join(lines), windows

    def _find_single_event(
        self, context: ToolContext, slot: TimeSlotUnderstanding,
    ) -> tuple[str, str, str]:
        """Resolve a cancel target from a time; ``(event_id, start, reply)``."""
        if slot.start:
            start = parse_iso(slot.start)
            end = meeting_end(start)
        else:
            start, last_hour = day_bounds(parse_date(slot.date_only), 0, 23)
            end = meeting_end(last_hour)
        result = self._executor.find_events(context, to_iso(start), to_iso(end))
        if not result.success:
            return "", "", result.message

        events = result.payload["events"]
        if len(events) == 1:
            return events[0]["event_id"], events[0]["start"], ""
        if not events:
            return "", "", (
                f"I couldn't find a meeting at {format_pt(start) if slot.start else slot.date_only}. "
                + ASK_CANCEL_EVENT
            )
        lines = ["I found more than one meeting then:"]
        lines.extend(
            f"  • {e['summary'] or 'Meeting'} on {format_pt(e['start'])} (event {e['event_id']})"
            for e in events if e["start"]
        )
        lines.append(
            'Which one should I cancel? Tell me its event ID, and I\'ll only go ahead once you reply "yes".'
        )
        return "", "", "\n".join(lines)


# ── Module helpers ───────────────────────────────────────────────────


def meeting_title(details: SchedulingDetails) -> str:
    """``Meeting-<company>-<guest>``, omitting whatever is unknown."""
    parts = ["Meeting", details.company, details.guest_name]
    return "-".join(p for p in parts if p)[:120]


def report(request: ToolCallRequest, payload: dict[str, Any]) -> str:
    """Final reply after a successful mutation: PT time plus join link."""
    start = payload.get("start", "")
    link = payload.get("join_link", "")
    if isinstance(request, CancelRequest):
        when = f" on {format_pt(start)}" if start else ""
        return f"Done. Your meeting{when} has been cancelled and attendees have been notified."

    verb = "booked" if isinstance(request, BookRequest) else "moved"
    reply = f"All set! Your meeting is {verb} for {format_pt(start)}."
    if link:
        reply += f" Join link: {link}"
    return reply


def _describe_event(event_id: str, last_event: dict[str, str]) -> str:
    if last_event.get("event_id") == event_id and last_event.get("start"):
        return f"your meeting on {format_pt(last_event['start'])}"
    return f"meeting {event_id}"


def offered_slot(session: SchedulingSession) -> TimeSlotUnderstanding | None:
    """The free time an availability answer just offered to book, if any."""
    if (
        session.state == SchedulingState.REPORTED
        and session.sub_intent == SubIntent.AVAILABILITY
        and session.slot.start
    ):
        return session.slot
    return None


def _awaiting_details(session: SchedulingSession) -> SchedulingSession:
    return session.model_copy(update={
        "state": SchedulingState.AWAITING_DETAILS, "pending": None, "proposal": "",
    })


def _awaiting_confirmation(
    session: SchedulingSession, request: ToolCallRequest | None, proposal: str,
) -> SchedulingSession:
    return session.model_copy(update={
        "state": SchedulingState.AWAITING_CONFIRMATION, "pending": request, "proposal": proposal,
    })


def _reported(session: SchedulingSession) -> SchedulingSession:
    return session.model_copy(update={
        "state": SchedulingState.REPORTED, "pending": None, "proposal": "",
    })
