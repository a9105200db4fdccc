"""Tool Execution Contract: the requests the scheduling machine may issue.

Each calendar operation is one member of a discriminated union keyed on
``kind``.  Members carry only their own fields and validate them at
construction: ISO-8601 timestamps (normalized to PT), email-shaped attendee
identities and a fixed 60-minute meeting length (the end time is always
derived, never supplied).

Use :func:`build_request` to construct a request from loose arguments; it
turns pydantic's errors into a user-safe :class:`~frontdesk.errors.ValidationError`.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from frontdesk.errors import ValidationError
from frontdesk.timeutil import meeting_end, parse_iso, to_iso

# RFC 5322-ish; good enough for real-world addresses.
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

MUTATING_KINDS = frozenset({"book", "reschedule", "cancel"})


def validate_email(email: str) -> str | None:
    """Return an error message if *email* looks invalid, else ``None``."""
    if not email or not email.strip():
        return "No email address was provided. Please share the guest's email address."
    email = email.strip()
    if not _EMAIL_RE.match(email):
        return (
            f'"{email}" does not look like a valid email address. '
            "Please double-check it and send a corrected email."
        )
    return None


def _normalize_timestamp(value: str) -> str:
    try:
        return to_iso(parse_iso(value))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f'"{value}" is not a valid ISO-8601 date-time'
        ) from exc


class _Request(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def mutating(self) -> bool:
        return self.kind in MUTATING_KINDS  # type: ignore[attr-defined]


class Attendee(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    email: str

    @field_validator("email")
    @classmethod
    def _email_shape(cls, value: str) -> str:
        error = validate_email(value)
        if error:
            raise ValueError(error)
        return value.strip().lower()


class AvailabilityRequest(_Request):
    """Check candidate 60-minute windows, or suggest windows in a range.

    With ``windows`` empty, ``range_start``/``range_end`` bound the search
    for up to ``max_suggestions`` free windows.
    """

    kind: Literal["availability"] = "availability"
    windows: list[str] = Field(default_factory=list)
    range_start: str = ""
    range_end: str = ""
    max_suggestions: int = Field(default=3, ge=1, le=10)

    @field_validator("windows")
    @classmethod
    def _windows_iso(cls, value: list[str]) -> list[str]:
        return [_normalize_timestamp(v) for v in value]

    @field_validator("range_start", "range_end")
    @classmethod
    def _range_iso(cls, value: str) -> str:
        return _normalize_timestamp(value) if value else ""

    @model_validator(mode="after")
    def _has_something_to_check(self) -> AvailabilityRequest:
        if not self.windows and not (self.range_start and self.range_end):
            raise ValueError("availability needs candidate windows or a search range")
        if (
            self.range_start and self.range_end
            and parse_iso(self.range_end) <= parse_iso(self.range_start)
        ):
            raise ValueError("availability range must end after it starts")
        return self


class BookRequest(_Request):
    """Create a 60-minute meeting at a confirmed PT start time."""

    kind: Literal["book"] = "book"
    start_time: str
    attendees: list[Attendee] = Field(default_factory=list)
    title: str = Field(default="Meeting", min_length=3, max_length=120)
    description: str = Field(default="", max_length=2000)

    @field_validator("start_time")
    @classmethod
    def _start_iso(cls, value: str) -> str:
        return _normalize_timestamp(value)

    @property
    def end_time(self) -> str:
        return to_iso(meeting_end(parse_iso(self.start_time)))


class RescheduleRequest(_Request):
    """Move an existing event to a new 60-minute slot."""

    kind: Literal["reschedule"] = "reschedule"
    event_id: str = Field(min_length=1)
    new_start_time: str
    attendees: list[Attendee] = Field(default_factory=list)
    title: str = Field(default="Meeting", min_length=3, max_length=120)
    description: str = Field(default="", max_length=2000)
    notify_attendees: bool = True

    @field_validator("new_start_time")
    @classmethod
    def _start_iso(cls, value: str) -> str:
        return _normalize_timestamp(value)

    @property
    def new_end_time(self) -> str:
        return to_iso(meeting_end(parse_iso(self.new_start_time)))


class CancelRequest(_Request):
    """Cancel an existing event.  ``meeting_time`` is echoed in reports."""

    kind: Literal["cancel"] = "cancel"
    event_id: str = Field(min_length=1)
    reason: str = Field(default="", max_length=500)
    meeting_time: str = ""

    @field_validator("meeting_time")
    @classmethod
    def _meeting_time_iso(cls, value: str) -> str:
        return _normalize_timestamp(value) if value else ""


ToolCallRequest = Annotated[
    AvailabilityRequest | BookRequest | RescheduleRequest | CancelRequest,
    Field(discriminator="kind"),
]

_REQUEST_ADAPTER: TypeAdapter[ToolCallRequest] = TypeAdapter(ToolCallRequest)

_FIELD_LABELS = {
    "start_time": "start time",
    "new_start_time": "new start time",
    "event_id": "event ID",
    "email": "email address",
    "title": "meeting title",
    "description": "agenda",
}


def build_request(kind: str, **fields: Any) -> ToolCallRequest:
    """Validate loose arguments into a typed request.

    Raises :class:`~frontdesk.errors.ValidationError` whose
    ``user_message`` is a specific, user-safe corrective instruction.
    """
    try:
        return _REQUEST_ADAPTER.validate_python({"kind": kind, **fields})
    except PydanticValidationError as exc:
        raise _to_validation_error(exc) from exc
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _to_validation_error(exc: PydanticValidationError) -> ValidationError:
    first = exc.errors()[0]
    loc = [str(part) for part in first.get("loc", ()) if not str(part).isdigit()]
    field_name = next(
        (part for part in reversed(loc) if part in _FIELD_LABELS), loc[-1] if loc else None,
    )
    message = str(first.get("msg", "invalid value"))
    message = message.removeprefix("Value error, ")
    if field_name in {"start_time", "new_start_time", "meeting_time"} or "ISO-8601" in message:
        return ValidationError(
            f"{message}. Please give the time as a specific date and time in PT.",
            field=field_name,
        )
    if field_name == "email":
        return ValidationError(message, field="email")
    label = _FIELD_LABELS.get(field_name or "", field_name or "value")
    return ValidationError(f"The {label} is not valid: {message}", field=field_name)
