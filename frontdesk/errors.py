"""Error taxonomy shared by every layer of the assistant.

Only :class:`ValidationError` and :class:`IntegrationError` carry text that
may be shown to the user; everything else is logged and replaced by a fixed
message at the turn boundary.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Typed failure kinds reported by the Tool Execution Contract."""

    VALIDATION = "validation"
    INTEGRATION_NOT_CONNECTED = "integration_not_connected"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


class FrontdeskError(Exception):
    """Base class for all errors raised by this package."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class ValidationError(FrontdeskError):
    """Malformed tool arguments.  ``user_message`` is safe to show."""

    kind = ErrorKind.VALIDATION

    def __init__(self, user_message: str, *, field: str | None = None):
        self.user_message = user_message
        self.field = field
        super().__init__(user_message)


class IntegrationError(FrontdeskError):
    """Missing, expired or revoked credential for an external provider."""

    kind = ErrorKind.INTEGRATION_NOT_CONNECTED

    def __init__(self, provider: str, reason: str = "missing_refresh_token"):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} integration not connected ({reason})")

    @property
    def user_message(self) -> str:
        return (
            f"Your {self.provider} isn't connected right now. Please connect "
            f"(or reconnect) your {self.provider} and then ask me again."
        )


class GuardrailBlocked(FrontdeskError):
    """A guardrail check tripped.  ``stage`` is ``"input"`` or ``"output"``."""

    def __init__(self, stage: str, categories: list[str] | None = None):
        self.stage = stage
        self.categories = list(categories or [])
        super().__init__(f"guardrail tripped on {stage}")


class TransientError(FrontdeskError):
    """Provider or network hiccup that may succeed on a retry."""

    kind = ErrorKind.TRANSIENT


class UnknownError(FrontdeskError):
    """Anything uncategorised.  Detail stays in the logs."""


class AuthenticationError(FrontdeskError):
    """The bearer token could not be verified."""
