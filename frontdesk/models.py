"""Domain records passed between the pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from langchain_core.messages import AIMessage, AnyMessage
from pydantic import BaseModel, ConfigDict, Field, model_validator

from frontdesk.errors import ErrorKind


class Classification(StrEnum):
    """Coarse intent of a single user message."""

    APPOINTMENT_RELATED = "appointment_related"
    GET_INFORMATION = "get_information"
    ELSE = "else"


@dataclass(frozen=True)
class ConversationTurn:
    """One inbound message plus the history that preceded it.

    ``history`` is oldest-first and never includes the current message.
    """

    text: str
    user_id: str
    history: tuple[AnyMessage, ...] = field(default_factory=tuple)

    def last_assistant_message(self) -> str | None:
        """Content of the assistant message directly before this turn."""
        if not self.history:
            return None
        previous = self.history[-1]
        if isinstance(previous, AIMessage):
            return previous.content if isinstance(previous.content, str) else None
        return None


@dataclass(frozen=True)
class ToolContext:
    """Explicit per-call context threaded into every tool execution."""

    user_id: str
    tenant_id: str | None = None


@dataclass(frozen=True)
class Identity:
    """Result of verifying a bearer token."""

    user_id: str
    tenant_id: str | None = None


class TimeSlotUnderstanding(BaseModel):
    """Best-effort date/time reading of a message, normalized to PT."""

    model_config = ConfigDict(frozen=True)

    understood: bool = False
    start: str = ""
    end: str = ""
    date_only: str = ""
    notes: str = ""

    @model_validator(mode="after")
    def _fields_require_understanding(self) -> TimeSlotUnderstanding:
        if not self.understood and (self.start or self.end or self.date_only):
            raise ValueError("start/end/date_only must be empty when understood is false")
        return self

    @classmethod
    def not_understood(cls, notes: str = "") -> TimeSlotUnderstanding:
        return cls(understood=False, notes=notes)


class CheckResult(BaseModel):
    """Outcome of one named guardrail check."""

    model_config = ConfigDict(frozen=True)

    check_name: str
    tripwire_triggered: bool
    categories: list[str] = Field(default_factory=list)


class GuardrailVerdict(BaseModel):
    """Aggregate verdict.  Never carries the screened text."""

    model_config = ConfigDict(frozen=True)

    tripwire: bool
    categories: list[str] = Field(default_factory=list)
    checks: list[str] = Field(default_factory=list)


class ToolCallResult(BaseModel):
    """Outcome of a single Tool Execution Contract call."""

    success: bool
    payload: dict[str, Any] = Field(default_factory=dict)
    error: ErrorKind | None = None
    message: str = ""

    @classmethod
    def ok(cls, payload: dict[str, Any]) -> ToolCallResult:
        return cls(success=True, payload=payload)

    @classmethod
    def failed(cls, error: ErrorKind, message: str) -> ToolCallResult:
        return cls(success=False, error=error, message=message)


class KnowledgeFile(BaseModel):
    """One file attached to a user's knowledge index."""

    id: str
    filename: str = "untitled"
    bytes: int = 0
    status: str = "unknown"
    last_processed_at: str | None = None


class KnowledgeRecord(BaseModel):
    """The single knowledge index owned by a user and its file listing."""

    index_id: str
    files: list[KnowledgeFile] = Field(default_factory=list)
    updated_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


class ConnectionRecord(BaseModel):
    """Public view of a user's link to an external provider."""

    provider: str
    connected: bool
    scopes: list[str] = Field(default_factory=list)
