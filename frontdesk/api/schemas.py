"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from frontdesk.models import KnowledgeFile


class TurnRequest(BaseModel):
    """One inbound chat message.

    ``text`` may be missing or blank; the route answers that with a 400 and
    a prompt to type something rather than a schema error.
    """

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(default="", max_length=4000, description="The user's message")
    user_id: str | None = Field(
        default=None,
        alias="userId",
        max_length=128,
        description="Caller-supplied user id; a verified bearer token takes precedence",
    )


class TurnResponse(BaseModel):
    text: str = Field(..., description="The assistant's reply")


class KnowledgeUploadRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, description="UTF-8 text to index")


class KnowledgeFilesResponse(BaseModel):
    files: list[KnowledgeFile] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "frontdesk"


class OAuthUrlResponse(BaseModel):
    url: str = Field(..., description="Google consent URL to open in the browser")
