"""FastAPI route definitions for the Frontdesk API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from frontdesk.api.schemas import (
    HealthResponse,
    KnowledgeFilesResponse,
    KnowledgeUploadRequest,
    OAuthUrlResponse,
    TurnRequest,
    TurnResponse,
)
from frontdesk.config import DEFAULT_USER_ID, POST_OAUTH_REDIRECT_URL
from frontdesk.errors import AuthenticationError, IntegrationError, TransientError, ValidationError
from frontdesk.knowledge import KnowledgeIndexer
from frontdesk.models import ConnectionRecord, Identity, KnowledgeFile
from frontdesk.orchestrator import TurnOrchestrator
from frontdesk.prompts import EMPTY_INPUT
from frontdesk.services.connections import GoogleOAuthFlow

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_orchestrator(request: Request) -> TurnOrchestrator:
    """Retrieve the turn orchestrator from app state.

    It is built once during the FastAPI lifespan (see ``server.py``).
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return orchestrator


def _get_indexer(request: Request) -> KnowledgeIndexer:
    indexer = getattr(request.app.state, "indexer", None)
    if indexer is None:
        raise HTTPException(status_code=503, detail="The knowledge index is not configured.")
    return indexer


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _identify(request: Request, orchestrator: TurnOrchestrator) -> Identity | None:
    """Verify the bearer token if one was sent; 401 if it does not check out."""
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        return await asyncio.to_thread(orchestrator.authenticate, token)
    except AuthenticationError as e:
        request_id = getattr(request.state, "request_id", "?")
        logger.info("[%s] Bearer token rejected: %s", request_id, e)
        raise HTTPException(status_code=401, detail="Invalid or expired credentials.") from e


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/turn", response_model=TurnResponse)
async def turn(http_request: Request, request: TurnRequest | None = None):
    """Send one message to the assistant and get its reply.

    **Implementation note**: a turn makes several blocking remote calls
    (model, calendar, knowledge index).  It runs on a worker thread via
    ``asyncio.to_thread`` so the event loop keeps serving other requests.
    """
    if request is None or not request.text.strip():
        return JSONResponse(status_code=400, content={"text": EMPTY_INPUT})

    orchestrator = _get_orchestrator(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    identity = await _identify(http_request, orchestrator)
    user_id = identity.user_id if identity else (request.user_id or DEFAULT_USER_ID)

    try:
        reply = await asyncio.to_thread(
            orchestrator.handle_turn,
            user_id,
            request.text,
            tenant_id=identity.tenant_id if identity else None,
        )
    except Exception as e:
        # Full traceback stays server-side.
        logger.exception("[%s] Error processing turn", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e
    return TurnResponse(text=reply)


@router.get("/connections/status", response_model=ConnectionRecord)
async def connection_status(http_request: Request):
    """Whether the caller's Google Calendar is connected, and with which scopes."""
    orchestrator = _get_orchestrator(http_request)
    if _bearer_token(http_request) is None:
        raise HTTPException(status_code=401, detail="A bearer token is required.")
    identity = await _identify(http_request, orchestrator)
    if identity is None:
        raise HTTPException(status_code=503, detail="Identity verification is not configured.")
    return http_request.app.state.connections.status(identity.user_id, "calendar")


@router.post("/knowledge/files", response_model=KnowledgeFile)
async def upload_knowledge(request: KnowledgeUploadRequest, http_request: Request):
    """Add a text document to the caller's knowledge index."""
    orchestrator = _get_orchestrator(http_request)
    indexer = _get_indexer(http_request)
    identity = await _identify(http_request, orchestrator)
    user_id = identity.user_id if identity else DEFAULT_USER_ID

    try:
        return await asyncio.to_thread(
            indexer.upload, user_id, request.filename, request.content.encode("utf-8"),
        )
    except Exception as e:
        request_id = getattr(http_request.state, "request_id", "?")
        logger.exception("[%s] Knowledge upload failed", request_id)
        raise HTTPException(
            status_code=502, detail="The knowledge index could not be updated.",
        ) from e


@router.get("/knowledge/files", response_model=KnowledgeFilesResponse)
async def list_knowledge(http_request: Request, refresh: bool = False):
    """List the caller's indexed files; ``refresh=true`` re-reads the remote index."""
    orchestrator = _get_orchestrator(http_request)
    indexer = _get_indexer(http_request)
    identity = await _identify(http_request, orchestrator)
    user_id = identity.user_id if identity else DEFAULT_USER_ID

    try:
        files = await asyncio.to_thread(indexer.refresh_status, user_id, refresh)
    except Exception as e:
        request_id = getattr(http_request.state, "request_id", "?")
        logger.exception("[%s] Knowledge refresh failed", request_id)
        raise HTTPException(
            status_code=502, detail="The knowledge index could not be read.",
        ) from e
    return KnowledgeFilesResponse(files=files)


# ── Google Calendar connect ──────────────────────────────────────────


def _get_oauth(request: Request) -> GoogleOAuthFlow:
    oauth = getattr(request.app.state, "oauth", None)
    if oauth is None or not oauth.configured:
        raise HTTPException(status_code=503, detail="Google sign-in is not configured.")
    return oauth


@router.get("/google/oauth/url", response_model=OAuthUrlResponse)
async def google_oauth_url(http_request: Request, provider: str = "calendar"):
    """Consent URL for connecting the caller's Google Calendar."""
    if provider != "calendar":
        return JSONResponse(status_code=400, content={"error": "invalid_provider"})
    orchestrator = _get_orchestrator(http_request)
    oauth = _get_oauth(http_request)
    if _bearer_token(http_request) is None:
        raise HTTPException(status_code=401, detail="A bearer token is required.")
    identity = await _identify(http_request, orchestrator)
    if identity is None:
        raise HTTPException(status_code=503, detail="Identity verification is not configured.")
    return OAuthUrlResponse(url=oauth.authorization_url(identity.user_id, identity.tenant_id))


@router.get("/google/oauth/callback")
async def google_oauth_callback(http_request: Request, code: str = "", state: str = ""):
    """Google redirects here after consent; stores the refresh token."""
    oauth = _get_oauth(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        user_id = await asyncio.to_thread(oauth.complete, code, state)
    except ValidationError as e:
        logger.info("[%s] OAuth callback rejected: %s", request_id, e.field)
        return PlainTextResponse(e.user_message, status_code=400)
    except (IntegrationError, TransientError) as e:
        logger.warning("[%s] OAuth code exchange failed: %s", request_id, e)
        return PlainTextResponse(
            "Google did not accept the sign-in. Please try connecting again.", status_code=502,
        )
    logger.info("[%s] Google Calendar connected for user %s", request_id, user_id)
    if POST_OAUTH_REDIRECT_URL:
        return RedirectResponse(POST_OAUTH_REDIRECT_URL)
    return PlainTextResponse("Connected! You can close this tab.")
