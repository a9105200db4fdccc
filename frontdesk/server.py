"""FastAPI server for the Frontdesk assistant.

Run with:
    uvicorn frontdesk.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from frontdesk.api.routes import router
from frontdesk.config import CORS_ORIGINS, KNOWLEDGE_API_KEY, SERVER_HOST, SERVER_PORT
from frontdesk.knowledge import KnowledgeIndexer
from frontdesk.orchestrator import create_turn_orchestrator
from frontdesk.services.connections import ConnectionStore, GoogleOAuthFlow
from frontdesk.services.knowledge_client import KnowledgeClient
from frontdesk.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the orchestrator and its shared stores once, into app state."""
    logger.info("Building turn orchestrator…")
    application.state.connections = ConnectionStore()
    application.state.oauth = GoogleOAuthFlow(application.state.connections)
    application.state.indexer = (
        KnowledgeIndexer(KnowledgeClient()) if KNOWLEDGE_API_KEY else None
    )
    application.state.orchestrator = create_turn_orchestrator(
        connections=application.state.connections,
        indexer=application.state.indexer,
    )
    logger.info("Assistant ready.")
    yield
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Frontdesk Assistant",
    description=(
        "Business assistant: checks availability, books, reschedules and "
        "cancels meetings after explicit confirmation, and answers questions."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the chat widget) ────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Frontdesk Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting Frontdesk API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "frontdesk.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
