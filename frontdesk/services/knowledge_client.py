"""HTTP client for an OpenAI-compatible vector-store API.

Used as the knowledge-index collaborator: one vector store per user, files
uploaded then attached to it, and a paginated file listing.

API docs: https://platform.openai.com/docs/api-reference/vector-stores
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from frontdesk.config import KNOWLEDGE_API_KEY, KNOWLEDGE_BASE_URL
from frontdesk.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0
PAGE_SIZE = 100


class KnowledgeAPIError(Exception):
    """Raised when the knowledge index returns an error response."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class KnowledgeClient:
    """Thin wrapper around the vector-store REST endpoints."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        http_client: httpx.Client | None = None,
    ):
        self._api_key = api_key or KNOWLEDGE_API_KEY
        self._base_url = base_url or KNOWLEDGE_BASE_URL
        self._client = http_client or httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "OpenAI-Beta": "assistants=v2",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            with metrics.timed("knowledge", operation):
                response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise KnowledgeAPIError(f"{operation} failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            logger.warning("Knowledge %s returned %d", operation, response.status_code)
            raise KnowledgeAPIError(
                f"{operation} error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    # ── Public API methods ───────────────────────────────────────────

    def create_index(self, name: str) -> str:
        """Create a vector store and return its id."""
        data = self._request("POST", "/vector_stores", "create_index", json={"name": name})
        return data["id"]

    def list_files(self, index_id: str, after: str | None = None) -> dict[str, Any]:
        """One page of the index's files: ``{"data": [...], "has_more": bool}``."""
        params: dict[str, Any] = {"limit": PAGE_SIZE}
        if after:
            params["after"] = after
        data = self._request(
            "GET", f"/vector_stores/{index_id}/files", "list_files", params=params,
        )
        return {"data": data.get("data", []), "has_more": bool(data.get("has_more"))}

    def retrieve_file(self, file_id: str) -> dict[str, Any]:
        """File metadata: ``{"filename", "bytes", ...}``."""
        return self._request("GET", f"/files/{file_id}", "retrieve_file")

    def upload_file(self, filename: str, content: bytes) -> dict[str, Any]:
        return self._request(
            "POST",
            "/files",
            "upload_file",
            data={"purpose": "assistants"},
            files={"file": (filename, content)},
        )

    def attach_file(self, index_id: str, file_id: str) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/vector_stores/{index_id}/files",
            "attach_file",
            json={"file_id": file_id},
        )

    def search(self, index_id: str, query: str, max_results: int = 5) -> list[str]:
        """Return the text of the best-matching chunks for *query*."""
        data = self._request(
            "POST",
            f"/vector_stores/{index_id}/search",
            "search",
            json={"query": query, "max_num_results": max_results},
        )
        snippets = []
        for hit in data.get("data", []):
            for block in hit.get("content", []):
                if block.get("type") == "text" and block.get("text"):
                    snippets.append(block["text"])
        return snippets
