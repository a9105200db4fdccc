"""Knowledge Indexer: one remote index per user plus its file listing.

``upload`` creates the user's index on first use and attaches the new
file.  ``refresh_status(force_refresh=True)`` walks the remote listing with
``after = <last item id>`` until the provider stops reporting more pages,
looks up filename and size per file, and persists the merged list.  A
failed per-file lookup is logged and the file kept with placeholder
metadata; it never aborts the refresh.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any, Protocol

from frontdesk.models import KnowledgeFile, KnowledgeRecord
from frontdesk.services.cache import LRUCache, make_key

logger = logging.getLogger(__name__)


class KnowledgeIndex(Protocol):
    def create_index(self, name: str) -> str: ...

    def list_files(self, index_id: str, after: str | None = None) -> dict[str, Any]: ...

    def retrieve_file(self, file_id: str) -> dict[str, Any]: ...

    def upload_file(self, filename: str, content: bytes) -> dict[str, Any]: ...

    def attach_file(self, index_id: str, file_id: str) -> dict[str, Any]: ...

    def search(self, index_id: str, query: str, max_results: int = 5) -> list[str]: ...


class KnowledgeStore:
    """Thread-safe in-memory persistence of :class:`KnowledgeRecord` per user."""

    def __init__(self) -> None:
        self._records: dict[str, KnowledgeRecord] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> KnowledgeRecord | None:
        with self._lock:
            return self._records.get(user_id)

    def save(self, user_id: str, record: KnowledgeRecord) -> None:
        with self._lock:
            self._records[user_id] = record


class KnowledgeIndexer:
    def __init__(
        self,
        index: KnowledgeIndex,
        store: KnowledgeStore | None = None,
        *,
        cache: LRUCache | None = None,
    ):
        self._index = index
        self._store = store or KnowledgeStore()
        self._cache = cache or LRUCache()
        self._create_lock = threading.Lock()

    def get_or_create_index(self, user_id: str) -> KnowledgeRecord:
        with self._create_lock:
            record = self._store.get(user_id)
            if record is not None:
                return record
            index_id = self._index.create_index(f"frontdesk-{user_id}")
            record = KnowledgeRecord(index_id=index_id)
            self._store.save(user_id, record)
            logger.info("Created knowledge index %s for user %s", index_id, user_id)
            return record

    def upload(self, user_id: str, filename: str, content: bytes) -> KnowledgeFile:
        """Upload *content* and attach it to the user's single index."""
        record = self.get_or_create_index(user_id)
        uploaded = self._index.upload_file(filename, content)
        attached = self._index.attach_file(record.index_id, uploaded["id"])

        new_file = KnowledgeFile(
            id=uploaded["id"],
            filename=uploaded.get("filename") or filename,
            bytes=int(uploaded.get("bytes") or len(content)),
            status=attached.get("status", "in_progress"),
            last_processed_at=_now_iso(),
        )
        files = [f for f in record.files if f.id != new_file.id] + [new_file]
        self._store.save(user_id, KnowledgeRecord(index_id=record.index_id, files=files))
        logger.info("Uploaded %s (%d bytes) to index %s", new_file.filename, new_file.bytes, record.index_id)
        return new_file

    def refresh_status(self, user_id: str, force_refresh: bool = False) -> list[KnowledgeFile]:
        record = self._store.get(user_id)
        if record is None:
            return []
        if not force_refresh:
            return list(record.files)

        merged: dict[str, KnowledgeFile] = {}
        cursor: str | None = None
        pages = 0
        while True:
            page = self._index.list_files(record.index_id, after=cursor)
            pages += 1
            items = page.get("data", [])
            for item in items:
                merged[item["id"]] = self._describe(item)
            if not page.get("has_more") or not items:
                break
            next_cursor = items[-1]["id"]
            if next_cursor == cursor:
                logger.warning("Index %s repeated cursor %s; stopping", record.index_id, cursor)
                break
            cursor = next_cursor

        files = list(merged.values())
        self._store.save(user_id, KnowledgeRecord(index_id=record.index_id, files=files))
        logger.info(
            "Refreshed index %s: %d files over %d pages", record.index_id, len(files), pages,
        )
        return files

    def search(self, user_id: str, query: str, max_results: int = 5) -> list[str]:
        record = self._store.get(user_id)
        if record is None:
            return []
        return self._index.search(record.index_id, query, max_results)

    def has_index(self, user_id: str) -> bool:
        return self._store.get(user_id) is not None

    def _describe(self, item: dict[str, Any]) -> KnowledgeFile:
        file_id = item["id"]
        key = make_key("file_meta", file_id)
        meta = self._cache.get(key)
        if meta is None:
            try:
                raw = self._index.retrieve_file(file_id)
                meta = {"filename": raw.get("filename") or "untitled", "bytes": int(raw.get("bytes") or 0)}
                self._cache.put(key, meta)
            except Exception as exc:
                logger.warning("Metadata lookup for %s failed: %s", file_id, exc)
                meta = {"filename": "untitled", "bytes": 0}

        processed = item.get("created_at")
        return KnowledgeFile(
            id=file_id,
            filename=meta["filename"],
            bytes=meta["bytes"],
            status=item.get("status", "unknown"),
            last_processed_at=(
                datetime.fromtimestamp(processed, UTC).isoformat()
                if isinstance(processed, int | float) else None
            ),
        )


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()
