"""Tests for the knowledge indexer: uploads and paginated status refresh."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from frontdesk.knowledge import KnowledgeIndexer, KnowledgeStore


def _page(ids: list[str], has_more: bool) -> dict:
    return {
        "data": [{"id": i, "status": "completed", "created_at": 1792400000} for i in ids],
        "has_more": has_more,
    }


@pytest.fixture
def index():
    idx = MagicMock()
    idx.create_index.return_value = "vs_1"
    idx.upload_file.return_value = {"id": "file-new", "filename": "notes.md", "bytes": 12}
    idx.attach_file.return_value = {"status": "in_progress"}
    idx.retrieve_file.side_effect = lambda fid: {"filename": f"{fid}.md", "bytes": 100}
    return idx


@pytest.fixture
def indexer(index):
    return KnowledgeIndexer(index, KnowledgeStore())


class TestUpload:
    def test_creates_index_once(self, indexer, index):
        indexer.upload("u1", "a.md", b"hello")
        indexer.upload("u1", "b.md", b"world")
        index.create_index.assert_called_once_with("frontdesk-u1")
        assert index.attach_file.call_count == 2

    def test_returns_new_file_record(self, indexer):
        new_file = indexer.upload("u1", "notes.md", b"hello world!")
        assert new_file.id == "file-new"
        assert new_file.status == "in_progress"
        assert new_file.bytes == 12
        assert [f.id for f in indexer.refresh_status("u1")] == ["file-new"]

    def test_indexes_are_per_user(self, indexer, index):
        index.create_index.side_effect = ["vs_1", "vs_2"]
        indexer.upload("u1", "a.md", b"x")
        indexer.upload("u2", "a.md", b"x")
        assert index.create_index.call_count == 2
        index.search.return_value = []
        indexer.search("u2", "pricing")
        assert index.search.call_args.args[0] == "vs_2"


class TestRefreshStatus:
    def test_no_index_is_empty(self, indexer, index):
        assert indexer.refresh_status("nobody", force_refresh=True) == []
        index.list_files.assert_not_called()

    def test_without_force_returns_stored_list(self, indexer, index):
        indexer.upload("u1", "notes.md", b"x")
        indexer.refresh_status("u1")
        index.list_files.assert_not_called()

    def test_walks_every_page_exactly_once(self, indexer, index):
        indexer.upload("u1", "notes.md", b"x")
        index.list_files.side_effect = [
            _page(["f1", "f2"], True),
            _page(["f3", "f4"], True),
            _page(["f5", "file-new"], False),
        ]

        files = indexer.refresh_status("u1", force_refresh=True)

        assert index.list_files.call_count == 3
        afters = [c.kwargs["after"] for c in index.list_files.call_args_list]
        assert afters == [None, "f2", "f4"]
        assert len(files) == 6
        assert "file-new" in {f.id for f in files}

    def test_lookup_failure_keeps_file_with_placeholder(self, indexer, index):
        indexer.upload("u1", "notes.md", b"x")
        index.list_files.side_effect = [_page(["f1", "f2"], False)]
        index.retrieve_file.side_effect = [RuntimeError("boom"), {"filename": "f2.md", "bytes": 5}]

        files = {f.id: f for f in indexer.refresh_status("u1", force_refresh=True)}

        assert files["f1"].filename == "untitled"
        assert files["f1"].bytes == 0
        assert files["f2"].filename == "f2.md"

    def test_metadata_is_cached(self, indexer, index):
        indexer.upload("u1", "notes.md", b"x")
        index.list_files.side_effect = [_page(["f1"], False), _page(["f1"], False)]
        indexer.refresh_status("u1", force_refresh=True)
        indexer.refresh_status("u1", force_refresh=True)
        assert index.retrieve_file.call_count == 1

    def test_processed_time_from_created_at(self, indexer, index):
        indexer.upload("u1", "notes.md", b"x")
        index.list_files.side_effect = [_page(["f1"], False)]
        files = indexer.refresh_status("u1", force_refresh=True)
        assert files[0].last_processed_at.startswith("2026-")

    def test_repeated_cursor_stops(self, indexer, index):
        indexer.upload("u1", "notes.md", b"x")
        index.list_files.return_value = _page(["f1"], True)

        files = indexer.refresh_status("u1", force_refresh=True)

        assert index.list_files.call_count == 2
        assert [f.id for f in files] == ["f1"]

    def test_empty_page_stops(self, indexer, index):
        indexer.upload("u1", "notes.md", b"x")
        index.list_files.side_effect = [{"data": [], "has_more": True}]
        assert indexer.refresh_status("u1", force_refresh=True) == []
        assert index.list_files.call_count == 1

    def test_refresh_persists(self, indexer, index):
        indexer.upload("u1", "notes.md", b"x")
        index.list_files.side_effect = [_page(["f1", "f2"], False)]
        indexer.refresh_status("u1", force_refresh=True)
        assert {f.id for f in indexer.refresh_status("u1")} == {"f1", "f2"}


class TestSearch:
    def test_search_without_index(self, indexer, index):
        assert indexer.search("u1", "anything") == []
        index.search.assert_not_called()

    def test_has_index(self, indexer):
        assert indexer.has_index("u1") is False
        indexer.upload("u1", "a.md", b"x")
        assert indexer.has_index("u1") is True
