"""Tests for the in-memory LRU cache and its key helper."""

from __future__ import annotations

from frontdesk.services.cache import DEFAULT_MAX_BYTES, LRUCache, make_key


class TestMakeKey:
    def test_keys_carry_prefix(self):
        assert make_key("intent", "hello").startswith("intent:")

    def test_identical_parts_give_identical_keys(self):
        assert make_key("intent", "Can we meet?", "ctx") == make_key("intent", "Can we meet?", "ctx")

    def test_part_boundaries_matter(self):
        assert make_key("intent", "ab", "c") != make_key("intent", "a", "bc")

    def test_long_text_gives_short_key(self):
        assert len(make_key("intent", "x" * 10_000)) < 80


class TestLRUCacheBasics:
    def test_put_and_get(self):
        cache = LRUCache()
        cache.put("intent:1", "appointment_related")
        assert cache.get("intent:1") == "appointment_related"

    def test_get_returns_none_for_missing_key(self):
        assert LRUCache().get("missing") is None

    def test_put_overwrites_existing_key(self):
        cache = LRUCache()
        cache.put("k", "else")
        cache.put("k", "get_information")
        assert cache.get("k") == "get_information"
        assert cache.entry_count == 1

    def test_invalidate_reports_whether_key_existed(self):
        cache = LRUCache()
        cache.put("k", "v")
        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False

    def test_clear_resets_size(self):
        cache = LRUCache()
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()
        assert cache.entry_count == 0
        assert cache.current_bytes == 0

    def test_has_does_not_promote(self):
        cache = LRUCache(max_bytes=10)
        cache.put("a", "111")
        cache.put("b", "222")
        assert cache.has("a") is True
        cache.put("c", "333")
        assert cache.get("a") is None


class TestLRUEviction:
    def test_evicts_least_recently_used(self):
        # '"aaa"' is 5 bytes; a 10-byte cache holds two entries.
        cache = LRUCache(max_bytes=10)
        cache.put("first", "aaa")
        cache.put("second", "bbb")
        cache.put("third", "ccc")
        assert cache.get("first") is None
        assert cache.get("third") == "ccc"

    def test_get_promotes_entry(self):
        cache = LRUCache(max_bytes=10)
        cache.put("a", "111")
        cache.put("b", "222")
        cache.get("a")
        cache.put("c", "333")
        assert cache.get("a") == "111"
        assert cache.get("b") is None

    def test_oversized_entry_is_not_cached(self):
        cache = LRUCache(max_bytes=10)
        cache.put("huge", "x" * 100)
        assert cache.entry_count == 0


class TestPrefixInvalidation:
    def test_clears_file_metadata_family_only(self):
        cache = LRUCache()
        cache.put(make_key("file_meta", "file-1"), {"filename": "a.md", "bytes": 1})
        cache.put(make_key("file_meta", "file-2"), {"filename": "b.md", "bytes": 2})
        cache.put(make_key("intent", "hi"), "else")

        assert cache.invalidate_prefix("file_meta:") == 2
        assert cache.get(make_key("intent", "hi")) == "else"

    def test_returns_zero_when_no_match(self):
        cache = LRUCache()
        cache.put("foo", "bar")
        assert cache.invalidate_prefix("zzz") == 0


class TestSizeTracking:
    def test_tracks_inserts_and_removals(self):
        cache = LRUCache()
        cache.put("k", {"data": "hello"})
        assert cache.current_bytes > 0
        cache.invalidate("k")
        assert cache.current_bytes == 0

    def test_default_limit_is_5mb(self):
        assert DEFAULT_MAX_BYTES == 5 * 1024 * 1024
