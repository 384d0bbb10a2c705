"""Unit tests for the expiring storage cache."""

import json

import pytest

from gitmemo.services.cache import (
    CACHE_PREFIX,
    MemoryStorage,
    StorageCache,
    StorageFullError,
    issue_key,
    issues_key,
    issues_prefix,
    labels_key,
)


class TestKeys:
    def test_issues_key_without_labels_ends_with_separator(self):
        assert issues_key("octo", "memos", 1) == "issues:octo:memos:1:"

    def test_issues_key_with_labels(self):
        assert issues_key("octo", "memos", 2, "idea,todo") == "issues:octo:memos:2:idea,todo"

    def test_prefix_covers_pages_but_not_single_issues(self):
        prefix = issues_prefix("octo", "memos")
        assert issues_key("octo", "memos", 3).startswith(prefix)
        assert not issue_key("octo", "memos", 3).startswith(prefix)


class TestExpiry:
    def test_value_returned_before_expiry(self, cache, clock):
        cache.set("k", {"a": 1}, expiry=1000)
        clock.advance(999)
        assert cache.get("k") == {"a": 1}

    def test_absent_at_expiry_and_not_resurrected(self, cache, clock):
        cache.set("k", [1, 2, 3], expiry=1000)
        clock.advance(1000)

        assert cache.get("k") is None
        assert cache.has("k") is False
        assert cache.storage.get_item(CACHE_PREFIX + "k") is None

    def test_default_expiry_is_fifteen_minutes(self, cache, clock):
        cache.set("k", "v")
        clock.advance(15 * 60 * 1000 - 1)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None


class TestRobustness:
    def test_corrupt_entry_is_removed(self, cache):
        cache.storage.set_item(CACHE_PREFIX + "bad", "{not json")

        assert cache.get("bad") is None
        assert cache.storage.get_item(CACHE_PREFIX + "bad") is None

    def test_version_mismatch_is_a_miss(self, cache):
        cache.set("k", "v", version="1.0")

        assert cache.get("k", version="2.0") is None
        assert cache.get("k") is None

    def test_full_storage_triggers_cleanup_and_retry(self, clock):
        storage = MemoryStorage(max_bytes=400)
        cache = StorageCache(storage=storage, clock=clock)
        cache.set("old", "x" * 150, expiry=10)
        clock.advance(10)

        cache.set("new", "y" * 200)

        assert cache.get("new") == "y" * 200
        assert storage.get_item(CACHE_PREFIX + "old") is None

    def test_write_dropped_when_still_full(self, clock):
        storage = MemoryStorage(max_bytes=300)
        cache = StorageCache(storage=storage, clock=clock)
        cache.set("live", "x" * 150)

        cache.set("big", "y" * 200)

        assert cache.get("big") is None
        assert cache.get("live") == "x" * 150

    def test_memory_storage_refuses_over_quota(self):
        storage = MemoryStorage(max_bytes=10)
        with pytest.raises(StorageFullError):
            storage.set_item("key", "value-too-long")


class TestScans:
    def test_stats_and_clear_ignore_foreign_keys(self, cache):
        cache.storage.set_item("other_app:setting", "keep")
        cache.set(issues_key("octo", "memos", 1), [])
        cache.set(labels_key("octo", "memos"), [])

        stats = cache.get_stats()
        assert stats["size"] == 2
        assert sorted(stats["keys"]) == ["issues:octo:memos:1:", "labels:octo:memos"]

        cache.clear()
        assert cache.get_stats()["size"] == 0
        assert cache.storage.get_item("other_app:setting") == "keep"

    def test_remove_prefix(self, cache):
        cache.set(issues_key("octo", "memos", 1), [1])
        cache.set(issues_key("octo", "memos", 2, "idea"), [2])
        cache.set(issues_key("octo", "other", 1), [3])
        cache.set(issue_key("octo", "memos", 7), {"number": 7})

        removed = cache.remove_prefix(issues_prefix("octo", "memos"))

        assert removed == 2
        assert cache.get(issues_key("octo", "other", 1)) == [3]
        assert cache.get(issue_key("octo", "memos", 7)) == {"number": 7}

    def test_cleanup_removes_only_expired(self, cache, clock):
        cache.set("short", 1, expiry=100)
        cache.set("long", 2, expiry=10_000)
        clock.advance(100)

        assert cache.cleanup() == 1
        assert cache.get_stats()["keys"] == ["long"]

    def test_envelope_layout(self, cache, clock):
        cache.set("k", {"x": 1}, expiry=500, version="3")
        envelope = json.loads(cache.storage.get_item(CACHE_PREFIX + "k"))
        assert envelope == {"data": {"x": 1}, "timestamp": clock.now, "version": "3", "expiry": 500}
