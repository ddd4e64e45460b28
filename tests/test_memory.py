"""Tests for memory items and the file store."""

from __future__ import annotations

import json
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from ragstore.memory.embedding import HashEmbedding
from ragstore.memory.errors import StorageError
from ragstore.memory.item import ItemFilter, MemoryItem, new_item_id
from ragstore.memory.store import FileStore


@pytest.fixture
def store(tmp_path: Path) -> FileStore:
    return FileStore(tmp_path / "rag-store" / "memory.json")


class TestMemoryItem:
    def test_id_format(self):
        item_id = new_item_id("decision", 1700000000123)
        assert re.fullmatch(r"decision_1700000000123_[0-9a-z]{9}", item_id)

    def test_ids_distinct_within_same_millisecond(self):
        ids = {new_item_id("note", 1700000000000) for _ in range(1000)}
        assert len(ids) == 1000

    def test_create_defaults(self):
        item = MemoryItem.create("use retries", "decision")
        assert item.metadata == {}
        assert item.timestamp > 0
        assert item.id.startswith(f"decision_{item.timestamp}_")

    def test_create_copies_metadata(self):
        meta = {"source": "review"}
        item = MemoryItem.create("x", "note", meta, timestamp=5)
        meta["source"] = "changed"
        assert item.metadata == {"source": "review"}
        assert item.timestamp == 5

    def test_from_dict_missing_metadata(self):
        item = MemoryItem.from_dict({"id": "a", "content": "c", "type": "t", "timestamp": 1})
        assert item.metadata == {}

    def test_immutable(self):
        item = MemoryItem.create("x", "note")
        with pytest.raises(AttributeError):
            item.content = "y"  # type: ignore[misc]


class TestItemFilter:
    def test_empty_matches_everything(self):
        assert ItemFilter().is_empty
        assert ItemFilter().matches(MemoryItem("a", "c", "t", {}, 0))

    def test_type_equality(self):
        f = ItemFilter(type="decision")
        assert f.matches(MemoryItem("a", "c", "decision", {}, 0))
        assert not f.matches(MemoryItem("a", "c", "Decision", {}, 0))

    def test_min_timestamp_inclusive(self):
        f = ItemFilter(min_timestamp=100)
        assert f.matches(MemoryItem("a", "c", "t", {}, 100))
        assert not f.matches(MemoryItem("a", "c", "t", {}, 99))


class TestHashEmbedding:
    def test_fixed_length_and_deterministic(self):
        embed = HashEmbedding(16)
        assert len(embed("hello")) == 16
        assert embed("hello") == embed("hello")
        assert embed("hello") != embed("goodbye")

    def test_rejects_bad_dim(self):
        with pytest.raises(ValueError):
            HashEmbedding(0)


class TestFileStore:
    def test_ensure_exists_creates_empty_array(self, store: FileStore):
        store.ensure_exists()
        assert store.path.exists()
        assert json.loads(store.path.read_text(encoding="utf-8")) == []

    def test_ensure_exists_idempotent(self, store: FileStore):
        store.ensure_exists()
        store.append_item(MemoryItem.create("keep me", "note"))
        store.ensure_exists()
        assert len(store.read_all()) == 1

    def test_read_all_on_missing_file(self, store: FileStore):
        assert store.read_all() == []
        assert store.path.exists()

    def test_append_preserves_order(self, store: FileStore):
        for i in range(3):
            store.append_item(MemoryItem.create(f"item {i}", "note", timestamp=i))
        assert [item.content for item in store.read_all()] == ["item 0", "item 1", "item 2"]

    def test_on_disk_format(self, store: FileStore):
        item = MemoryItem.create("日本語 ok", "note", {"k": 1})
        store.append_item(item)
        raw = store.path.read_text(encoding="utf-8")
        assert "日本語 ok" in raw
        assert json.loads(raw) == [item.to_dict()]
        assert "embedding" not in raw

    def test_no_temp_files_left(self, store: FileStore):
        store.append_item(MemoryItem.create("x", "note"))
        leftovers = [p for p in store.path.parent.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_malformed_json_is_fatal(self, store: FileStore):
        store.ensure_exists()
        store.path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError):
            store.read_all()
        with pytest.raises(StorageError):
            store.append_item(MemoryItem.create("x", "note"))
        # Not auto-repaired
        assert store.path.read_text(encoding="utf-8") == "{not json"

    def test_non_array_is_fatal(self, store: FileStore):
        store.ensure_exists()
        store.path.write_text('{"items": []}', encoding="utf-8")
        with pytest.raises(StorageError):
            store.read_all()

    def test_bad_record_is_fatal(self, store: FileStore):
        store.ensure_exists()
        store.path.write_text('[{"content": "no id"}]', encoding="utf-8")
        with pytest.raises(StorageError):
            store.read_all()

    def test_concurrent_appends_lose_nothing(self, store: FileStore):
        store.append_item(MemoryItem.create("existing", "note"))
        n = 20
        barrier = threading.Barrier(n)

        def write(i: int) -> None:
            barrier.wait()
            store.append_item(MemoryItem.create(f"concurrent {i}", "note"))

        with ThreadPoolExecutor(max_workers=n) as pool:
            list(pool.map(write, range(n)))

        items = store.read_all()
        assert len(items) == n + 1
        assert {item.content for item in items[1:]} == {f"concurrent {i}" for i in range(n)}

    def test_separate_instances_share_file_lock(self, tmp_path: Path):
        path = tmp_path / "memory.json"
        a, b = FileStore(path), FileStore(path)
        n = 10

        def write(i: int) -> None:
            (a if i % 2 else b).append_item(MemoryItem.create(f"item {i}", "note"))

        with ThreadPoolExecutor(max_workers=n) as pool:
            list(pool.map(write, range(n)))

        assert len(a.read_all()) == n
