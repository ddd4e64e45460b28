"""File store: the durable fallback tier.

All items live in one JSON array on disk, in insertion order. Appends are a
full read-modify-write, so every mutation holds an in-process lock plus an
exclusive file lock on a sibling ``.lock`` file, and the new array is written
to a temp file and renamed over the old one. Readers never take the lock and
never observe a half-written file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

import portalocker

from ragstore.memory.errors import StorageError
from ragstore.memory.item import MemoryItem

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 10.0


class FileStore:
    """Ordered, append-only collection of memory items in a single JSON file."""

    def __init__(self, path: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = Path(path)
        self.lock_timeout = lock_timeout
        self._thread_lock = threading.Lock()

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    # ── Setup ─────────────────────────────────────────────────

    def ensure_exists(self) -> None:
        """Create the parent directory and an empty array if missing. Idempotent."""
        if self.path.exists():
            return
        with self._write_lock():
            if not self.path.exists():
                self._write_records([])
                logger.info("Initialized file store at %s", self.path)

    # ── Reads ─────────────────────────────────────────────────

    def read_all(self) -> list[MemoryItem]:
        """Return every stored item in insertion order."""
        self.ensure_exists()
        return [self._to_item(record) for record in self._read_records()]

    # ── Writes ────────────────────────────────────────────────

    def append_item(self, item: MemoryItem) -> None:
        """Append one item. Serialized across threads and processes."""
        self.ensure_exists()
        with self._write_lock():
            records = self._read_records()
            records.append(item.to_dict())
            self._write_records(records)
        logger.debug("Appended %s (%d items)", item.id, len(records))

    # ── Internals ─────────────────────────────────────────────

    def _write_lock(self):
        return _CombinedLock(self._thread_lock, self.lock_path, self.lock_timeout)

    def _read_records(self) -> list[dict]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"cannot read {self.path}: {e}") from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"malformed file store {self.path}: {e}") from e
        if not isinstance(data, list):
            raise StorageError(
                f"malformed file store {self.path}: expected a JSON array, "
                f"got {type(data).__name__}"
            )
        return data

    def _to_item(self, record: object) -> MemoryItem:
        try:
            return MemoryItem.from_dict(record)  # type: ignore[arg-type]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StorageError(f"malformed record in {self.path}: {record!r}") from e

    def _write_records(self, records: list[dict]) -> None:
        """Write the full array atomically (temp file + rename)."""
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.stem}-",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                json.dump(records, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"cannot write {self.path}: {e}") from e


class _CombinedLock:
    """Thread lock first, then the inter-process file lock."""

    def __init__(self, thread_lock: threading.Lock, lock_path: Path, timeout: float) -> None:
        self._thread_lock = thread_lock
        self._lock_path = lock_path
        self._timeout = timeout
        self._file_lock: portalocker.Lock | None = None

    def __enter__(self) -> None:
        if not self._thread_lock.acquire(timeout=self._timeout):
            raise StorageError(f"timed out waiting for write lock on {self._lock_path}")
        try:
            self._lock_path.parent.mkdir(parents=True, exist_ok=True)
            self._file_lock = portalocker.Lock(
                str(self._lock_path),
                mode="a",
                timeout=self._timeout,
                flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
            )
            self._file_lock.acquire()
        except portalocker.LockException as e:
            self._thread_lock.release()
            raise StorageError(f"timed out waiting for file lock {self._lock_path}") from e
        except OSError as e:
            self._thread_lock.release()
            raise StorageError(f"cannot open lock file {self._lock_path}: {e}") from e

    def __exit__(self, *exc_info) -> None:
        try:
            if self._file_lock is not None:
                self._file_lock.release()
        finally:
            self._thread_lock.release()
