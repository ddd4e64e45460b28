"""Memory engine: search, upsert and get_context over two storage tiers.

The file store is always written and is the source of truth. The primary
index, when configured, answers reads and receives writes first; every call
to it is guarded, bounded by a timeout, and falls back to the file store on
failure for that call only. The next call tries the index again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ragstore.memory.embedding import EmbeddingFunction, HashEmbedding
from ragstore.memory.errors import CapabilityUnavailable, ValidationError
from ragstore.memory.index import PrimaryIndex, QdrantIndex
from ragstore.memory.item import ItemFilter, MemoryItem, now_ms
from ragstore.memory.store import FileStore

if TYPE_CHECKING:
    from ragstore.config import RagStoreConfig

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 5
CONTEXT_LIMIT = 20
CURRENT_WINDOW_MS = 24 * 60 * 60 * 1000

SCOPES = ("current", "historical", "decisions")
DECISION_TYPE = "decision"


@dataclass
class IndexOutcome:
    """Result of one guarded primary index call."""

    ok: bool
    value: Any = None
    error: str | None = None


@dataclass
class UpsertResult:
    id: str
    degraded: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": True, "id": self.id}
        if self.degraded:
            payload["degraded"] = True
            payload["storage"] = "file-based"
        return payload


@dataclass
class RetrievalResult:
    items: list[MemoryItem] = field(default_factory=list)
    degraded: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"items": [item.to_dict() for item in self.items]}
        if self.degraded:
            payload["degraded"] = True
        return payload


def scope_filter(scope: str, now: int) -> ItemFilter:
    """Map a get_context scope to a filter. Unknown scopes mean no filter."""
    if scope == "current":
        return ItemFilter(min_timestamp=now - CURRENT_WINDOW_MS)
    if scope == "decisions":
        return ItemFilter(type=DECISION_TYPE)
    return ItemFilter()


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"'{name}' must be a non-empty string")
    return value


class MemoryEngine:
    """Orchestrates the file store and the optional primary index."""

    def __init__(
        self,
        store: FileStore,
        index: PrimaryIndex | None = None,
        *,
        embed: EmbeddingFunction | None = None,
        index_timeout: float = 5.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.index = index
        self.embed = embed or HashEmbedding()
        self.index_timeout = index_timeout
        self.clock = clock

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """One-time startup. Index failures are logged, never raised."""
        await asyncio.to_thread(self.store.ensure_exists)
        if self.index is None:
            logger.info("No primary index configured; using file store only")
            return
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.index.ensure_collection), self.index_timeout
            )
            logger.info("Primary index ready: %s", self.index.name)
        except Exception as e:
            logger.error("Failed to initialize primary index %s: %s", self.index.name, e)

    async def close(self) -> None:
        if self.index is not None:
            await asyncio.to_thread(self.index.close)

    # ── Guarded index access ──────────────────────────────────

    async def _call_index(self, op: str, fn: Callable[..., Any], *args: Any) -> IndexOutcome:
        if self.index is None:
            return IndexOutcome(ok=False, error="no primary index configured")
        index = self.index

        async def attempt() -> Any:
            if not index.ready:
                await asyncio.to_thread(index.ensure_collection)
            return await asyncio.to_thread(fn, *args)

        try:
            # Setup retry and the operation share one timeout budget.
            value = await asyncio.wait_for(attempt(), self.index_timeout)
            return IndexOutcome(ok=True, value=value)
        except asyncio.TimeoutError:
            error = f"timed out after {self.index_timeout}s"
        except CapabilityUnavailable as e:
            error = str(e)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        logger.warning("Primary index %s failed, falling back to file store: %s", op, error)
        return IndexOutcome(ok=False, error=error)

    # ── Operations ────────────────────────────────────────────

    async def upsert(
        self,
        content: str,
        type: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> UpsertResult:
        """Store a new item. Always written to the file store."""
        _require_text("content", content)
        _require_text("type", type)
        if metadata is not None and not isinstance(metadata, Mapping):
            raise ValidationError("'metadata' must be an object")

        item = MemoryItem.create(content, type, dict(metadata or {}), timestamp=self.clock())

        degraded = False
        if self.index is not None:
            outcome = await self._call_index(
                "insert", self.index.insert, item, self.embed(content)
            )
            degraded = not outcome.ok

        # Write-through: the file store copy is what makes the upsert durable.
        await asyncio.to_thread(self.store.append_item, item)
        logger.info("Stored %s%s", item.id, " (file store only)" if degraded else "")
        return UpsertResult(id=item.id, degraded=degraded)

    async def search(self, query: str, context: str | None = None) -> RetrievalResult:
        """Up to 5 items by similarity, or by substring match on fallback."""
        _require_text("query", query)
        if context is not None and not isinstance(context, str):
            raise ValidationError("'context' must be a string")
        item_filter = ItemFilter(type=context or None)

        if self.index is not None:
            outcome = await self._call_index(
                "search",
                self.index.similarity_search,
                self.embed(query),
                item_filter,
                SEARCH_LIMIT,
            )
            if outcome.ok:
                return RetrievalResult(items=list(outcome.value)[:SEARCH_LIMIT])

        needle = query.lower()
        items = await asyncio.to_thread(self.store.read_all)
        matches = [
            item for item in items if needle in item.content.lower() and item_filter.matches(item)
        ]
        return RetrievalResult(items=matches[:SEARCH_LIMIT], degraded=self.index is not None)

    async def get_context(self, scope: str) -> RetrievalResult:
        """Up to 20 most recently stored items for a scope."""
        if not isinstance(scope, str):
            raise ValidationError("'scope' must be a string")
        item_filter = scope_filter(scope, self.clock())

        if self.index is not None:
            outcome = await self._call_index(
                "query", self.index.query, item_filter, CONTEXT_LIMIT
            )
            if outcome.ok:
                # The index returns the newest matches; it has no insertion order, so sort by time.
                items = sorted(outcome.value, key=lambda item: item.timestamp)
                return RetrievalResult(items=items[-CONTEXT_LIMIT:])

        items = await asyncio.to_thread(self.store.read_all)
        matches = [item for item in items if item_filter.matches(item)]
        return RetrievalResult(items=matches[-CONTEXT_LIMIT:], degraded=self.index is not None)


def build_engine(config: RagStoreConfig) -> MemoryEngine:
    """Wire a MemoryEngine from configuration."""
    store = FileStore(Path(config.storage.path), lock_timeout=config.storage.lock_timeout)
    embed = HashEmbedding(config.index.embedding_dim)
    index: PrimaryIndex | None = None
    if config.index.enabled:
        index = QdrantIndex(
            embed.dim,
            config.index.collection,
            url=config.index.url,
            path=str(config.index.path) if config.index.path else None,
            location=config.index.location,
            timeout=config.index.timeout,
        )
    return MemoryEngine(store, index, embed=embed, index_timeout=config.index.timeout)
