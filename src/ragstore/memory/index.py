"""Primary index: the optional similarity-searchable tier.

The engine only talks to the ``PrimaryIndex`` protocol. ``QdrantIndex`` is
the shipped backend; it runs against a Qdrant server (``url``), an on-disk
local collection (``path``) or an in-process one (``location=":memory:"``).
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol, runtime_checkable

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Direction,
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    OrderBy,
    PayloadSchemaType,
    PointStruct,
    Range,
    VectorParams,
)

from ragstore.memory.errors import CapabilityUnavailable
from ragstore.memory.item import ItemFilter, MemoryItem

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "project_memory"


@runtime_checkable
class PrimaryIndex(Protocol):
    """Contract every primary index backend must satisfy.

    All methods are blocking; the engine runs them in a worker thread under
    a timeout.
    """

    @property
    def name(self) -> str: ...

    @property
    def ready(self) -> bool: ...

    def ensure_collection(self) -> None:
        """Create the collection and its indexes if absent. Idempotent."""
        ...

    def insert(self, item: MemoryItem, embedding: list[float]) -> None: ...

    def similarity_search(
        self,
        vector: list[float],
        item_filter: ItemFilter | None = None,
        limit: int = 5,
    ) -> list[MemoryItem]:
        """Nearest neighbours, closest first."""
        ...

    def query(self, item_filter: ItemFilter | None = None, limit: int = 20) -> list[MemoryItem]:
        """The ``limit`` most recent matches by timestamp, oldest first."""
        ...

    def close(self) -> None: ...


def point_id(item_id: str) -> str:
    """Qdrant only accepts UUID or integer point ids; derive a stable UUID."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"ragstore:{item_id}"))


def to_qdrant_filter(item_filter: ItemFilter | None) -> Filter | None:
    if item_filter is None or item_filter.is_empty:
        return None
    conditions = []
    if item_filter.type is not None:
        conditions.append(FieldCondition(key="type", match=MatchValue(value=item_filter.type)))
    if item_filter.min_timestamp is not None:
        conditions.append(
            FieldCondition(key="timestamp", range=Range(gte=item_filter.min_timestamp))
        )
    return Filter(must=conditions)


class QdrantIndex:
    """Qdrant collection keyed by item id, with L2 distance over embeddings."""

    def __init__(
        self,
        dim: int,
        collection: str = DEFAULT_COLLECTION,
        *,
        url: str | None = None,
        path: str | None = None,
        location: str | None = None,
        timeout: float = 5.0,
        client: QdrantClient | None = None,
    ) -> None:
        self.dim = dim
        self.collection = collection
        self.url = url
        self.path = path
        self.location = location
        self.timeout = timeout
        self._client = client
        self._ready = False

    @property
    def name(self) -> str:
        return "qdrant"

    @property
    def ready(self) -> bool:
        return self._ready

    # ── Lifecycle ─────────────────────────────────────────────

    def _connect(self) -> QdrantClient:
        if self._client is not None:
            return self._client
        if self.location:
            self._client = QdrantClient(location=self.location)
        elif self.path:
            self._client = QdrantClient(path=self.path)
        elif self.url:
            self._client = QdrantClient(url=self.url, timeout=max(1, int(self.timeout)))
        else:
            raise CapabilityUnavailable("no qdrant url, path or location configured")
        return self._client

    def ensure_collection(self) -> None:
        client = self._connect()
        if not client.collection_exists(collection_name=self.collection):
            client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=self.dim, distance=Distance.EUCLID),
            )
            logger.info("Created qdrant collection: %s (dim=%d)", self.collection, self.dim)
        else:
            logger.info("Using existing qdrant collection: %s", self.collection)
        # Server-mode order_by on timestamp needs the integer index; local mode ignores it.
        if self.is_server:
            client.create_payload_index(
                collection_name=self.collection,
                field_name="type",
                field_schema=PayloadSchemaType.KEYWORD,
            )
            client.create_payload_index(
                collection_name=self.collection,
                field_name="timestamp",
                field_schema=PayloadSchemaType.INTEGER,
            )
        self._ready = True

    @property
    def is_server(self) -> bool:
        return bool(self.url) and not (self.location or self.path)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        self._ready = False

    # ── Operations ────────────────────────────────────────────

    def _require_client(self) -> QdrantClient:
        if not self._ready or self._client is None:
            raise CapabilityUnavailable(f"qdrant collection {self.collection} is not ready")
        return self._client

    def insert(self, item: MemoryItem, embedding: list[float]) -> None:
        if len(embedding) != self.dim:
            raise ValueError(f"dim mismatch: expected {self.dim}, got {len(embedding)}")
        self._require_client().upsert(
            collection_name=self.collection,
            points=[PointStruct(id=point_id(item.id), vector=embedding, payload=item.to_dict())],
            wait=True,
        )
        logger.debug("Indexed %s in qdrant", item.id)

    def similarity_search(
        self,
        vector: list[float],
        item_filter: ItemFilter | None = None,
        limit: int = 5,
    ) -> list[MemoryItem]:
        response = self._require_client().query_points(
            collection_name=self.collection,
            query=vector,
            query_filter=to_qdrant_filter(item_filter),
            limit=limit,
            with_payload=True,
        )
        return [MemoryItem.from_dict(point.payload) for point in response.points]

    def query(self, item_filter: ItemFilter | None = None, limit: int = 20) -> list[MemoryItem]:
        records, _next = self._require_client().scroll(
            collection_name=self.collection,
            scroll_filter=to_qdrant_filter(item_filter),
            limit=limit,
            order_by=OrderBy(key="timestamp", direction=Direction.DESC),
            with_payload=True,
            with_vectors=False,
        )
        # Fetched newest first; return oldest first so the newest match is last.
        return [MemoryItem.from_dict(record.payload) for record in reversed(records)]
