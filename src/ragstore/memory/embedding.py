"""Deterministic placeholder embedding.

Swap in a real model by passing any callable with a ``dim`` attribute
to the engine and the index.
"""

from __future__ import annotations

import math
from typing import Protocol, runtime_checkable

EMBEDDING_DIM = 1536


@runtime_checkable
class EmbeddingFunction(Protocol):
    """Maps text to a fixed-length vector."""

    @property
    def dim(self) -> int: ...

    def __call__(self, text: str) -> list[float]: ...


class HashEmbedding:
    """Sine wave seeded by the sum of the text's code points."""

    def __init__(self, dim: int = EMBEDDING_DIM) -> None:
        if dim <= 0:
            raise ValueError(f"embedding dim must be positive, got {dim}")
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def __call__(self, text: str) -> list[float]:
        seed = sum(ord(ch) for ch in text)
        return [math.sin((seed + i) * 0.1) * 0.1 for i in range(self._dim)]
