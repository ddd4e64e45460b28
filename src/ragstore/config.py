"""Configuration loading from environment variables and ragstore.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".ragstore"
_DEFAULT_STORAGE_PATH = _DEFAULT_HOME / "rag-store" / "memory.json"
_CONFIG_FILENAME = "ragstore.toml"
_FALSY = {"0", "false", "no", "off", ""}


@dataclass
class StorageConfig:
    """File store configuration."""

    path: Path = _DEFAULT_STORAGE_PATH
    lock_timeout: float = 10.0


@dataclass
class IndexConfig:
    """Primary index (Qdrant) configuration."""

    enabled: bool = True
    url: str | None = "http://localhost:6333"
    path: Path | None = None
    location: str | None = None
    collection: str = "project_memory"
    embedding_dim: int = 1536
    timeout: float = 5.0


@dataclass
class RagStoreConfig:
    """Top-level ragstore configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    log_level: str = "INFO"


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in _FALSY


def load_config(config_path: Path | None = None) -> RagStoreConfig:
    """Load configuration from environment variables and optional ragstore.toml.

    Priority: environment variables > ragstore.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.ragstore/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_HOME / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})
    index_data = file_data.get("index", {})

    storage_path = os.getenv(
        "RAGSTORE_STORAGE_PATH", storage_data.get("path", str(_DEFAULT_STORAGE_PATH))
    )
    index_path = os.getenv("RAGSTORE_QDRANT_PATH", index_data.get("path"))

    config = RagStoreConfig(
        storage=StorageConfig(
            path=Path(storage_path).expanduser(),
            lock_timeout=float(
                os.getenv("RAGSTORE_LOCK_TIMEOUT", storage_data.get("lock_timeout", 10.0))
            ),
        ),
        index=IndexConfig(
            enabled=_as_bool(os.getenv("RAGSTORE_INDEX_ENABLED", index_data.get("enabled", True))),
            url=os.getenv("RAGSTORE_QDRANT_URL", index_data.get("url", "http://localhost:6333")),
            path=Path(index_path).expanduser() if index_path else None,
            location=index_data.get("location"),
            collection=os.getenv(
                "RAGSTORE_COLLECTION", index_data.get("collection", "project_memory")
            ),
            embedding_dim=int(
                os.getenv("RAGSTORE_EMBEDDING_DIM", index_data.get("embedding_dim", 1536))
            ),
            timeout=float(os.getenv("RAGSTORE_INDEX_TIMEOUT", index_data.get("timeout", 5.0))),
        ),
        log_level=os.getenv("RAGSTORE_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
