"""Project memory — two-tier store for typed notes.

Layout:
    ~/.ragstore/
    ├── ragstore.toml                  # Optional config (env vars win)
    └── rag-store/
        ├── memory.json                # File store: JSON array, insertion order
        └── memory.json.lock           # Write lock for read-modify-write appends

The primary index (Qdrant collection ``project_memory``) mirrors every item
with its embedding. It is optional; every read falls back to memory.json.
"""
