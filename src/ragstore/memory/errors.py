"""Error types raised by the memory engine and its backends."""

from __future__ import annotations


class RagStoreError(Exception):
    """Base class for all ragstore errors."""


class ValidationError(RagStoreError):
    """A required argument is missing or has the wrong shape."""


class StorageError(RagStoreError):
    """The file store could not be read or written."""


class CapabilityUnavailable(RagStoreError):
    """The primary index is absent, not ready, or failed for this call."""
