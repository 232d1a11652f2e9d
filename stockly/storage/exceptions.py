"""Exception hierarchy for storage backends."""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all storage errors."""


class KeyValueStoreError(StorageError):
    """A key-value read or write failed."""


class AlertStoreError(StorageError):
    """The relational alert / device / log store failed."""
