# infrastructure/errors.py
"""Exceptions raised by the storage layer."""


class StorageError(Exception):
    """Base class for storage failures the caller must know about."""


class StorageWriteError(StorageError):
    """A collection could not be durably written.

    The previously committed state is left untouched.
    """

    def __init__(self, collection: str, message: str):
        super().__init__(f"{collection}: {message}")
        self.collection = collection


class ValueTooLargeError(StorageError):
    """A value exceeds the per-key size ceiling of the key-value store."""

    def __init__(self, key: str, size: int, limit: int):
        super().__init__(f"Value for '{key}' is {size} bytes (limit {limit})")
        self.key = key
        self.size = size
        self.limit = limit
