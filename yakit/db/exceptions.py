"""Persistence exceptions for the JSON-backed stores."""

from pathlib import Path


class StoreError(Exception):
    """Base exception for store operations."""

    pass


class CorruptStoreError(StoreError):
    """Raised when a store file exists but cannot be parsed."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        super().__init__(f"Store file {path} is corrupt: {reason}")


class StoreWriteError(StoreError):
    """Raised when a store file cannot be written."""

    pass
