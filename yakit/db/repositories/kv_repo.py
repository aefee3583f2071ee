"""Repository for local key-value settings."""

import logging
from pathlib import Path
from typing import Any

from yakit.config import settings
from yakit.db.json_file import JsonFileStore

logger = logging.getLogger(__name__)


def _to_mapping(entries: list[Any] | None) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("key"):
            mapping[str(entry["key"])] = entry.get("value")
    return mapping


def _to_entries(mapping: dict[str, Any]) -> list[dict[str, Any]]:
    return [{"key": key, "value": mapping[key]} for key in sorted(mapping)]


class KVRepository:
    """Flat key -> value settings stored as ``[{key, value}, ...]`` sorted by key."""

    def __init__(self, path: Path | None = None):
        self.store = JsonFileStore(path or settings.kv_file)

    async def all(self) -> dict[str, Any]:
        return _to_mapping(await self.store.read())

    async def get(self, key: str) -> Any | None:
        """Return the value for *key*, re-reading the file on every call."""
        return (await self.all()).get(str(key))

    async def set(self, key: str, value: Any) -> None:
        key = str(key)
        async with self.store.lock:
            mapping = _to_mapping(await self.store.read())
            mapping[key] = value
            await self.store.write(_to_entries(mapping))
        logger.debug("Stored local value for key %s", key)
