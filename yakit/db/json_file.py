"""JSON file persistence shared by the local stores.

Every file has one asyncio.Lock per event loop, shared by all stores opened
on that path. Writers hold the lock across the whole read-modify-write, and
files are replaced atomically, so a crash leaves either the previous or the
new content on disk, never neither.
"""

import asyncio
import json
import logging
import os
import tempfile
import weakref
from pathlib import Path
from typing import Any

from yakit.db.exceptions import CorruptStoreError, StoreWriteError

logger = logging.getLogger(__name__)

# event loop -> resolved file path -> lock
_LOCKS: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()


def lock_for(path: Path) -> asyncio.Lock:
    """Return the lock guarding *path* on the running event loop."""
    locks = _LOCKS.setdefault(asyncio.get_running_loop(), {})
    key = Path(path).resolve()
    lock = locks.get(key)
    if lock is None:
        lock = locks[key] = asyncio.Lock()
    return lock


def atomic_write(target: Path, content: str):
    """Write content to a file atomically via a temp file + rename.

    The temp file lives in the target's directory so os.replace() stays on
    one filesystem.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class JsonFileStore:
    """A JSON array persisted in a single file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def lock(self) -> asyncio.Lock:
        """Single-writer lock for this file, shared with every other store on it."""
        return lock_for(self.path)

    def _read_sync(self) -> list[Any] | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CorruptStoreError(self.path, str(e)) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptStoreError(self.path, f"invalid JSON ({e})") from e
        if not isinstance(data, list):
            raise CorruptStoreError(self.path, f"expected a JSON array, got {type(data).__name__}")
        return data

    async def read(self) -> list[Any] | None:
        """Return the stored array, or None when the file does not exist.

        Raises CorruptStoreError when the file exists but is unusable.
        """
        return await asyncio.to_thread(self._read_sync)

    async def write(self, data: list[Any]) -> None:
        content = json.dumps(data, ensure_ascii=False)
        try:
            await asyncio.to_thread(atomic_write, self.path, content)
        except OSError as e:
            logger.error("Failed to write %s: %s", self.path, e)
            raise StoreWriteError(f"Failed to write {self.path}: {e}") from e
