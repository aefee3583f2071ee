"""Repository for remote connection profiles."""

import logging
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from yakit.config import settings
from yakit.core.exceptions import InvalidProfileError
from yakit.db.exceptions import CorruptStoreError
from yakit.db.json_file import JsonFileStore
from yakit.models.auth_profile import RemoteAuthProfile

logger = logging.getLogger(__name__)


def dedupe_by_name(profiles: Iterable[RemoteAuthProfile]) -> list[RemoteAuthProfile]:
    """Keep the first profile for each name, preserving order."""
    seen: set[str] = set()
    unique = []
    for profile in profiles:
        if profile.name in seen:
            continue
        seen.add(profile.name)
        unique.append(profile)
    return unique


def _parse_profiles(entries: list[Any] | None) -> list[RemoteAuthProfile]:
    profiles = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        try:
            profile = RemoteAuthProfile.model_validate(entry)
        except ValidationError as e:
            logger.warning("Skipping unreadable auth profile: %s", e)
            continue
        if not profile.is_complete:
            continue
        profiles.append(profile)
    return profiles


class AuthProfileRepository:
    """Deduplicated list of remote auth profiles, unique by name."""

    def __init__(self, path: Path | None = None):
        self.store = JsonFileStore(path or settings.secret_file)
        self.profiles: list[RemoteAuthProfile] = []

    @property
    def secret_dir(self) -> Path:
        return self.store.path.parent

    async def _read(self) -> list[RemoteAuthProfile]:
        return _parse_profiles(await self.store.read())

    async def _write(self, profiles: Iterable[RemoteAuthProfile]) -> list[RemoteAuthProfile]:
        unique = dedupe_by_name(profiles)
        await self.store.write([p.to_json() for p in unique])
        self.profiles = unique
        return unique

    async def load(self) -> list[RemoteAuthProfile]:
        """Reload profiles from disk.

        A missing file yields an empty list. A corrupt file raises
        CorruptStoreError and leaves the in-memory list untouched.
        """
        try:
            self.profiles = await self._read()
        except CorruptStoreError as e:
            logger.error("Cannot load auth profiles: %s", e)
            raise
        return list(self.profiles)

    async def save_all(self, profiles: Iterable[RemoteAuthProfile]) -> list[RemoteAuthProfile]:
        """Replace the stored profiles; the first profile per name wins."""
        async with self.store.lock:
            return list(await self._write(profiles))

    async def save_one(self, profile: RemoteAuthProfile) -> RemoteAuthProfile:
        """Store *profile*, replacing any stored profile with the same name."""
        if not profile.is_complete:
            raise InvalidProfileError("save remote auth", "empty host or port")
        async with self.store.lock:
            existing = await self._read()
            await self._write([p for p in existing if p.name != profile.name] + [profile])
        logger.info("Saved remote auth profile %s", profile.name)
        return profile

    async def remove_by_name(self, name: str) -> bool:
        """Delete the profile called *name*. Returns True if one was removed."""
        async with self.store.lock:
            existing = await self._read()
            remaining = [p for p in existing if p.name != name]
            await self._write(remaining)
        removed = len(remaining) != len(existing)
        if removed:
            logger.info("Removed remote auth profile %s", name)
        return removed
