"""Queries for the latest published versions and the installed engine version."""

import asyncio
import logging

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from yakit.config import settings
from yakit.core.commands import run_command
from yakit.core.exceptions import SubprocessError, TransportError
from yakit.core.platform import ensure_path_has_local_bin, latest_url

logger = logging.getLogger(__name__)

NOTIFICATION_MARKER = "# Yakit Notification"
ENGINE_VERSION_PREFIX = "yak version "
UNKNOWN_VERSION_REASON = "[unknown reason] cannot fetch yak version (yak -v)"


def with_v_prefix(raw: str) -> str:
    """'1.2.3\\n' -> 'v1.2.3'."""
    value = raw.strip()
    if not value:
        return value
    return value if value.startswith("v") else f"v{value}"


class VersionChecker:
    """Reads version strings and notifications from the download origin."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _fetch(self, url: str) -> str:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds),
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content.decode("utf-8", errors="replace")

    async def _fetch_text(self, filename: str) -> str:
        url = latest_url(filename)
        try:
            return await self._fetch(url)
        except httpx.HTTPError as e:
            logger.error("Failed to fetch %s: %s", url, e)
            raise TransportError(f"fetch {filename}", str(e) or type(e).__name__) from e

    async def latest_engine_version(self) -> str:
        return with_v_prefix(await self._fetch_text("version.txt"))

    async def latest_app_version(self) -> str:
        return with_v_prefix(await self._fetch_text("yakit-version.txt"))

    async def latest_notification(self) -> str:
        """Return the notification markdown, or '' when none is published."""
        passage = await self._fetch_text("notification.md")
        if not passage.startswith(NOTIFICATION_MARKER):
            return ""
        return passage

    async def installed_engine_version(self) -> str:
        """Ask the installed engine for its version via ``yak -v``."""
        ensure_path_has_local_bin()
        argv = [settings.engine_name, "-v"]
        try:
            result = await run_command(argv, timeout=settings.subprocess_timeout_seconds)
        except FileNotFoundError as e:
            raise SubprocessError("get installed engine version", f"{argv[0]} not found") from e
        except asyncio.TimeoutError as e:
            raise SubprocessError("get installed engine version", "yak -v timed out") from e

        version = result.stdout.replace(ENGINE_VERSION_PREFIX, "").strip()
        if version:
            return version
        if not result.ok:
            raise SubprocessError(
                "get installed engine version",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        raise SubprocessError("get installed engine version", UNKNOWN_VERSION_REASON)
