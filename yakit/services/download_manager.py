"""Streaming downloads of engine binaries and desktop installers.

A download is an async stream of DownloadEvent items: one PROGRESS event per
received chunk, then exactly one terminal COMPLETED or FAILED event.

Bytes are written to ``<dest>.part`` and renamed onto ``<dest>`` only after
the body has been fully received, so ``dest`` never holds a partial file.
Any previous file at ``dest`` is deleted before the download starts.

Retry policy: establishing the connection (up to response headers) is
retried on connect errors and timeouts with exponential backoff. Once the
body has started streaming, a transport error fails the download; the next
download starts again from byte zero.
"""

import asyncio
import inspect
import logging
import os
import time
from pathlib import Path
from typing import AsyncIterator, Callable

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from yakit.config import settings
from yakit.core.exceptions import TransportError
from yakit.core.platform import app_download_url, engine_download_url, staging_path
from yakit.models.download import DownloadEvent, DownloadEventKind, DownloadProgress

logger = logging.getLogger(__name__)

_RETRYABLE = (httpx.ConnectError, httpx.TimeoutException)

ProgressCallback = Callable[[DownloadEvent], object]


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class DownloadManager:
    """Downloads files over HTTP(S) with progress events."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int | None = None,
        backoff_min: float = 1,
        backoff_max: float = 10,
    ):
        self.transport = transport
        self.max_attempts = max_attempts or settings.download_max_attempts
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.download_timeout_seconds,
                connect=settings.download_connect_timeout_seconds,
            ),
            follow_redirects=True,
            transport=self.transport,
        )

    async def _open(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        """Send the request and return the response with its body unread."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(min=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception_type(_RETRYABLE),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "Retrying download of %s (attempt %d/%d)",
                        url, attempt.retry_state.attempt_number, self.max_attempts,
                    )
                response = await client.send(client.build_request("GET", url), stream=True)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            await response.aclose()
            raise
        return response

    async def stream(self, url: str, dest: Path) -> AsyncIterator[DownloadEvent]:
        """Download *url* to *dest*, yielding progress and a terminal event.

        Cancelling the consuming task (or closing the stream early) removes
        the partial file.
        """
        dest = Path(dest)
        part = dest.with_name(dest.name + ".part")
        dest.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(_unlink_quietly, dest)
        await asyncio.to_thread(_unlink_quietly, part)

        started = time.monotonic()
        progress = DownloadProgress()
        finished = False
        logger.info("Downloading %s -> %s", url, dest)

        try:
            try:
                async with self._client() as client:
                    response = await self._open(client, url)
                    try:
                        length = response.headers.get("Content-Length")
                        total = int(length) if length and length.isdigit() else None
                        f = await asyncio.to_thread(open, part, "wb")
                        try:
                            async for chunk in response.aiter_bytes(settings.download_chunk_size):
                                await asyncio.to_thread(f.write, chunk)
                                progress = DownloadProgress(
                                    transferred=progress.transferred + len(chunk),
                                    total=total,
                                    elapsed=time.monotonic() - started,
                                )
                                yield DownloadEvent(
                                    kind=DownloadEventKind.PROGRESS, url=url, dest=dest, progress=progress
                                )
                        finally:
                            await asyncio.to_thread(f.close)
                    finally:
                        await response.aclose()
                await asyncio.to_thread(os.replace, part, dest)
            except (httpx.HTTPError, OSError) as e:
                logger.error("Download of %s failed: %s", url, e)
                finished = True
                await asyncio.to_thread(_unlink_quietly, part)
                yield DownloadEvent(
                    kind=DownloadEventKind.FAILED, url=url, dest=dest, progress=progress, error=str(e) or type(e).__name__
                )
                return

            finished = True
            logger.info("Downloaded %d bytes to %s", progress.transferred, dest)
            yield DownloadEvent(kind=DownloadEventKind.COMPLETED, url=url, dest=dest, progress=progress)
        finally:
            if not finished:
                _unlink_quietly(part)

    async def download(self, url: str, dest: Path, on_progress: ProgressCallback | None = None) -> Path:
        """Download *url* to *dest* and return *dest*.

        *on_progress* (sync or async) receives every event. Raises
        TransportError when the download fails.
        """
        async for event in self.stream(url, dest):
            if on_progress is not None:
                result = on_progress(event)
                if inspect.isawaitable(result):
                    await result
            if event.kind == DownloadEventKind.FAILED:
                raise TransportError("download", f"{url}: {event.error}")
        return Path(dest)

    async def download_engine(self, version: str, on_progress: ProgressCallback | None = None) -> Path:
        """Fetch the engine binary for *version* into the staging directory."""
        return await self.download(engine_download_url(version), staging_path(version), on_progress)

    async def download_app(self, version: str, on_progress: ProgressCallback | None = None) -> Path:
        """Fetch the desktop installer for *version* into the staging directory."""
        url = app_download_url(version)
        dest = settings.engine_dir / url.rsplit("/", 1)[-1]
        return await self.download(url, dest, on_progress)
