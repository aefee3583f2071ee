"""Async subprocess helpers."""

import asyncio
import logging
import shutil
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CompletedCommand:
    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(argv: list[str], timeout: float) -> CompletedCommand:
    """Run *argv* to completion and capture its output.

    The process is killed when *timeout* elapses and asyncio.TimeoutError is
    raised. A missing executable raises FileNotFoundError.
    """
    logger.debug("Running %s", " ".join(argv))
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    return CompletedCommand(
        argv=list(argv),
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
    )


def is_command_available(cmd: str) -> bool:
    """Check if a command is available on PATH."""
    return shutil.which(cmd) is not None
