"""Starts the installed engine as a long-running gRPC service."""

import asyncio
import logging
import os
import platform
import random
from pathlib import PurePath

from yakit.config import settings
from yakit.core.elevation import Elevator
from yakit.core.exceptions import (
    EngineNotInstalledError,
    PortInUseError,
    PreconditionError,
    PrivilegeError,
    SubprocessError,
)
from yakit.core.platform import ensure_path_has_local_bin, install_path
from yakit.models.process import LaunchResult

logger = logging.getLogger(__name__)

START_OPERATION = "start engine"

# Fragments engines print when bind() fails, across Go runtimes and OSes
_PORT_IN_USE_MARKERS = (
    "address already in use",
    "only one usage of each socket address",
    "eaddrinuse",
    "bind: address",
)


def choose_port() -> int:
    """Pick a port uniformly from the configured half-open range."""
    return random.randrange(settings.port_range_start, settings.port_range_end)


async def _drain_stderr(process: asyncio.subprocess.Process, port: int) -> int:
    """Forward engine stderr to the log until the engine exits.

    Keeps the pipe from filling up. Returns the exit code.
    """
    if process.stderr is not None:
        async for line in process.stderr:
            logger.debug("engine:%d %s", port, line.decode("utf-8", errors="replace").rstrip())
    returncode = await process.wait()
    logger.info("Engine on port %d exited with code %s", port, returncode)
    return returncode


def _is_port_in_use_output(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _PORT_IN_USE_MARKERS)


class Launcher:
    """Spawns ``<engine> grpc --port N`` on a random port."""

    def __init__(self, elevator: Elevator | None = None, target: PurePath | str | None = None):
        self.elevator = elevator or Elevator()
        self._target = target
        self.processes: dict[int, asyncio.subprocess.Process] = {}
        self.stream_tasks: list[asyncio.Task] = []

    @property
    def target(self) -> PurePath:
        return PurePath(self._target) if self._target is not None else install_path()

    def check_preconditions(self) -> None:
        """Fail fast when the engine is not installed (POSIX only)."""
        if platform.system() == "Windows":
            return
        if not os.path.isdir(str(self.target.parent)):
            raise PreconditionError(START_OPERATION, f"missing install directory: {self.target.parent}")
        if not os.path.exists(str(self.target)):
            raise EngineNotInstalledError(START_OPERATION, f"engine not installed: {self.target}")

    async def start(self, elevated: bool = False) -> LaunchResult:
        """Launch the engine and return the port it was told to listen on.

        Does not wait for the gRPC listener to become ready. The child is
        watched for ``launch_grace_seconds``: exiting early because the port
        is taken raises PortInUseError, any other early exit raises
        SubprocessError. Callers may retry with a fresh port.
        """
        self.check_preconditions()
        ensure_path_has_local_bin()

        port = choose_port()
        argv = [str(self.target), "grpc", "--port", str(port)]
        name = f"yak grpc port {port}"
        if elevated:
            argv = self.elevator.wrap(argv, name, wait=False)

        logger.info("Starting engine on port %d%s", port, " (elevated)" if elevated else "")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=platform.system() != "Windows",
            )
        except OSError as e:
            if elevated:
                raise PrivilegeError(name, str(e)) from e
            raise SubprocessError(START_OPERATION, str(e)) from e

        if await self._watch_startup(process, port, name, elevated):
            self._supervise(process, port)
        return LaunchResult(port=port, pid=process.pid, elevated=elevated)

    def _supervise(self, process: asyncio.subprocess.Process, port: int) -> None:
        """Track a running engine until it exits."""
        self.processes[port] = process
        task = asyncio.create_task(_drain_stderr(process, port))
        self.stream_tasks.append(task)
        task.add_done_callback(lambda t: self._forget(t, process, port))

    def _forget(self, task: asyncio.Task, process: asyncio.subprocess.Process, port: int) -> None:
        if task in self.stream_tasks:
            self.stream_tasks.remove(task)
        if self.processes.get(port) is process:
            del self.processes[port]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Lost track of engine on port %d: %s", port, task.exception())

    async def _watch_startup(
        self, process: asyncio.subprocess.Process, port: int, name: str, elevated: bool
    ) -> bool:
        """Return True if the engine is still running after the grace period."""
        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=settings.launch_grace_seconds)
        except asyncio.TimeoutError:
            return True

        stderr = b""
        if process.stderr is not None:
            stderr = await process.stderr.read()
        output = stderr.decode("utf-8", errors="replace")

        if elevated and returncode == 0:
            # Some elevation wrappers return once the engine has been handed off
            return False
        if _is_port_in_use_output(output):
            logger.warning("Engine could not bind port %d", port)
            raise PortInUseError(port, output.strip())
        if elevated:
            raise PrivilegeError(name, output.strip() or f"exit code {returncode}")
        raise SubprocessError(
            START_OPERATION,
            f"engine exited with code {returncode}",
            returncode=returncode,
            stderr=output,
        )
