"""Privileged installation of a staged engine binary.

States per version:

  STAGED -> INSTALL ----------------> INSTALLED
         -> UNINSTALL -> INSTALL ---> INSTALLED
  any step that raises ------------> FAILED

An existing binary at the install path is deleted first. Removing it is best
effort: whatever the delete step returns, the copy step runs next, and a
failing copy is what reports the install as failed.
"""

import asyncio
import logging
import os
import platform
import shlex
from enum import Enum
from pathlib import Path, PurePath

from yakit.core.elevation import Elevator
from yakit.core.exceptions import PreconditionError, PrivilegeError
from yakit.core.platform import install_path, staging_path

logger = logging.getLogger(__name__)

INSTALL_OPERATION = "Install Yak Binary"
UNINSTALL_OPERATION = "Delete Old Yak"


class InstallState(str, Enum):
    STAGED = "staged"
    UNINSTALL = "uninstall"
    INSTALL = "install"
    INSTALLED = "installed"
    FAILED = "failed"


class Installer:
    """Moves staged engine binaries into the system install path."""

    def __init__(self, elevator: Elevator | None = None, target: PurePath | str | None = None):
        self.elevator = elevator or Elevator()
        self._target = target
        self._states: dict[str, InstallState] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    @property
    def target(self) -> PurePath:
        return PurePath(self._target) if self._target is not None else install_path()

    def state(self, version: str) -> InstallState | None:
        return self._states.get(version)

    def is_engine_installed(self) -> bool:
        return os.path.exists(str(self.target))

    def _delete_argv(self) -> list[str]:
        dest = str(self.target)
        if platform.system() == "Windows":
            return ["cmd", "/c", "del", "/f", dest]
        return ["rm", dest]

    def _copy_argv(self, source: Path) -> list[str]:
        dest = str(self.target)
        if platform.system() == "Windows":
            return ["cmd", "/c", "copy", str(source), dest]
        script = (
            f"mkdir -p {shlex.quote(str(self.target.parent))}"
            f" && cp {shlex.quote(str(source))} {shlex.quote(dest)}"
            f" && chmod +x {shlex.quote(dest)}"
        )
        return ["sh", "-c", script]

    async def install(self, version: str) -> None:
        """Install the staged binary for *version*.

        Concurrent calls for the same version share one installation;
        installations of different versions run one after another.
        """
        task = self._in_flight.get(version)
        if task is None:
            task = asyncio.create_task(self._install(version))
            self._in_flight[version] = task
            task.add_done_callback(lambda _: self._in_flight.pop(version, None))
        else:
            logger.info("Install of %s already in progress, joining it", version)
        await asyncio.shield(task)

    async def _install(self, version: str) -> None:
        source = staging_path(version)
        async with self._lock:
            self._states[version] = InstallState.STAGED
            if not source.is_file():
                self._states[version] = InstallState.FAILED
                raise PreconditionError(INSTALL_OPERATION, f"no staged binary at {source}")

            try:
                if self.is_engine_installed():
                    self._states[version] = InstallState.UNINSTALL
                    await self._remove_existing()

                self._states[version] = InstallState.INSTALL
                await self.elevator.run(self._copy_argv(source), INSTALL_OPERATION)
            except Exception:
                self._states[version] = InstallState.FAILED
                raise

            self._states[version] = InstallState.INSTALLED
            logger.info("Installed engine %s at %s", version, self.target)

    async def _remove_existing(self) -> None:
        try:
            await self.elevator.run(self._delete_argv(), UNINSTALL_OPERATION)
        except PrivilegeError as e:
            logger.warning("Could not delete old engine at %s, installing anyway: %s", self.target, e)
