"""OS-level privilege elevation.

Every privileged action goes through ``Elevator``: it wraps a command so the
operating system asks the user for permission once, with a human-readable
description of what is about to happen.

  macOS:   osascript "do shell script ... with administrator privileges"
  Linux:   pkexec (graphical polkit prompt), sudo when pkexec is missing
  Windows: PowerShell Start-Process -Verb RunAs (UAC prompt)

When the current process is already privileged the command runs unchanged.
"""

import asyncio
import logging
import os
import platform
import shlex
import subprocess

from yakit.config import settings
from yakit.core.commands import CompletedCommand, is_command_available, run_command
from yakit.core.exceptions import PrivilegeError

logger = logging.getLogger(__name__)


def is_admin() -> bool:
    """Return True if running with administrative privileges."""
    if platform.system() == "Windows":
        try:
            import ctypes

            windll = getattr(ctypes, "windll", None)
            if windll is None:
                return False
            return bool(windll.shell32.IsUserAnAdmin())
        except Exception:
            return False
    return hasattr(os, "geteuid") and os.geteuid() == 0


def _applescript_string(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _powershell_string(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


class Elevator:
    """Runs commands with elevated privileges after prompting the user."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.elevation_timeout_seconds

    def wrap(self, argv: list[str], name: str, wait: bool = True) -> list[str]:
        """Return the argv that executes *argv* elevated.

        With ``wait=False`` the Windows wrapper returns as soon as the
        elevated process has started, which is what long-running services need.
        """
        system = platform.system()
        if is_admin():
            return list(argv)

        if system == "Darwin":
            script = (
                f"do shell script {_applescript_string(shlex.join(argv))} "
                f"with administrator privileges with prompt {_applescript_string(name)}"
            )
            return ["osascript", "-e", script]

        if system == "Windows":
            command = (
                f"$p = Start-Process -FilePath {_powershell_string(argv[0])}"
                f" -Verb RunAs -WindowStyle Hidden -PassThru"
            )
            if len(argv) > 1:
                command += f" -ArgumentList {_powershell_string(subprocess.list2cmdline(argv[1:]))}"
            if wait:
                command += " -Wait; exit $p.ExitCode"
            return ["powershell", "-NoProfile", "-NonInteractive", "-Command", command]

        if is_command_available("pkexec"):
            return ["pkexec", *argv]
        return ["sudo", *argv]

    async def run(self, argv: list[str], name: str) -> CompletedCommand:
        """Run *argv* elevated and wait for it.

        Raises PrivilegeError when the prompt is declined, the wrapper is
        unavailable, the command times out or exits non-zero.
        """
        wrapped = self.wrap(argv, name)
        logger.info("Requesting elevation for '%s'", name)
        try:
            result = await run_command(wrapped, timeout=self.timeout)
        except FileNotFoundError as e:
            raise PrivilegeError(name, f"elevation helper not found: {wrapped[0]}") from e
        except OSError as e:
            raise PrivilegeError(name, f"cannot run {wrapped[0]}: {e}") from e
        except asyncio.TimeoutError as e:
            raise PrivilegeError(name, f"timed out after {self.timeout:.0f}s") from e

        if not result.ok:
            detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
            logger.warning("Elevated command '%s' failed: %s", name, detail)
            raise PrivilegeError(name, detail)
        return result
