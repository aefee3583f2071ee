"""Discovery and termination of running engine processes.

There is no portable way to ask the OS which process owns which listening
socket, so the directory joins two independent listings by PID:

  Windows: ``netstat -ano`` (listening sockets) + the process table
  POSIX:   the process table alone; the port is read back from the
           ``--port N`` argument the launcher passed on the command line

Port attribution is best effort: a process whose port cannot be determined
is still reported, with ``port=0``.
"""

import asyncio
import logging
import platform
import re

import psutil

from yakit.config import settings
from yakit.core.commands import run_command
from yakit.core.elevation import Elevator
from yakit.core.exceptions import PrivilegeError, SubprocessError
from yakit.models.process import ProcessRecord

logger = logging.getLogger(__name__)

_PORT_ARG_RE = re.compile(r"port\s+(\d+)")


# ---------------------------------------------------------------------------
# Parsers (pure, tested against captured output)
# ---------------------------------------------------------------------------


def parse_netstat_listening(stdout: str) -> dict[int, list[int]]:
    """Build a PID -> listening ports table from ``netstat -ano`` rows.

    Only five-column rows (proto, local, foreign, state, pid) are used; the
    port is the part of the local address after its last ':'. Rows that do
    not fit are skipped.
    """
    table: dict[int, list[int]] = {}
    for line in stdout.splitlines():
        fields = line.split()
        if len(fields) != 5:
            continue
        local_address = fields[1]
        try:
            pid = int(fields[4])
            port = int(local_address[local_address.rindex(":") + 1:])
        except ValueError:
            logger.debug("Skipping unparseable netstat row: %r", line)
            continue
        table.setdefault(pid, []).append(port)
    return table


def parse_port_from_command_line(command_line: str) -> int:
    """Extract N from '... --port N ...', or 0."""
    match = _PORT_ARG_RE.search(command_line or "")
    if match is None:
        return 0
    return int(match.group(1))


def _iter_processes() -> list[tuple[int, str, str]]:
    """Snapshot (pid, name, command line) for every visible process."""
    snapshot = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            info = proc.info
            cmdline = info.get("cmdline") or []
            snapshot.append((info["pid"], info.get("name") or "", " ".join(cmdline)))
        except (psutil.NoSuchProcess, psutil.AccessDenied, KeyError):
            continue
    return snapshot


# ---------------------------------------------------------------------------
# Platform strategies
# ---------------------------------------------------------------------------


class WindowsProcessStrategy:
    """netstat listening table joined with the process list by PID."""

    kill_name_template = "taskkill F PID {pid}"

    def __init__(self, engine_name: str, timeout: float):
        self.engine_name = engine_name
        self.timeout = timeout

    async def list_processes(self) -> list[ProcessRecord]:
        result = await run_command(["netstat", "-ano"], timeout=self.timeout)
        if not result.ok:
            raise SubprocessError(
                "list engine processes",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        listening = "\n".join(
            line for line in result.stdout.splitlines() if "LISTENING" in line
        )
        pid_to_ports = parse_netstat_listening(listening)

        processes = await asyncio.to_thread(_iter_processes)
        records = []
        for pid, name, cmdline in processes:
            if self.engine_name not in name:
                continue
            ports = pid_to_ports.get(pid) or [0]
            records.append(ProcessRecord(pid=pid, name=name, command_line=cmdline, port=ports[0]))
        return records

    def kill_argv(self, pid: int) -> list[str]:
        return ["taskkill", "/F", "/PID", str(pid)]


class PosixProcessStrategy:
    """Process list filtered to '<engine> grpc' invocations."""

    kill_name_template = "kill SIGKILL PID {pid}"

    def __init__(self, engine_name: str, timeout: float):
        self.engine_name = engine_name
        self.timeout = timeout

    async def list_processes(self) -> list[ProcessRecord]:
        processes = await asyncio.to_thread(_iter_processes)
        records = []
        for pid, name, cmdline in processes:
            if name != self.engine_name or "grpc" not in cmdline.split():
                continue
            records.append(
                ProcessRecord(
                    pid=pid,
                    name=name,
                    command_line=cmdline,
                    port=parse_port_from_command_line(cmdline),
                )
            )
        return records

    def kill_argv(self, pid: int) -> list[str]:
        return ["kill", "-9", str(pid)]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class ProcessDirectory:
    """Lists and kills engine processes on the current platform."""

    def __init__(self, elevator: Elevator | None = None, strategy=None):
        self.elevator = elevator or Elevator()
        self._strategy = strategy

    @property
    def strategy(self):
        if self._strategy is None:
            cls = WindowsProcessStrategy if platform.system() == "Windows" else PosixProcessStrategy
            self._strategy = cls(settings.engine_name, settings.subprocess_timeout_seconds)
        return self._strategy

    async def list_engine_processes(self) -> list[ProcessRecord]:
        records = await self.strategy.list_processes()
        logger.debug("Found %d engine process(es)", len(records))
        return records

    async def kill_process(self, pid: int) -> bool:
        """Kill *pid*, retrying once through an elevation prompt.

        Returns False when both attempts fail; never raises.
        """
        try:
            pid = int(pid)
        except (TypeError, ValueError):
            logger.warning("Refusing to kill invalid pid %r", pid)
            return False
        if pid <= 0:
            logger.warning("Refusing to kill invalid pid %d", pid)
            return False

        argv = self.strategy.kill_argv(pid)
        try:
            result = await run_command(argv, timeout=settings.subprocess_timeout_seconds)
            if result.ok:
                logger.info("Killed engine process %d", pid)
                return True
            logger.info("Unprivileged kill of %d failed (%s), retrying elevated", pid, result.stderr.strip())
        except (OSError, asyncio.TimeoutError) as e:
            logger.info("Unprivileged kill of %d failed (%s), retrying elevated", pid, e)

        try:
            await self.elevator.run(argv, self.strategy.kill_name_template.format(pid=pid))
        except PrivilegeError as e:
            logger.warning("Could not kill process %d: %s", pid, e)
            return False
        except Exception as e:
            logger.error("Unexpected error killing process %d: %s", pid, e, exc_info=True)
            return False
        logger.info("Killed engine process %d with elevation", pid)
        return True
