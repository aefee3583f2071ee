"""Tests for privileged engine installation.

Elevation is faked, so no command ever runs.
"""

import asyncio
from unittest.mock import patch

import pytest

from yakit.core.elevation import Elevator
from yakit.core.exceptions import PreconditionError, PrivilegeError
from yakit.core.platform import staging_path
from yakit.services.installer import (
    INSTALL_OPERATION,
    UNINSTALL_OPERATION,
    Installer,
    InstallState,
)

VERSION = "v1.2.3"


@pytest.fixture
def staged():
    path = staging_path(VERSION)
    path.write_bytes(b"\x7fELF engine")
    return path


@pytest.fixture
def target(tmp_path):
    return tmp_path / "usr" / "local" / "bin" / "yak"


def _installed(target):
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(b"old engine")


# ============================================================================
# Install flow
# ============================================================================

class TestInstallFlow:

    @pytest.mark.platform_linux
    @pytest.mark.asyncio
    async def test_fresh_install_copies_without_delete(self, elevator, staged, target, mock_linux):
        installer = Installer(elevator=elevator, target=target)
        await installer.install(VERSION)

        assert elevator.names == [INSTALL_OPERATION]
        argv = elevator.calls[0][1]
        assert argv[:2] == ["sh", "-c"]
        assert f"mkdir -p {target.parent}" in argv[2]
        assert f"cp {staged} {target}" in argv[2]
        assert f"chmod +x {target}" in argv[2]
        assert installer.state(VERSION) == InstallState.INSTALLED

    @pytest.mark.platform_linux
    @pytest.mark.asyncio
    async def test_existing_install_deletes_then_copies(self, elevator, staged, target, mock_linux):
        _installed(target)
        installer = Installer(elevator=elevator, target=target)
        await installer.install(VERSION)

        assert elevator.names == [UNINSTALL_OPERATION, INSTALL_OPERATION]
        assert elevator.calls[0][1] == ["rm", str(target)]

    @pytest.mark.platform_linux
    @pytest.mark.asyncio
    async def test_copy_runs_even_when_delete_fails(self, elevator_factory, staged, target, mock_linux):
        # Removing the old binary is best-effort cleanup: its failure is
        # logged and the copy step still runs.
        elevator = elevator_factory(fail={UNINSTALL_OPERATION})
        _installed(target)
        installer = Installer(elevator=elevator, target=target)
        await installer.install(VERSION)

        assert elevator.names == [UNINSTALL_OPERATION, INSTALL_OPERATION]
        assert installer.state(VERSION) == InstallState.INSTALLED

    @pytest.mark.asyncio
    async def test_declined_copy_fails_install(self, elevator_factory, staged, target, mock_linux):
        elevator = elevator_factory(fail={INSTALL_OPERATION})
        installer = Installer(elevator=elevator, target=target)
        with pytest.raises(PrivilegeError, match="did not grant"):
            await installer.install(VERSION)
        assert installer.state(VERSION) == InstallState.FAILED

    @pytest.mark.asyncio
    async def test_missing_staged_binary(self, elevator, target, mock_linux):
        installer = Installer(elevator=elevator, target=target)
        with pytest.raises(PreconditionError, match="no staged binary"):
            await installer.install("v9.9.9")
        assert elevator.calls == []
        assert installer.state("v9.9.9") == InstallState.FAILED

    @pytest.mark.platform_windows
    @pytest.mark.asyncio
    async def test_windows_commands(self, elevator, staged, target, mock_windows):
        _installed(target)
        installer = Installer(elevator=elevator, target=target)
        await installer.install(VERSION)

        assert elevator.calls[0][1] == ["cmd", "/c", "del", "/f", str(target)]
        assert elevator.calls[1][1] == ["cmd", "/c", "copy", str(staged), str(target)]


# ============================================================================
# Concurrency guard
# ============================================================================

class _SlowElevator:
    def __init__(self):
        self.calls = []

    async def run(self, argv, name):
        self.calls.append(name)
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_concurrent_installs_of_same_version_share_one_run(staged, target, mock_linux):
    elevator = _SlowElevator()
    installer = Installer(elevator=elevator, target=target)

    await asyncio.gather(*(installer.install(VERSION) for _ in range(5)))

    assert elevator.calls == [INSTALL_OPERATION]


@pytest.mark.asyncio
async def test_same_version_can_be_installed_again_later(staged, target, mock_linux):
    elevator = _SlowElevator()
    installer = Installer(elevator=elevator, target=target)

    await installer.install(VERSION)
    await installer.install(VERSION)

    assert elevator.calls == [INSTALL_OPERATION, INSTALL_OPERATION]


@pytest.mark.asyncio
async def test_different_versions_install_one_after_another(target, mock_linux):
    for version in ("v1", "v2"):
        staging_path(version).write_bytes(b"engine")

    order = []

    class _RecordingElevator:
        async def run(self, argv, name):
            order.append(("start", argv[2]))
            await asyncio.sleep(0.01)
            order.append(("end", argv[2]))

    installer = Installer(elevator=_RecordingElevator(), target=target)
    await asyncio.gather(installer.install("v1"), installer.install("v2"))

    assert [step for step, _ in order] == ["start", "end", "start", "end"]


# ============================================================================
# Install path helpers
# ============================================================================

def test_is_engine_installed(target):
    installer = Installer(target=target)
    assert installer.is_engine_installed() is False
    _installed(target)
    assert installer.is_engine_installed() is True


def test_default_target_on_posix(mock_linux):
    assert str(Installer().target) == "/usr/local/bin/yak"


def test_default_target_on_windows(mock_windows):
    assert str(Installer().target) == "C:\\Windows\\System32\\yak.exe"


# ============================================================================
# Real elevation wrapper
# ============================================================================

@pytest.mark.asyncio
async def test_unrunnable_delete_helper_still_copies(staged, target, result_factory, mock_linux):
    _installed(target)

    async def run_command(argv, timeout):
        if "rm" in argv:
            raise PermissionError(13, "Permission denied", "sudo")
        return result_factory(0)

    with patch("yakit.core.elevation.is_admin", return_value=False), \
         patch("yakit.core.elevation.is_command_available", return_value=False), \
         patch("yakit.core.elevation.run_command", side_effect=run_command) as run:
        installer = Installer(elevator=Elevator(timeout=5), target=target)
        await installer.install(VERSION)

    assert [call.args[0][:2] for call in run.call_args_list] == [["sudo", "rm"], ["sudo", "sh"]]
    assert installer.state(VERSION) == InstallState.INSTALLED


@pytest.mark.asyncio
async def test_unexpected_error_marks_install_failed(staged, target, mock_linux):
    class _BrokenElevator:
        async def run(self, argv, name):
            raise RuntimeError("helper crashed")

    installer = Installer(elevator=_BrokenElevator(), target=target)
    with pytest.raises(RuntimeError):
        await installer.install(VERSION)
    assert installer.state(VERSION) == InstallState.FAILED
