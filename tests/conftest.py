"""Shared fixtures for engine manager tests.

Provides an isolated settings home under tmp_path, platform mocks, a fake
elevation primitive and a factory for subprocess results. Nothing here
touches the network, real processes or system paths.
"""

from unittest.mock import patch

import pytest

from yakit.config import settings
from yakit.core.commands import CompletedCommand
from yakit.core.exceptions import PrivilegeError


# ---------------------------------------------------------------------------
# Settings isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point every state directory at tmp_path and shorten timeouts."""
    monkeypatch.setattr(settings, "home_dir", tmp_path / "yakit-projects")
    monkeypatch.setattr(settings, "launch_grace_seconds", 0.05)
    monkeypatch.setattr(settings, "subprocess_timeout_seconds", 5.0)
    monkeypatch.setattr(settings, "download_chunk_size", 4)
    settings.ensure_dirs()
    return settings


# ---------------------------------------------------------------------------
# Platform mock fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_macos():
    """Patch platform.system() to return 'Darwin'."""
    with patch("platform.system", return_value="Darwin"):
        yield


@pytest.fixture
def mock_linux():
    """Patch platform.system() to return 'Linux'."""
    with patch("platform.system", return_value="Linux"):
        yield


@pytest.fixture
def mock_windows(monkeypatch):
    """Patch platform.system() to return 'Windows' with a fake WINDIR."""
    monkeypatch.setenv("WINDIR", "C:\\Windows")
    with patch("platform.system", return_value="Windows"):
        yield


# ---------------------------------------------------------------------------
# Subprocess results
# ---------------------------------------------------------------------------

def make_result(returncode: int = 0, stdout: str = "", stderr: str = "") -> CompletedCommand:
    """Create a CompletedCommand as returned by run_command()."""
    return CompletedCommand(argv=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def result_factory():
    return make_result


# ---------------------------------------------------------------------------
# Fake elevation primitive
# ---------------------------------------------------------------------------

class FakeElevator:
    """Records elevated commands; operations listed in ``fail`` are declined."""

    def __init__(self, fail: set[str] | None = None):
        self.fail = fail or set()
        self.calls: list[tuple[str, list[str]]] = []

    def wrap(self, argv, name, wait=True):
        return ["elevate", *argv]

    async def run(self, argv, name):
        self.calls.append((name, list(argv)))
        if name in self.fail:
            raise PrivilegeError(name, "User did not grant permission.")
        return make_result(0)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def elevator():
    return FakeElevator()


@pytest.fixture
def elevator_factory():
    """Factory: elevator_factory(fail={"Delete Old Yak"})."""
    return FakeElevator
