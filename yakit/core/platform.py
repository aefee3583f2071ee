"""Platform detection, install paths and download URL templates."""

import os
import platform
from pathlib import Path, PureWindowsPath

from yakit.config import settings

POSIX_INSTALL_DIR = Path("/usr/local/bin")
WINDOWS_INSTALL_PLACEHOLDER = "%WINDIR%\\System32\\yak.exe"

# platform.system() -> the names used in download URLs and in the original shell
_OS_NAMES = {"Darwin": "darwin", "Windows": "windows", "Linux": "linux"}
_SHELL_PLATFORMS = {"Darwin": "darwin", "Windows": "win32", "Linux": "linux"}

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
}


def current_os() -> str:
    """Return 'darwin', 'windows' or 'linux'."""
    system = platform.system()
    try:
        return _OS_NAMES[system]
    except KeyError:
        raise RuntimeError(f"Unsupported platform: {system}") from None


def is_windows() -> bool:
    return platform.system() == "Windows"


def current_arch() -> str:
    """Return 'x64' or 'arm64'."""
    machine = platform.machine().lower()
    return _ARCH_ALIASES.get(machine, machine)


def platform_and_arch() -> str:
    """Return e.g. 'darwin-arm64' or 'win32-x64'."""
    return f"{_SHELL_PLATFORMS.get(platform.system(), platform.system().lower())}-{current_arch()}"


def windows_system_root() -> str:
    for var in ("WINDIR", "windir", "SystemRoot"):
        value = os.environ.get(var)
        if value:
            return value
    raise RuntimeError("cannot fetch windows system root dir")


def install_path() -> Path | PureWindowsPath:
    """Fixed location of the installed engine binary."""
    if is_windows():
        return PureWindowsPath(windows_system_root(), "System32", f"{settings.engine_name}.exe")
    return POSIX_INSTALL_DIR / settings.engine_name


def install_dir() -> Path | PureWindowsPath:
    return install_path().parent


def windows_install_dir() -> str:
    """Windows install target; the literal placeholder on other hosts."""
    if not is_windows():
        return WINDOWS_INSTALL_PLACEHOLDER
    return str(install_path())


def staging_path(version: str) -> Path:
    """Where a downloaded engine waits before installation."""
    return settings.engine_dir / f"{settings.engine_name}-{version}"


def strip_v(version: str) -> str:
    return version[1:] if version.startswith("v") else version


def engine_download_url(version: str = "latest") -> str:
    os_name = current_os()
    arch = "arm64" if current_arch() == "arm64" else "amd64"
    suffix = ".exe" if os_name == "windows" else ""
    origin = settings.download_origin.rstrip("/")
    return f"{origin}/yak/{strip_v(version)}/yak_{os_name}_{arch}{suffix}"


def app_download_url(version: str) -> str:
    """Desktop installer URL: .dmg on macOS, .exe on Windows, .AppImage on Linux."""
    version = strip_v(version)
    os_name = current_os()
    origin = settings.download_origin.rstrip("/")
    if os_name == "darwin":
        arch = "arm64" if current_arch() == "arm64" else "x64"
        filename = f"Yakit-{version}-darwin-{arch}.dmg"
    elif os_name == "windows":
        filename = f"Yakit-{version}-windows-amd64.exe"
    else:
        filename = f"Yakit-{version}-linux-amd64.AppImage"
    return f"{origin}/yak/{version}/{filename}"


def latest_url(filename: str) -> str:
    return f"{settings.download_origin.rstrip('/')}/yak/latest/{filename}"


def ensure_path_has_local_bin() -> None:
    """Make /usr/local/bin resolvable on macOS and Linux."""
    if platform.system() not in ("Darwin", "Linux"):
        return
    path = os.environ.get("PATH", "")
    if str(POSIX_INSTALL_DIR) not in path.split(os.pathsep):
        os.environ["PATH"] = f"{path}{os.pathsep}{POSIX_INSTALL_DIR}" if path else str(POSIX_INSTALL_DIR)
