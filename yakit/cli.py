"""Yakit Engine Manager - command-line entry point.

Drives the engine lifecycle without the desktop shell:

    yakit-engine ps                     # list running engines and their ports
    yakit-engine kill 1234              # kill an engine (prompts for elevation if needed)
    yakit-engine version engine         # latest published engine version
    yakit-engine version installed      # version of the installed engine
    yakit-engine download v1.2.3        # stage an engine binary
    yakit-engine install v1.2.3         # install a staged binary (prompts for elevation)
    yakit-engine start --sudo           # launch the engine on a random port
    yakit-engine auth save --host 10.0.0.2 --port 8087
    yakit-engine kv set theme dark
"""

import argparse
import asyncio
import json
import logging
import sys

from yakit.config import settings
from yakit.core.exceptions import EngineError
from yakit.core.platform import platform_and_arch, windows_install_dir
from yakit.core.process_directory import ProcessDirectory
from yakit.db.exceptions import StoreError
from yakit.db.repositories.auth_profile_repo import AuthProfileRepository
from yakit.db.repositories.kv_repo import KVRepository
from yakit.models.auth_profile import RemoteAuthProfile
from yakit.models.download import DownloadEvent, DownloadEventKind
from yakit.services.download_manager import DownloadManager
from yakit.services.installer import Installer
from yakit.services.launcher import Launcher
from yakit.services.version_checker import VersionChecker

logger = logging.getLogger(__name__)


# ANSI color codes
class Color:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    CYAN = '\033[36m'
    GRAY = '\033[90m'


def configure_logging() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if not settings.dev_mode:
        logging.basicConfig(
            level=level,
            format='{"time":"%(asctime)s","level":"%(levelname)s","name":"%(name)s","message":"%(message)s"}',
        )
    else:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)-8s %(name)s: %(message)s")


class Console:
    def __init__(self, color_enabled: bool = True):
        self.color_enabled = color_enabled and sys.stdout.isatty()

    def _colorize(self, text: str, color: str) -> str:
        if not self.color_enabled:
            return text
        return f"{color}{text}{Color.RESET}"

    def ok(self, text: str) -> None:
        print(self._colorize(text, Color.GREEN))

    def info(self, text: str) -> None:
        print(text)

    def error(self, text: str) -> None:
        print(self._colorize(text, Color.RED + Color.BOLD), file=sys.stderr)

    def progress(self, event: DownloadEvent) -> None:
        if event.kind != DownloadEventKind.PROGRESS:
            return
        p = event.progress
        percent = f"{p.percent:5.1f}%" if p.percent is not None else "  ?  "
        line = f"\r  {percent}  {p.transferred / 1048576:7.1f} MiB  {p.speed / 1048576:6.2f} MiB/s"
        print(self._colorize(line, Color.GRAY), end="", flush=True)


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yakit-engine",
        description="Install, launch and supervise the Yak engine.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("\n\n", 1)[1],
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("ps", help="List running engine processes")

    kill = sub.add_parser("kill", help="Kill an engine process")
    kill.add_argument("pid", type=int)

    sub.add_parser("installed", help="Report whether the engine is installed")
    sub.add_parser("platform", help="Print platform, architecture and install paths")

    version = sub.add_parser("version", help="Query versions")
    version.add_argument("which", choices=["engine", "app", "installed", "notification"])

    download = sub.add_parser("download", help="Download an engine binary into the staging directory")
    download.add_argument("version")

    download_app = sub.add_parser("download-app", help="Download the desktop installer")
    download_app.add_argument("version")

    install = sub.add_parser("install", help="Install a staged engine binary")
    install.add_argument("version")
    install.add_argument("--download", action="store_true", help="Download the binary first")

    start = sub.add_parser("start", help="Start the engine on a random port")
    start.add_argument("--sudo", action="store_true", help="Start the engine with elevated privileges")

    auth = sub.add_parser("auth", help="Manage remote connection profiles")
    auth_sub = auth.add_subparsers(dest="auth_command", required=True)
    auth_sub.add_parser("list")
    auth_sub.add_parser("dir")
    auth_save = auth_sub.add_parser("save")
    auth_save.add_argument("--name", default="")
    auth_save.add_argument("--host", required=True)
    auth_save.add_argument("--port", type=int, required=True)
    auth_save.add_argument("--tls", action="store_true")
    auth_save.add_argument("--password", default="")
    auth_save.add_argument("--ca-pem-file", help="Path to a PEM encoded CA certificate")
    auth_remove = auth_sub.add_parser("remove")
    auth_remove.add_argument("name")

    kv = sub.add_parser("kv", help="Read or write local settings")
    kv_sub = kv.add_subparsers(dest="kv_command", required=True)
    kv_get = kv_sub.add_parser("get")
    kv_get.add_argument("key")
    kv_set = kv_sub.add_parser("set")
    kv_set.add_argument("key")
    kv_set.add_argument("value", help="JSON value; plain text is stored as a string")

    return parser


def _parse_value(raw: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


async def run(args: argparse.Namespace, console: Console) -> int:
    settings.ensure_dirs()

    if args.command == "ps":
        for record in await ProcessDirectory().list_engine_processes():
            console.info(f"{record.pid:>8}  {record.port:>5}  {record.command_line or record.name}")
    elif args.command == "kill":
        if not await ProcessDirectory().kill_process(args.pid):
            console.error(f"Could not kill process {args.pid}")
            return 1
        console.ok(f"Killed process {args.pid}")
    elif args.command == "installed":
        installed = Installer().is_engine_installed()
        console.info("installed" if installed else "not installed")
        return 0 if installed else 1
    elif args.command == "platform":
        console.info(platform_and_arch())
        console.info(f"install path (windows): {windows_install_dir()}")
        console.info(f"staging directory: {settings.engine_dir}")
    elif args.command == "version":
        checker = VersionChecker()
        if args.which == "engine":
            console.info(await checker.latest_engine_version())
        elif args.which == "app":
            console.info(await checker.latest_app_version())
        elif args.which == "installed":
            console.info(await checker.installed_engine_version())
        else:
            console.info(await checker.latest_notification())
    elif args.command == "download":
        path = await DownloadManager().download_engine(args.version, console.progress)
        console.ok(f"\nStaged {path}")
    elif args.command == "download-app":
        path = await DownloadManager().download_app(args.version, console.progress)
        console.ok(f"\nDownloaded {path}")
    elif args.command == "install":
        if args.download:
            await DownloadManager().download_engine(args.version, console.progress)
            console.info("")
        installer = Installer()
        await installer.install(args.version)
        console.ok(f"Installed {args.version} at {installer.target}")
    elif args.command == "start":
        result = await Launcher().start(elevated=args.sudo)
        console.ok(f"Engine started on port {result.port} (pid {result.pid})")
    elif args.command == "auth":
        return await _run_auth(args, console)
    elif args.command == "kv":
        repo = KVRepository()
        if args.kv_command == "get":
            value = await repo.get(args.key)
            if value is None:
                return 1
            console.info(json.dumps(value, ensure_ascii=False))
        else:
            await repo.set(args.key, _parse_value(args.value))
    return 0


async def _run_auth(args: argparse.Namespace, console: Console) -> int:
    repo = AuthProfileRepository()
    if args.auth_command == "list":
        for profile in await repo.load():
            scheme = "tls" if profile.tls else "plain"
            console.info(f"{profile.name}  {profile.host}:{profile.port}  {scheme}")
    elif args.auth_command == "dir":
        console.info(str(repo.secret_dir))
    elif args.auth_command == "save":
        ca_pem = ""
        if args.ca_pem_file:
            with open(args.ca_pem_file, encoding="utf-8") as f:
                ca_pem = f.read()
        profile = RemoteAuthProfile(
            name=args.name, host=args.host, port=args.port,
            tls=args.tls, password=args.password, ca_pem=ca_pem,
        )
        await repo.save_one(profile)
        console.ok(f"Saved {profile.name}")
    elif args.auth_command == "remove":
        if not await repo.remove_by_name(args.name):
            console.error(f"No profile named {args.name}")
            return 1
        console.ok(f"Removed {args.name}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = create_argument_parser().parse_args(argv)
    configure_logging()
    console = Console(color_enabled=not args.no_color)
    try:
        return asyncio.run(run(args, console))
    except (EngineError, StoreError) as e:
        console.error(str(e))
        return 1
    except KeyboardInterrupt:
        console.error("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
