import argparse
import asyncio
import logging
import pathlib
import sys
from typing import List, Optional

from .config import LauncherPaths, Settings, load_launcher_config, load_settings
from .console import ConsoleSink
from .errors import LauncherError
from .launcher import LaunchSupervisor
from .versions import delete_version, list_installed_versions

log = logging.getLogger(__name__)


def register_arguments() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='mclauncher', allow_abbrev=False,
                                     description='Download and launch Minecraft versions.')
    parser.add_argument('--config-dir', type=pathlib.Path, default=pathlib.Path.cwd(),
                        help='Directory holding launcher_config.json and config.json (default: current directory).')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging.')
    subparsers = parser.add_subparsers(title='subcommands', dest='subcommand')

    launch = subparsers.add_parser('launch', help='Prepare and start a version.')
    launch.add_argument('version', nargs='?', help="Version id (default: 'version' from launcher_config.json).")
    subparsers.add_parser('list', help='List installed versions.')
    delete = subparsers.add_parser('delete', help='Delete an installed version.')
    delete.add_argument('version', help='Version id to delete.')
    return parser


async def run_launch(paths: LauncherPaths, settings: Settings, version_id: str) -> int:
    sink = ConsoleSink()
    supervisor = LaunchSupervisor(paths, sink=sink)
    detach = not settings.keep_launcher_open
    try:
        await supervisor.launch(version_id, settings, detach=detach)
    except LauncherError:
        return 1
    finally:
        sink.close()

    if detach:
        log.info('Game started, closing the launcher as keep_launcher_open is false.')
        return 0
    try:
        return_code = await supervisor.wait()
    except asyncio.CancelledError:
        supervisor.kill_running_process()
        raise
    return return_code or 0


def cmd_list(paths: LauncherPaths) -> int:
    versions = list_installed_versions(paths.versions)
    if not versions:
        print(f"No versions installed in {paths.versions}")
        return 0
    for version in versions:
        print(f"{version.id:<32} {version.status:<12} {version.size_bytes / (1024 * 1024):>8.1f} MiB")
    return 0


def cmd_delete(paths: LauncherPaths, version_id: str) -> int:
    try:
        deleted = delete_version(paths.versions, version_id)
    except LauncherError as error:
        log.error(str(error))
        return 1
    return 0 if deleted else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = register_arguments().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    launcher_config = load_launcher_config(args.config_dir)
    paths = launcher_config.paths
    subcommand = args.subcommand or 'launch'

    if subcommand == 'list':
        return cmd_list(paths)
    if subcommand == 'delete':
        return cmd_delete(paths, args.version)

    version_id = getattr(args, 'version', None) or launcher_config.version
    if not version_id:
        log.error("No version given and launcher_config.json has no 'version'.")
        return 1
    settings = load_settings(args.config_dir)
    try:
        return asyncio.run(run_launch(paths, settings, version_id))
    except KeyboardInterrupt:
        log.info('Launch cancelled by user.')
        return 130


if __name__ == '__main__':
    sys.exit(main())
