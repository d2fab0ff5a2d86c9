"""
The launch pipeline: resolve, download, extract natives, assemble the
command line, spawn the game and watch it until it exits.
"""

import asyncio
import codecs
import json
import logging
import os
import pathlib
import shlex
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import aiofiles
import aiofiles.os

from . import __version__
from .arguments import game_templates, has_unresolved, jvm_templates, render, render_logging_argument
from .classpath import build_classpath, client_jar_path, join_classpath
from .config import LauncherPaths, Settings
from .download import MAX_ATTEMPTS, RETRY_DELAY, DownloadTask, download_all
from .errors import (AlreadyRunningError, DefinitionResolutionError, FilesystemError, IntegrityError,
                     LauncherError, NativeExtractionError, ProcessSpawnError, TransportError)
from .events import EventSink, LaunchStatus, ProcessOutputEvent, StatusEvent, emit
from .models import AssetIndex, VersionDefinition
from .natives import materialize_natives, select_native_archive
from .rules import RuleContext, evaluate
from .versions import RemoteFetcher, VersionCache, resolve

log = logging.getLogger(__name__)

LAUNCHER_NAME = 'mclauncher'
ASSET_BASE_URL = 'https://resources.download.minecraft.net'
CLASSPATH_FLAGS = ('-cp', '-classpath', '--class-path')
OUTPUT_CHUNK_SIZE = 4096


def launch_features(settings: Settings) -> Dict[str, bool]:
    """Feature flags argument rules are evaluated against."""
    return {
        'is_demo_user': settings.demo,
        'has_custom_resolution': settings.custom_resolution,
        'has_quick_plays_support': False,
        'is_quick_play_singleplayer': False,
        'is_quick_play_multiplayer': False,
        'is_quick_play_realms': False,
    }


def asset_index_path(definition: VersionDefinition, paths: LauncherPaths) -> Optional[pathlib.Path]:
    if definition.asset_index is None:
        return None
    index_id = definition.asset_index.id or definition.assets or definition.id
    return paths.indexes / f"{index_id}.json"


def logging_config_path(definition: VersionDefinition, paths: LauncherPaths) -> Optional[pathlib.Path]:
    if definition.logging is None:
        return None
    file_id = definition.logging.file.id or definition.logging.file.path
    if not file_id:
        return None
    return paths.log_configs / file_id


def get_initial_downloads(
    definition: VersionDefinition,
    paths: LauncherPaths,
    context: RuleContext,
    native_context: Optional[RuleContext] = None,
) -> List[DownloadTask]:
    """
    Client jar, libraries, asset index and logging configuration of a
    definition. Libraries are filtered with ``context`` (usually the
    permissive download context); per-OS 'natives' classifiers are picked
    for ``native_context``.
    """
    tasks = []
    client = definition.client_download
    if client is None or not client.url:
        raise DefinitionResolutionError(f"The definition of {definition.id} is missing client download information.")
    tasks.append(DownloadTask(client.url, client_jar_path(definition, paths.versions),
                              client.sha1, client.size, label=f"{definition.base_version_id}.jar"))

    for library in definition.libraries:
        if not evaluate(library.rules, context):
            continue
        artifact = library.artifact
        if artifact is not None and artifact.url and artifact.path:
            tasks.append(DownloadTask(artifact.url, paths.libraries / artifact.path,
                                      artifact.sha1, artifact.size, label=library.name))
        if library.natives:
            selected = select_native_archive(library, native_context or context)
            if selected is None:
                continue
            classifier, native = selected
            if native.url and native.path:
                tasks.append(DownloadTask(native.url, paths.libraries / native.path,
                                          native.sha1, native.size, label=f"{library.name}:{classifier}"))

    index_path = asset_index_path(definition, paths)
    if index_path is not None and definition.asset_index.url:
        index = definition.asset_index
        tasks.append(DownloadTask(index.url, index_path, index.sha1, index.size, label=index_path.name))
    else:
        log.warning(f"The definition of {definition.id} has no asset index.")

    log_path = logging_config_path(definition, paths)
    if log_path is not None and definition.logging.file.url:
        file = definition.logging.file
        tasks.append(DownloadTask(file.url, log_path, file.sha1, file.size, label=log_path.name))
    return tasks


def get_asset_downloads(index: AssetIndex, paths: LauncherPaths, base_url: str = ASSET_BASE_URL) -> List[DownloadTask]:
    """One task per asset object, stored by content under objects/<hash[:2]>/<hash>."""
    tasks = []
    for asset in index.objects:
        if not asset.hash:
            log.warning(f"Asset '{asset.name}' is missing hash in index, skipping.")
            continue
        hash_prefix = asset.hash[:2]
        tasks.append(DownloadTask(
            url=f"{base_url.rstrip('/')}/{hash_prefix}/{asset.hash}",
            destination=paths.objects / hash_prefix / asset.hash,
            sha1=asset.hash,
            size=asset.size,
            label=asset.name,
        ))
    return tasks


async def read_asset_index(file_path: pathlib.Path) -> AssetIndex:
    try:
        async with aiofiles.open(file_path, 'r', encoding='utf-8') as f:
            content = json.loads(await f.read())
    except (OSError, json.JSONDecodeError) as e:
        raise FilesystemError(f"Failed to read downloaded asset index {file_path}: {e}") from e
    return AssetIndex.from_dict(content)


def get_game_directory(settings: Settings, paths: LauncherPaths) -> pathlib.Path:
    return pathlib.Path(settings.game_directory) if settings.game_directory else paths.root


def build_launch_variables(
    definition: VersionDefinition,
    paths: LauncherPaths,
    settings: Settings,
    classpath: str,
    game_directory: pathlib.Path,
) -> Mapping[str, str]:
    """Values of every ${...} placeholder, frozen for the rest of the launch."""
    auth = settings.auth
    asset_index = definition.asset_index
    variables = {
        'natives_directory': str(paths.natives_dir(definition.id)),
        'launcher_name': LAUNCHER_NAME,
        'launcher_version': __version__,
        'classpath': classpath,
        'classpath_separator': os.pathsep,
        'library_directory': str(paths.libraries),
        'game_directory': str(game_directory),
        'assets_root': str(paths.assets),
        'game_assets': str(paths.assets),
        'assets_index_name': (asset_index.id if asset_index and asset_index.id else definition.assets) or '',
        'auth_player_name': auth.player_name,
        'auth_uuid': auth.uuid,
        'auth_access_token': auth.access_token,
        'auth_xuid': auth.xuid,
        'auth_session': auth.access_token,
        'user_type': auth.user_type,
        'user_properties': '{}',
        'version_name': definition.id,
        'version_type': definition.type,
        'clientid': '',
        'resolution_width': str(settings.resolution_width),
        'resolution_height': str(settings.resolution_height),
        'quickPlayPath': '',
        'quickPlaySingleplayer': '',
        'quickPlayMultiplayer': '',
        'quickPlayRealms': '',
    }
    return MappingProxyType(variables)


def split_jvm_arguments(text: str, posix: Optional[bool] = None) -> List[str]:
    """
    Splits the user's extra JVM flags like the platform shell would. On
    Windows backslashes are kept as path separators and only the
    surrounding quotes of a token are removed.
    """
    if not text:
        return []
    if posix is None:
        posix = os.name != 'nt'
    tokens = shlex.split(text, posix=posix)
    if posix:
        return tokens
    return [token[1:-1] if len(token) > 1 and token[0] == token[-1] and token[0] in '"\'' else token
            for token in tokens]


def build_command(
    definition: VersionDefinition,
    settings: Settings,
    variables: Mapping[str, str],
    context: RuleContext,
    logging_config: Optional[pathlib.Path] = None,
) -> List[str]:
    """
    Final argument vector: java, memory flags, rendered JVM arguments, the
    user's extra flags, -cp (unless a template already passed it), main
    class and rendered game arguments.
    """
    if not definition.main_class:
        raise DefinitionResolutionError(f"The definition of {definition.id} is missing 'mainClass'.")

    jvm_args = render(jvm_templates(definition), variables, context)
    logging_argument = render_logging_argument(definition, str(logging_config) if logging_config else None)
    if logging_argument:
        jvm_args.append(logging_argument)
    extra_args = split_jvm_arguments(settings.jvm_arguments)
    if extra_args:
        log.info(f"Adding custom JVM arguments: {extra_args}")
    game_args = render(game_templates(definition), variables, context)

    for arg in jvm_args + game_args:
        if has_unresolved(arg):
            log.warning(f"Argument has unresolved placeholders: {arg}")

    command = [
        settings.java_path or 'java',
        f"-Xms{settings.memory_min_mb}M",
        f"-Xmx{settings.memory_max_mb}M",
        *jvm_args,
        *extra_args,
    ]
    if not any(arg in CLASSPATH_FLAGS for arg in jvm_args + extra_args):
        command += ['-cp', variables['classpath']]
    command += [definition.main_class, *game_args]
    return command


class LaunchSupervisor:
    """
    Runs the launch pipeline and owns the game process. At most one launch
    is in flight or running at a time; a second request is rejected.
    """

    def __init__(
        self,
        paths: LauncherPaths,
        sink: Optional[EventSink] = None,
        fetcher: Optional[Any] = None,
        context: Optional[RuleContext] = None,
        *,
        download_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
        asset_base_url: str = ASSET_BASE_URL,
    ):
        self.paths = paths
        self.sink = sink
        self.fetcher = fetcher
        self.context = context
        self.download_attempts = download_attempts
        self.retry_delay = retry_delay
        self.asset_base_url = asset_base_url
        self.state = LaunchStatus.IDLE
        self._busy = False
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._process is not None

    @property
    def process(self) -> Optional[asyncio.subprocess.Process]:
        return self._process

    def _set_state(self, stage: LaunchStatus, message: str = '', **details) -> None:
        self.state = stage
        emit(self.sink, StatusEvent(stage, message, **details))

    async def launch(self, version_id: str, settings: Settings, detach: bool = False) -> asyncio.subprocess.Process:
        """
        Prepares and starts ``version_id``. Returns the spawned process;
        ``wait()`` follows it until it exits. With ``detach`` the game runs in
        its own session and its output is discarded.
        """
        if self._busy or self._process is not None:
            raise AlreadyRunningError("The game is already running or being launched.")
        self._busy = True
        try:
            return await self._launch(version_id, settings, detach)
        except LauncherError as error:
            log.error(f"Launch of {version_id} failed: {error}")
            self._set_state(LaunchStatus.ERROR, str(error))
            raise
        except Exception as error:
            log.exception(f"--- An unexpected error occurred while launching {version_id} ---")
            message = f"An unexpected error occurred during launch preparation: {error}"
            self._set_state(LaunchStatus.ERROR, message)
            raise LauncherError(message) from error
        finally:
            self._busy = False

    async def _launch(self, version_id: str, settings: Settings, detach: bool) -> asyncio.subprocess.Process:
        paths = self.paths
        self._set_state(LaunchStatus.PREPARING, f"Resolving version {version_id}...")
        definition = await self._resolve(version_id)
        log.info(f"Preparing Minecraft {definition.id}...")

        context = self.context or RuleContext.current(launch_features(settings))
        download_context = RuleContext.permissive(context.os_name)
        log.info(f"Detected OS: {context.os_name}, Arch: {context.arch}")

        tasks = get_initial_downloads(definition, paths, download_context, context)
        self._set_state(LaunchStatus.DOWNLOADING, f"Downloading {len(tasks)} files...", total_files=len(tasks))
        await self._download(tasks, settings.parallel_downloads, 'Game files')

        index_path = asset_index_path(definition, paths)
        if index_path is not None:
            asset_tasks = get_asset_downloads(await read_asset_index(index_path), paths, self.asset_base_url)
            self._set_state(LaunchStatus.DOWNLOADING, f"Downloading {len(asset_tasks)} assets...",
                            total_files=len(asset_tasks))
            await self._download(asset_tasks, settings.asset_parallel_downloads, 'Assets')
            log.info('Asset check complete.')

        self._set_state(LaunchStatus.PREPARING, 'Extracting natives...')
        natives_dir = paths.natives_dir(definition.id)
        if not await materialize_natives(definition, context, natives_dir, paths.libraries):
            raise NativeExtractionError(f"Failed to extract native libraries into {natives_dir}")

        log.info('Constructing launch command...')
        classpath = build_classpath(definition, paths.libraries, paths.versions, context)
        game_directory = get_game_directory(settings, paths)
        try:
            await aiofiles.os.makedirs(game_directory, exist_ok=True)
        except OSError as error:
            log.warning(f"Could not create game directory {game_directory}: {error}")
        variables = build_launch_variables(definition, paths, settings, join_classpath(classpath), game_directory)
        command = build_command(definition, settings, variables, context, logging_config_path(definition, paths))

        self._set_state(LaunchStatus.LAUNCHING, 'Starting Java process...')
        log.info(f"Launching Java: {command[0]}")
        log.debug(f"Launch command: {' '.join(command)}")
        process = await self._spawn(command, game_directory, detach)
        self._process = process
        self._watcher = asyncio.create_task(self._watch(process))
        log.info(f"Minecraft process started (PID: {process.pid}).")
        self._set_state(LaunchStatus.RUNNING, f"Minecraft {definition.id} is running (PID: {process.pid}).")
        return process

    async def _resolve(self, version_id: str) -> VersionDefinition:
        cache = VersionCache(self.paths.versions)
        if self.fetcher is not None:
            return await resolve(version_id, cache, self.fetcher)
        async with RemoteFetcher(manifest_path=self.paths.version_manifest) as fetcher:
            return await resolve(version_id, cache, fetcher)

    async def _download(self, tasks: List[DownloadTask], concurrency: int, what: str) -> None:
        outcome = await download_all(tasks, concurrency, self.sink,
                                     attempts=self.download_attempts, retry_delay=self.retry_delay)
        if outcome.failure_count:
            raise TransportError(f"{what}: {outcome.failure_count} downloads failed "
                                 f"({outcome.validation_failure_count} more failed validation).", outcome=outcome)
        if outcome.validation_failure_count:
            raise IntegrityError(f"{what}: {outcome.validation_failure_count} downloads failed validation.",
                                 outcome=outcome)

    async def _spawn(self, command: List[str], cwd: pathlib.Path, detach: bool) -> asyncio.subprocess.Process:
        if detach:
            options = dict(stdin=asyncio.subprocess.DEVNULL, stdout=asyncio.subprocess.DEVNULL,
                           stderr=asyncio.subprocess.DEVNULL)
            if os.name == 'nt':
                options['creationflags'] = 0x00000008  # DETACHED_PROCESS
            else:
                options['start_new_session'] = True
        else:
            options = dict(stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
        try:
            return await asyncio.create_subprocess_exec(*command, cwd=str(cwd), **options)
        except (OSError, ValueError) as error:
            raise ProcessSpawnError(f"Failed to start Java ({command[0]}): {error}") from error

    def _publish(self, stream: str, text: str) -> None:
        if not text:
            return
        if stream == 'stderr':
            log.warning(f"[Game STDERR]: {text.rstrip()}")
        else:
            log.info(f"[Game STDOUT]: {text.rstrip()}")
        emit(self.sink, ProcessOutputEvent(stream, text))

    async def _forward(self, reader: asyncio.StreamReader, stream: str) -> None:
        # One decoder per stream so a character split across reads stays whole.
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        while True:
            chunk = await reader.read(OUTPUT_CHUNK_SIZE)
            if not chunk:
                break
            self._publish(stream, decoder.decode(chunk))
        self._publish(stream, decoder.decode(b'', final=True))

    async def _watch(self, process: asyncio.subprocess.Process) -> int:
        readers = []
        if process.stdout is not None:
            readers.append(self._forward(process.stdout, 'stdout'))
        if process.stderr is not None:
            readers.append(self._forward(process.stderr, 'stderr'))
        await asyncio.gather(*readers)
        return_code = await process.wait()
        log.info(f"Minecraft process exited with code {return_code}.")
        if self._process is process:
            self._process = None
        self._set_state(LaunchStatus.CLOSED, f"Game exited with code {return_code}", code=return_code)
        return return_code

    async def wait(self) -> Optional[int]:
        """Exit code of the last spawned process, None if nothing was launched."""
        if self._watcher is None:
            return None
        return await self._watcher

    def kill_running_process(self) -> bool:
        """Asks the game to terminate and forgets it. Returns False if nothing was running."""
        process = self._process
        if process is None:
            log.info("No running game process to kill.")
            return False
        log.info(f"Attempting to kill running game process (PID: {process.pid})...")
        self._process = None
        try:
            process.terminate()
        except ProcessLookupError:
            log.warning("Failed to send kill signal, the process already exited.")
        return True
