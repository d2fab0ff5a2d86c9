"""
Version definitions: local cache, remote fetching and resolution of the
'inheritsFrom' chain into a single flattened definition.
"""

import asyncio
import json
import logging
import os
import pathlib
import shutil
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os
import aiohttp

from .download import open_session
from .errors import DefinitionResolutionError, FilesystemError, NotFoundError, TransportError
from .models import VersionDefinition

log = logging.getLogger(__name__)

VERSION_MANIFEST_URL = 'https://piston-meta.mojang.com/mc/game/version_manifest_v2.json'

# Merged separately, every other child key simply overrides the parent's.
_MERGED_KEYS = ('libraries', 'arguments', 'inheritsFrom')


class VersionCache:
    """Raw definitions stored as versions/<id>/<id>.json."""

    def __init__(self, versions_dir: pathlib.Path):
        self.versions_dir = versions_dir

    def path_for(self, version_id: str) -> pathlib.Path:
        return self.versions_dir / version_id / f"{version_id}.json"

    async def load(self, version_id: str) -> Optional[Dict[str, Any]]:
        file_path = self.path_for(version_id)
        if not await aiofiles.os.path.isfile(file_path):
            return None
        try:
            async with aiofiles.open(file_path, 'r', encoding='utf-8') as f:
                content = await f.read()
            data = json.loads(content)
        except json.JSONDecodeError as e:
            log.warning(f"Cached definition {file_path} is not valid JSON ({e}), ignoring it.")
            return None
        except OSError as e:
            log.warning(f"Could not read cached definition {file_path}: {e}")
            return None
        if not isinstance(data, dict):
            log.warning(f"Cached definition {file_path} is not a JSON object, ignoring it.")
            return None
        return data

    async def store(self, version_id: str, raw: bytes) -> None:
        file_path = self.path_for(version_id)
        try:
            await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
            async with aiofiles.open(file_path, 'wb') as f:
                await f.write(raw)
            log.info(f"Cached definition of {version_id} at {file_path}")
        except OSError as error:
            log.error(f"Error caching definition of {version_id}: {error}")


class RemoteFetcher:
    """
    Fetches raw documents over HTTP. ``NotFoundError`` means the server has no
    such resource, any other ``TransportError`` means it could not be asked.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None,
                 manifest_url: str = VERSION_MANIFEST_URL,
                 manifest_path: Optional[pathlib.Path] = None):
        self._session = session
        self._owns_session = session is None
        self.manifest_url = manifest_url
        self.manifest_path = manifest_path
        self._manifest: Optional[Dict[str, Any]] = None

    async def __aenter__(self) -> 'RemoteFetcher':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = open_session()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, url: str) -> bytes:
        session = await self._get_session()
        log.debug(f"Fetching {url}")
        try:
            async with session.get(url) as response:
                if response.status == 404:
                    raise NotFoundError(f"Not found: {url}", url=url, status=404)
                if response.status != 200:
                    raise TransportError(f"Failed to fetch {url}: HTTP {response.status} {response.reason}",
                                         url=url, status=response.status)
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise TransportError(f"Error fetching {url}: {type(error).__name__}: {error}", url=url) from error

    async def fetch_manifest(self) -> Dict[str, Any]:
        """The version list, fetched once per fetcher. Falls back to the local copy when offline."""
        if self._manifest is not None:
            return self._manifest
        try:
            content = await self.fetch(self.manifest_url)
            manifest = json.loads(content)
        except (TransportError, json.JSONDecodeError) as error:
            if self.manifest_path is None or not await aiofiles.os.path.isfile(self.manifest_path):
                raise
            log.warning(f"Could not fetch the version manifest ({error}), using {self.manifest_path}")
            async with aiofiles.open(self.manifest_path, 'r', encoding='utf-8') as f:
                manifest = json.loads(await f.read())
        else:
            if self.manifest_path is not None:
                try:
                    await aiofiles.os.makedirs(self.manifest_path.parent, exist_ok=True)
                    async with aiofiles.open(self.manifest_path, 'wb') as f:
                        await f.write(content)
                except OSError as error:
                    log.error(f"Error writing local manifest {self.manifest_path}: {error}")
        self._manifest = manifest
        return manifest

    async def fetch_version(self, version_id: str) -> bytes:
        manifest = await self.fetch_manifest()
        for entry in manifest.get('versions', []):
            if entry.get('id') == version_id:
                return await self.fetch(entry['url'])
        raise NotFoundError(f"Version \"{version_id}\" not found in the version manifest.")


def merge_definitions(child: Dict[str, Any], parent: Dict[str, Any]) -> Dict[str, Any]:
    """Merges a raw child definition onto its fully resolved parent."""
    merged = {key: value for key, value in parent.items() if key != 'inheritsFrom'}
    for key, value in child.items():
        if key in _MERGED_KEYS or value is None:
            continue
        merged[key] = value

    # The client jar lives under the root ancestor unless the child names its own.
    if not child.get('jar'):
        merged['jar'] = parent.get('jar') or parent.get('id')

    # Libraries keyed by full name: child overrides in place, new names are appended.
    combined_libraries = {}
    for lib in parent.get('libraries', []) or []:
        if 'name' in lib: combined_libraries[lib['name']] = lib
    for lib in child.get('libraries', []) or []:
        if 'name' in lib: combined_libraries[lib['name']] = lib
    merged['libraries'] = list(combined_libraries.values())

    # Arguments: child args follow parent args.
    if 'arguments' in parent or 'arguments' in child:
        parent_args = parent.get('arguments', {}) or {}
        child_args = child.get('arguments', {}) or {}
        merged['arguments'] = {
            "game": (parent_args.get('game', []) or []) + (child_args.get('game', []) or []),
            "jvm": (parent_args.get('jvm', []) or []) + (child_args.get('jvm', []) or []),
        }
    return merged


async def load_raw_definition(version_id: str, cache: VersionCache, fetcher) -> Dict[str, Any]:
    """Cached raw definition of one id, fetched and cached on a miss."""
    raw = await cache.load(version_id)
    if raw is not None:
        log.debug(f"Found local definition of {version_id}.")
        return raw

    log.info(f"Local definition of {version_id} not found. Fetching...")
    try:
        content = await fetcher.fetch_version(version_id)
    except TransportError as error:
        raise DefinitionResolutionError(f"Could not get the definition of {version_id}: {error}") from error
    try:
        raw = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise DefinitionResolutionError(f"Invalid JSON in the definition of {version_id}: {error}") from error
    if not isinstance(raw, dict):
        raise DefinitionResolutionError(f"The definition of {version_id} is not a JSON object.")
    await cache.store(version_id, content)
    return raw


async def _resolve_raw(version_id: str, cache: VersionCache, fetcher, chain: Tuple[str, ...]) -> Dict[str, Any]:
    if version_id in chain:
        raise DefinitionResolutionError(f"Inheritance cycle: {' -> '.join(chain + (version_id,))}")
    raw = await load_raw_definition(version_id, cache, fetcher)
    parent_id = raw.get('inheritsFrom')
    if not parent_id:
        return raw
    log.info(f"Merging definitions: {version_id} inheriting from {parent_id}")
    parent = await _resolve_raw(parent_id, cache, fetcher, chain + (version_id,))
    return merge_definitions(raw, parent)


async def resolve(version_id: str, cache: VersionCache, fetcher) -> VersionDefinition:
    """
    Fully resolved definition of ``version_id``.

    ``fetcher`` needs an async ``fetch_version(version_id) -> bytes``. If any
    ancestor cannot be loaded the whole resolution fails, a child definition
    alone is not launchable.
    """
    raw = await _resolve_raw(version_id, cache, fetcher, ())
    definition = VersionDefinition.from_dict(raw)
    if not definition.id:
        raise DefinitionResolutionError(f"The definition of {version_id} is missing its 'id' field.")
    return definition


# --- Installed versions ---

@dataclass(frozen=True)
class LocalVersion:
    id: str
    path: pathlib.Path
    status: str  # 'Downloaded' or 'Unknown'
    size_bytes: int = 0


def _directory_size(directory: pathlib.Path) -> int:
    total = 0
    for root, _, files in os.walk(directory):
        for name in files:
            try:
                total += (pathlib.Path(root) / name).stat().st_size
            except OSError:
                continue
    return total


def list_installed_versions(versions_dir: pathlib.Path) -> List[LocalVersion]:
    """Lists installed versions based on subdirectories."""
    if not versions_dir.is_dir():
        return []
    versions = []
    for entry in sorted(versions_dir.iterdir()):
        if not entry.is_dir():
            continue
        status = 'Downloaded' if (entry / f"{entry.name}.json").is_file() else 'Unknown'
        versions.append(LocalVersion(id=entry.name, path=entry, status=status, size_bytes=_directory_size(entry)))
    return versions


def delete_version(versions_dir: pathlib.Path, version_id: str) -> bool:
    """Deletes a version directory. Returns False if it did not exist."""
    version_dir = versions_dir / version_id
    if not version_dir.is_dir():
        log.warning(f"Directory not found, cannot delete: {version_dir}")
        return False
    try:
        shutil.rmtree(version_dir)
    except OSError as error:
        raise FilesystemError(f"Failed to delete version {version_id}: {error}") from error
    log.info(f"Deleted version directory {version_dir}")
    return True
