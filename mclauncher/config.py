"""
Launcher configuration: ``launcher_config.json`` (where the data lives, which
version to start) and ``config.json`` (user settings). Both are optional; a
missing or broken file falls back to defaults with a warning.
"""

import json
import logging
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .replacer import patch_config

log = logging.getLogger(__name__)

LAUNCHER_CONFIG_FILE = 'launcher_config.json'
SETTINGS_FILE = 'config.json'
THISDIR_TOKEN = ':thisdir:'
DEFAULT_DATA_DIR = '.mc_launcher_data'
DEFAULT_GAME_DIR = '.minecraft'


@dataclass(frozen=True)
class AuthIdentity:
    player_name: str = 'Player'
    uuid: str = '00000000-0000-0000-0000-000000000000'
    access_token: str = '00000000000000000000000000000000'
    xuid: str = '0'
    user_type: str = 'msa'


@dataclass(frozen=True)
class Settings:
    """Snapshot of the user settings, taken once per launch."""
    java_path: str = 'java'
    memory_min_mb: int = 512
    memory_max_mb: int = 4096
    jvm_arguments: str = ''
    game_directory: Optional[str] = None
    parallel_downloads: int = 5
    asset_parallel_downloads: int = 10
    resolution_width: int = 854
    resolution_height: int = 480
    custom_resolution: bool = False
    demo: bool = False
    keep_launcher_open: bool = True
    auth: AuthIdentity = field(default_factory=AuthIdentity)

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> 'Settings':
        defaults = cls()
        default_auth = AuthIdentity()

        def pick(key: str, default: Any) -> Any:
            # Empty strings and nulls count as unset.
            value = cfg.get(key)
            return value if value not in (None, '') else default

        def pick_int(key: str, default: int) -> int:
            value = pick(key, default)
            try:
                return int(value)
            except (TypeError, ValueError):
                log.warning(f"Invalid value for '{key}' in {SETTINGS_FILE}: {value!r}. Using {default}.")
                return default

        def pick_bool(key: str, default: bool) -> bool:
            value = cfg.get(key)
            if value is None:
                return default
            if isinstance(value, bool):
                return value
            log.warning(f"Invalid value for '{key}' in {SETTINGS_FILE}: {value!r}. Using {default}.")
            return default

        auth = AuthIdentity(
            player_name=str(pick('auth_player_name', default_auth.player_name)),
            uuid=str(pick('auth_uuid', default_auth.uuid)),
            access_token=str(pick('auth_access_token', default_auth.access_token)),
            xuid=str(pick('auth_xuid', default_auth.xuid)),
            user_type=str(pick('user_type', default_auth.user_type)),
        )
        return cls(
            java_path=str(pick('java_path', defaults.java_path)),
            memory_min_mb=pick_int('memory_min_mb', defaults.memory_min_mb),
            memory_max_mb=pick_int('memory_max_mb', defaults.memory_max_mb),
            jvm_arguments=str(pick('jvm_arguments', defaults.jvm_arguments)),
            game_directory=pick('game_directory', None),
            parallel_downloads=max(1, pick_int('parallel_downloads', defaults.parallel_downloads)),
            asset_parallel_downloads=max(1, pick_int('asset_parallel_downloads', defaults.asset_parallel_downloads)),
            resolution_width=pick_int('resolution_width', defaults.resolution_width),
            resolution_height=pick_int('resolution_height', defaults.resolution_height),
            custom_resolution=pick_bool('custom_resolution', defaults.custom_resolution),
            demo=pick_bool('demo', defaults.demo),
            keep_launcher_open=pick_bool('keep_launcher_open', defaults.keep_launcher_open),
            auth=auth,
        )


class LauncherPaths:
    """Directory tree under the data root."""

    def __init__(self, root: pathlib.Path):
        self.root = pathlib.Path(root)
        self.versions = self.root / 'versions'
        self.libraries = self.root / 'libraries'
        self.assets = self.root / 'assets'
        self.indexes = self.assets / 'indexes'
        self.objects = self.assets / 'objects'
        self.log_configs = self.assets / 'log_configs'
        self.version_manifest = self.versions / 'version_manifest_v2.json'

    def version_dir(self, version_id: str) -> pathlib.Path:
        return self.versions / version_id

    def natives_dir(self, version_id: str) -> pathlib.Path:
        return self.versions / version_id / f"{version_id}-natives"

    def __repr__(self) -> str:
        return f"LauncherPaths({str(self.root)!r})"


@dataclass(frozen=True)
class LauncherConfig:
    version: Optional[str]
    paths: LauncherPaths


def _read_json(file_path: pathlib.Path) -> Dict[str, Any]:
    if not file_path.exists():
        log.warning(f"{file_path.name} not found in {file_path.parent}. Using defaults.")
        return {}
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        log.warning(f"Could not parse {file_path.name}: {e}. Using defaults.")
        return {}
    except OSError as e:
        log.warning(f"Could not read {file_path.name}: {e}. Using defaults.")
        return {}
    if not isinstance(data, dict):
        log.warning(f"{file_path.name} does not hold a JSON object. Using defaults.")
        return {}
    return data


def load_launcher_config(config_dir: pathlib.Path) -> LauncherConfig:
    """Reads launcher_config.json, replacing ':thisdir:' by the config directory."""
    config_dir = pathlib.Path(config_dir).resolve()
    raw = _read_json(config_dir / LAUNCHER_CONFIG_FILE)
    launcher_config = patch_config(raw, {THISDIR_TOKEN: str(config_dir)})
    log.debug(f"Launcher config: {json.dumps(launcher_config, indent=2)}")

    base_path = pathlib.Path(launcher_config.get('basepath') or config_dir / DEFAULT_DATA_DIR)
    root = base_path / (launcher_config.get('path') or DEFAULT_GAME_DIR)
    return LauncherConfig(version=launcher_config.get('version') or None, paths=LauncherPaths(root))


def load_settings(config_dir: pathlib.Path) -> Settings:
    return Settings.from_dict(_read_json(pathlib.Path(config_dir) / SETTINGS_FILE))
