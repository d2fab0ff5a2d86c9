"""Typed views over the raw version JSON documents."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .platforms import NATIVES_PREFIX, native_arch_token, normalize_os_name
from .rules import Rule


def maven_path(name: str) -> Optional[str]:
    """
    Converts a maven specifier "group:artifact:version[:classifier][@ext]"
    into its repository relative path, or None if it is malformed.
    """
    extension = 'jar'
    if '@' in name:
        name, extension = name.rsplit('@', 1)
    parts = name.split(':')
    if len(parts) < 3:
        return None
    group, artifact, version = parts[0], parts[1], parts[2]
    file_name = f"{artifact}-{version}"
    if len(parts) > 3 and parts[3]:
        file_name += f"-{parts[3]}"
    return f"{group.replace('.', '/')}/{artifact}/{version}/{file_name}.{extension}"


@dataclass(frozen=True)
class Artifact:
    url: str
    path: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['Artifact']:
        if not isinstance(data, dict):
            return None
        return cls(
            url=data.get('url') or '',
            path=data.get('path'),
            sha1=data.get('sha1'),
            size=data.get('size'),
            id=data.get('id'),
        )


@dataclass(frozen=True)
class Library:
    name: str
    artifact: Optional[Artifact] = None
    classifiers: Mapping[str, Artifact] = field(default_factory=dict)
    rules: Tuple[Rule, ...] = ()
    natives: Mapping[str, str] = field(default_factory=dict)
    extract_exclude: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Library':
        name = data.get('name', '')
        downloads = data.get('downloads') or {}
        artifact = Artifact.from_dict(downloads.get('artifact'))
        if artifact is not None and not artifact.path:
            artifact = Artifact(artifact.url, maven_path(name), artifact.sha1, artifact.size)
        if artifact is None and data.get('url'):
            # Plain maven repository entry, common in mod loader definitions.
            path = maven_path(name)
            if path:
                artifact = Artifact(url=data['url'].rstrip('/') + '/' + path, path=path)
        classifiers = {}
        for classifier, info in (downloads.get('classifiers') or {}).items():
            parsed = Artifact.from_dict(info)
            if parsed is not None and parsed.path:
                classifiers[classifier] = parsed
        extract = data.get('extract') or {}
        return cls(
            name=name,
            artifact=artifact if artifact is not None and artifact.path else None,
            classifiers=classifiers,
            rules=tuple(Rule.from_dict(rule) for rule in data.get('rules') or ()),
            natives=dict(data.get('natives') or {}),
            extract_exclude=tuple(extract.get('exclude') or ()),
        )

    @property
    def _coordinates(self) -> List[str]:
        return self.name.split('@', 1)[0].split(':')

    @property
    def group(self) -> str:
        return self._coordinates[0]

    @property
    def artifact_id(self) -> str:
        parts = self._coordinates
        return parts[1] if len(parts) > 1 else ''

    @property
    def version(self) -> str:
        parts = self._coordinates
        return parts[2] if len(parts) > 2 else ''

    @property
    def classifier(self) -> Optional[str]:
        parts = self._coordinates
        return parts[3] if len(parts) > 3 else None

    @property
    def key(self) -> str:
        """Deduplication key: 'group:artifact', version and classifier excluded."""
        return f"{self.group}:{self.artifact_id}"

    @property
    def is_native_only(self) -> bool:
        if self.natives:
            return True
        if self.classifier and self.classifier.startswith(NATIVES_PREFIX):
            return True
        if self.artifact and self.artifact.path:
            file_name = self.artifact.path.rsplit('/', 1)[-1]
            if f"-{NATIVES_PREFIX}" in file_name:
                return True
        return False

    def native_classifier(self, os_name: str, arch: str) -> Optional[str]:
        """Resolves the legacy 'natives' template of this OS, e.g. 'natives-windows-${arch}'."""
        wanted = normalize_os_name(os_name)
        for natives_os, template in self.natives.items():
            if normalize_os_name(natives_os) == wanted:
                return template.replace('${arch}', native_arch_token(wanted, arch))
        return None


@dataclass(frozen=True)
class LoggingConfig:
    argument: str
    file: Artifact
    type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['LoggingConfig']:
        client = (data or {}).get('client')
        if not isinstance(client, dict):
            return None
        file = Artifact.from_dict(client.get('file'))
        if file is None or not client.get('argument'):
            return None
        return cls(argument=client['argument'], file=file, type=client.get('type'))


@dataclass(frozen=True)
class VersionDefinition:
    id: str
    main_class: Optional[str] = None
    type: str = 'release'
    inherits_from: Optional[str] = None
    jar: Optional[str] = None
    libraries: Tuple[Library, ...] = ()
    jvm_arguments: Tuple[Any, ...] = ()
    game_arguments: Tuple[Any, ...] = ()
    minecraft_arguments: Optional[str] = None
    downloads: Mapping[str, Artifact] = field(default_factory=dict)
    asset_index: Optional[Artifact] = None
    assets: Optional[str] = None
    logging: Optional[LoggingConfig] = None
    java_version: Optional[Mapping[str, Any]] = None
    time: Optional[str] = None
    release_time: Optional[str] = None
    compliance_level: Optional[int] = None
    minimum_launcher_version: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VersionDefinition':
        arguments = data.get('arguments') or {}
        downloads = {}
        for kind, info in (data.get('downloads') or {}).items():
            parsed = Artifact.from_dict(info)
            if parsed is not None:
                downloads[kind] = parsed
        return cls(
            id=data.get('id', ''),
            main_class=data.get('mainClass'),
            type=data.get('type', 'release'),
            inherits_from=data.get('inheritsFrom'),
            jar=data.get('jar'),
            libraries=tuple(Library.from_dict(lib) for lib in data.get('libraries') or () if lib.get('name')),
            jvm_arguments=tuple(arguments.get('jvm') or ()),
            game_arguments=tuple(arguments.get('game') or ()),
            minecraft_arguments=data.get('minecraftArguments'),
            downloads=downloads,
            asset_index=Artifact.from_dict(data.get('assetIndex')),
            assets=data.get('assets'),
            logging=LoggingConfig.from_dict(data.get('logging')),
            java_version=data.get('javaVersion'),
            time=data.get('time'),
            release_time=data.get('releaseTime'),
            compliance_level=data.get('complianceLevel'),
            minimum_launcher_version=data.get('minimumLauncherVersion'),
        )

    @property
    def arguments(self) -> Dict[str, List[Any]]:
        return {'jvm': list(self.jvm_arguments), 'game': list(self.game_arguments)}

    @property
    def base_version_id(self) -> str:
        """Id whose directory holds the client jar."""
        return self.jar or self.inherits_from or self.id

    @property
    def client_download(self) -> Optional[Artifact]:
        return self.downloads.get('client')


@dataclass(frozen=True)
class AssetObject:
    name: str
    hash: str
    size: Optional[int] = None


@dataclass(frozen=True)
class AssetIndex:
    objects: Tuple[AssetObject, ...]
    virtual: bool = False
    map_to_resources: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AssetIndex':
        objects = []
        for name, details in (data.get('objects') or {}).items():
            objects.append(AssetObject(name=name, hash=details.get('hash', ''), size=details.get('size')))
        return cls(
            objects=tuple(objects),
            virtual=bool(data.get('virtual', False)),
            map_to_resources=bool(data.get('map_to_resources', False)),
        )
