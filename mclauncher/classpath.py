"""Execution classpath assembly."""

import logging
import os
import pathlib
from typing import Dict, Iterable, List

from .models import VersionDefinition
from .rules import RuleContext, evaluate

log = logging.getLogger(__name__)


def client_jar_path(definition: VersionDefinition, version_root: pathlib.Path) -> pathlib.Path:
    base_id = definition.base_version_id
    return version_root / base_id / f"{base_id}.jar"


def build_classpath(
    definition: VersionDefinition,
    library_root: pathlib.Path,
    version_root: pathlib.Path,
    context: RuleContext,
) -> List[pathlib.Path]:
    """
    Ordered classpath of a definition: allowed, non native libraries keyed by
    'group:artifact' (a later declaration replaces an earlier one in place),
    followed by the client jar. Files missing on disk are left out.
    """
    entries: Dict[str, pathlib.Path] = {}
    for library in definition.libraries:
        if not evaluate(library.rules, context):
            continue
        if library.is_native_only:
            continue
        if library.artifact is None or not library.artifact.path:
            log.debug(f"Library {library.name} has no artifact, skipping it for the classpath.")
            continue
        if library.key in entries:
            log.debug(f"Library {library.name} overrides an earlier {library.key} entry.")
        entries[library.key] = library_root / library.artifact.path

    classpath = []
    for key, path in entries.items():
        if not path.is_file():
            log.warning(f"Classpath entry {key} is missing at {path}, leaving it out.")
            continue
        classpath.append(path)

    client_jar = client_jar_path(definition, version_root)
    if client_jar not in classpath:
        if client_jar.is_file():
            classpath.append(client_jar)
        else:
            log.error(f"CRITICAL: client jar not found at {client_jar}. The game will almost certainly fail to start.")
    return classpath


def join_classpath(paths: Iterable[pathlib.Path]) -> str:
    """Joins with ';' on Windows and ':' elsewhere."""
    return os.pathsep.join(str(path) for path in paths)
