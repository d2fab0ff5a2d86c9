"""Extraction of platform specific native binaries out of library archives."""

import asyncio
import logging
import pathlib
import shutil
import zipfile
from typing import Optional, Sequence, Tuple

import aiofiles.os

from .errors import NativeExtractionError
from .models import Artifact, Library, VersionDefinition
from .platforms import normalize_os_name, parse_native_classifier
from .rules import RuleContext, evaluate

log = logging.getLogger(__name__)

# Used when a library declares no 'extract.exclude' of its own.
DEFAULT_EXCLUDE = ('META-INF/',)


# Sync zip extraction (run in executor)
def _extract_zip_sync(jar_path: pathlib.Path, extract_to_dir: pathlib.Path, exclude: Sequence[str]) -> int:
    count = 0
    with zipfile.ZipFile(jar_path, 'r') as zip_ref:
        for member in zip_ref.infolist():
            if member.is_dir():
                continue
            if any(member.filename.startswith(prefix) for prefix in exclude):
                continue
            zip_ref.extract(member, extract_to_dir)
            count += 1
    return count


async def extract_natives(jar_path: pathlib.Path, extract_to_dir: pathlib.Path, exclude: Sequence[str]) -> int:
    """Extracts every non excluded file of a native archive, returns how many were written."""
    if not await aiofiles.os.path.isfile(jar_path):
        raise NativeExtractionError(f"Native archive not found, expected at {jar_path}")
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, _extract_zip_sync, jar_path, extract_to_dir, tuple(exclude))
    except (zipfile.BadZipFile, OSError) as error:
        raise NativeExtractionError(f"Failed to extract natives from {jar_path.name}: {error}") from error


def is_native_bearing(library: Library) -> bool:
    return bool(library.natives) or parse_native_classifier(library.classifier) is not None


def select_native_archive(library: Library, context: RuleContext) -> Optional[Tuple[str, Artifact]]:
    """
    Finds the archive holding this library's natives for the context's platform.

    Two layouts exist: a library whose own name carries a natives classifier
    ("...:natives-macos-arm64"), and a library with a per-OS 'natives'
    template pointing into its classifier downloads. The first one that
    matches wins.
    """
    parsed = parse_native_classifier(library.classifier)
    if parsed is not None and library.artifact is not None:
        os_name, arch = parsed
        if os_name == normalize_os_name(context.os_name or '') and (context.arch is None or arch == context.arch):
            return library.classifier, library.artifact

    if library.natives and context.os_name:
        classifier = library.native_classifier(context.os_name, context.arch or 'x64')
        if classifier and classifier in library.classifiers:
            return classifier, library.classifiers[classifier]

    return None


async def materialize_natives(
    definition: VersionDefinition,
    context: RuleContext,
    destination_dir: pathlib.Path,
    libraries_dir: pathlib.Path,
) -> bool:
    """
    Recreates ``destination_dir`` and fills it with the natives of every
    library allowed on this platform. Returns False if an archive that should
    have been downloaded is missing or unreadable.
    """
    loop = asyncio.get_running_loop()
    try:
        if await aiofiles.os.path.isdir(destination_dir):
            log.debug(f"Removing existing natives directory: {destination_dir}")
            await loop.run_in_executor(None, shutil.rmtree, destination_dir)
        await aiofiles.os.makedirs(destination_dir, exist_ok=True)
    except OSError as error:
        log.error(f"Could not clear/recreate natives directory {destination_dir}: {error}")
        return False

    extracted = 0
    native_bearing = 0
    failed = []
    for library in definition.libraries:
        if not evaluate(library.rules, context):
            continue
        if is_native_bearing(library):
            native_bearing += 1
        selected = select_native_archive(library, context)
        if selected is None:
            continue
        classifier, artifact = selected
        jar_path = libraries_dir / artifact.path
        log.info(f"Extracting {library.name} ({classifier}) from {jar_path.name}")
        try:
            await extract_natives(jar_path, destination_dir, library.extract_exclude or DEFAULT_EXCLUDE)
        except NativeExtractionError as error:
            log.error(str(error))
            failed.append(library.name)
            continue
        extracted += 1

    if failed:
        log.error(f"Native extraction failed for: {', '.join(failed)}")
        return False
    if extracted == 0 and native_bearing:
        log.warning(f"{native_bearing} libraries carry natives but none matched {context.os_name}/{context.arch}. "
                    "The game may fail to load its native libraries.")
    log.info(f"Extracted natives from {extracted} archives.")
    return True
