"""
Platform naming. Version definitions spell operating systems and
architectures in several historical ways; every alias the launcher
understands lives in the tables below.
"""

import logging
import platform
from typing import Optional, Tuple

log = logging.getLogger(__name__)

# Canonical OS buckets are 'windows', 'osx' and 'linux'.
OS_ALIASES = {
    'windows': 'windows',
    'win': 'windows',
    'win32': 'windows',
    'osx': 'osx',
    'macos': 'osx',
    'mac': 'osx',
    'darwin': 'osx',
    'linux': 'linux',
}

# Value of the ${arch} token in legacy "natives" classifier templates,
# e.g. "natives-windows-${arch}" -> "natives-windows-64".
NATIVES_ARCH_TOKENS = {
    'windows': {'x64': '64', 'x86': '32', 'arm64': 'arm64', 'arm32': '32'},
    'linux': {'x64': '64', 'x86': '32', 'arm64': 'arm64', 'arm32': '32'},
    'osx': {'x64': '64', 'arm64': 'arm64'},
}

# Arch suffix of "natives-<os>[-<arch>]" classifiers. No suffix is the x64 build.
CLASSIFIER_ARCHS = {
    '': 'x64',
    'x86': 'x86',
    'arm64': 'arm64',
    'arm32': 'arm32',
}

NATIVES_PREFIX = 'natives-'


def get_os_name() -> str:
    """Gets the current OS name ('windows', 'osx', 'linux')."""
    system = platform.system()
    if system == 'Windows': return 'windows'
    elif system == 'Darwin': return 'osx'
    elif system == 'Linux': return 'linux'
    else: raise OSError(f"Unsupported platform: {system}")


def get_arch_name() -> str:
    """Gets the current architecture name ('x64', 'x86', 'arm64', 'arm32')."""
    machine = platform.machine().lower()
    if machine in ['amd64', 'x86_64']: return 'x64'
    elif machine in ['i386', 'i686', 'x86']: return 'x86'
    elif machine in ['arm64', 'aarch64']: return 'arm64'
    elif machine.startswith('arm') and '64' not in machine: return 'arm32'
    else:
        log.warning(f"Unsupported architecture: {platform.machine()}. Falling back to 'x64'. This might cause issues.")
        return 'x64'


def get_os_version() -> str:
    """Gets the OS version string that rule 'os.version' patterns are matched against."""
    system = platform.system()
    if system == 'Darwin':
        return platform.mac_ver()[0]
    elif system == 'Windows':
        return platform.version()
    return platform.release()


def normalize_os_name(name: str) -> str:
    """Maps any known OS alias to its canonical bucket; unknown names are only lowercased."""
    lowered = name.lower()
    return OS_ALIASES.get(lowered, lowered)


def native_arch_token(os_name: str, arch: str) -> str:
    """Returns the ${arch} substitution of a natives classifier template."""
    return NATIVES_ARCH_TOKENS.get(normalize_os_name(os_name), {}).get(arch, arch)


def parse_native_classifier(classifier: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Splits a "natives-<os>[-<arch>]" classifier into its (os, arch) pair.
    Returns None for classifiers that are not natives or name an unknown OS.
    """
    if not classifier or not classifier.startswith(NATIVES_PREFIX):
        return None
    os_part, _, arch_part = classifier[len(NATIVES_PREFIX):].partition('-')
    os_name = OS_ALIASES.get(os_part.lower())
    if os_name is None:
        return None
    return os_name, CLASSIFIER_ARCHS.get(arch_part, arch_part)
