"""Exceptions raised by the launch pipeline."""

from typing import Any, Optional


class LauncherError(Exception):
    """Base class of every failure the launcher reports to its caller."""


class TransportError(LauncherError):
    """Network or HTTP failure."""

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None,
                 outcome: Optional[Any] = None):
        super().__init__(message)
        self.url = url
        self.status = status
        # AggregateOutcome of the download stage that failed, if any.
        self.outcome = outcome


class NotFoundError(TransportError):
    """The remote side answered, but the resource does not exist."""


class IntegrityError(LauncherError):
    """Downloaded content did not match its expected hash or size."""

    def __init__(self, message: str, outcome: Optional[Any] = None):
        super().__init__(message)
        self.outcome = outcome


class FilesystemError(LauncherError):
    """Permission problem or missing path on the local filesystem."""


class DefinitionResolutionError(LauncherError):
    """A version definition (or one of its ancestors) could not be resolved."""


class NativeExtractionError(LauncherError):
    """A native archive is missing or could not be extracted."""


class ProcessSpawnError(LauncherError):
    """The game process could not be started."""


class AlreadyRunningError(LauncherError):
    """A launch was requested while another one is in flight or running."""
