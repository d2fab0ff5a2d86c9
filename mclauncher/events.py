"""
One-way events sent from the pipeline to whatever displays it. Sinks are
observers only: nothing they do may influence the launch.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

log = logging.getLogger(__name__)


class LaunchStatus(str, Enum):
    IDLE = 'idle'
    PREPARING = 'preparing'
    DOWNLOADING = 'downloading'
    LAUNCHING = 'launching'
    RUNNING = 'running'
    CLOSED = 'closed'
    ERROR = 'error'


class DownloadStatus(str, Enum):
    QUEUED = 'Queued'
    DOWNLOADING = 'Downloading'
    VALIDATING = 'Validating'
    VALIDATED = 'Validated'
    DOWNLOADED_NO_CHECKSUM = 'Downloaded (No Checksum)'
    ERROR = 'Error'
    VALIDATION_FAILED = 'Validation Failed'

    @property
    def is_final(self) -> bool:
        return self in (DownloadStatus.VALIDATED, DownloadStatus.DOWNLOADED_NO_CHECKSUM,
                        DownloadStatus.ERROR, DownloadStatus.VALIDATION_FAILED)


@dataclass(frozen=True)
class StatusEvent:
    stage: LaunchStatus
    message: str = ''
    total_files: Optional[int] = None
    code: Optional[int] = None


@dataclass(frozen=True)
class DownloadProgressEvent:
    file: str
    status: DownloadStatus
    progress: int  # 0-100, -1 when the total size is unknown
    downloaded_bytes: Optional[int] = None
    total_bytes: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ProcessOutputEvent:
    stream: str  # 'stdout' or 'stderr'
    chunk: str


Event = Union[StatusEvent, DownloadProgressEvent, ProcessOutputEvent]


class EventSink:
    """Base sink, drops everything."""

    def emit(self, event: Event) -> None:
        pass


def emit(sink: Optional[EventSink], event: Event) -> None:
    """Fire-and-forget delivery: a failing sink is logged, never propagated."""
    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception:
        log.exception(f"Event sink {type(sink).__name__} failed to handle {type(event).__name__}")
