"""Terminal rendering of launch events with tqdm progress bars."""

import logging
from typing import Optional

from tqdm.asyncio import tqdm

from .events import DownloadProgressEvent, EventSink, LaunchStatus, StatusEvent

log = logging.getLogger(__name__)


class ConsoleSink(EventSink):
    """One progress bar per download stage, counting finished files."""

    def __init__(self, leave: bool = False):
        self.leave = leave
        self._bar: Optional[tqdm] = None

    def emit(self, event) -> None:
        if isinstance(event, StatusEvent):
            self._on_status(event)
        elif isinstance(event, DownloadProgressEvent):
            if self._bar is not None and event.status.is_final:
                self._bar.update(1)
                if event.error:
                    self._bar.set_postfix_str(f"last error: {event.file}", refresh=False)

    def _on_status(self, event: StatusEvent) -> None:
        self.close()
        if event.stage == LaunchStatus.DOWNLOADING and event.total_files:
            self._bar = tqdm(total=event.total_files, desc=event.message.rstrip('.'), unit='file', leave=self.leave)
        elif event.stage == LaunchStatus.ERROR:
            tqdm.write(f"Launch failed: {event.message}")
        elif event.stage == LaunchStatus.CLOSED:
            tqdm.write(f"Game exited with code {event.code}")

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
