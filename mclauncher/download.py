"""
Bounded-concurrency download engine. Every task is fetched, validated and
retried independently; the caller gets an aggregate that tells transport
failures apart from integrity failures.
"""

import asyncio
import hashlib
import logging
import pathlib
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import aiofiles
import aiofiles.os
import aiohttp

from .errors import TransportError
from .events import DownloadProgressEvent, DownloadStatus, EventSink, emit

log = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAY = 1.0  # seconds, doubled after every failed attempt
PROGRESS_INTERVAL = 1.0  # seconds between two progress events of the same file
CHUNK_SIZE = 64 * 1024
USER_AGENT = 'mclauncher'
DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=30)


@dataclass(frozen=True)
class DownloadTask:
    url: str
    destination: pathlib.Path
    sha1: Optional[str] = None
    size: Optional[int] = None
    label: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.label or self.destination.name


@dataclass(frozen=True)
class DownloadOutcome:
    task: DownloadTask
    fetched: bool
    validated: bool
    error: Optional[str] = None
    attempts: int = 0

    @property
    def integrity_failure(self) -> bool:
        return self.fetched and not self.validated


@dataclass
class AggregateOutcome:
    success_count: int = 0
    failure_count: int = 0
    validation_failure_count: int = 0
    outcomes: List[DownloadOutcome] = field(default_factory=list)

    def add(self, outcome: DownloadOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.validated:
            self.success_count += 1
        elif outcome.integrity_failure:
            self.validation_failure_count += 1
        else:
            self.failure_count += 1

    @property
    def ok(self) -> bool:
        return self.failure_count == 0 and self.validation_failure_count == 0

    @property
    def failures(self) -> List[DownloadOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.validated]


def open_session(timeout: aiohttp.ClientTimeout = DEFAULT_TIMEOUT) -> aiohttp.ClientSession:
    """HTTP session with the launcher's timeouts and user agent."""
    return aiohttp.ClientSession(timeout=timeout, headers={'User-Agent': USER_AGENT})


# --- Helper Functions ---

async def get_file_sha1(file_path: pathlib.Path) -> str:
    """Calculates the SHA1 hash of a file asynchronously."""
    sha1_hash = hashlib.sha1()
    async with aiofiles.open(file_path, 'rb') as f:
        while True:
            chunk = await f.read(CHUNK_SIZE)
            if not chunk:
                break
            sha1_hash.update(chunk)
    return sha1_hash.hexdigest()


async def file_exists(file_path: pathlib.Path) -> bool:
    """Checks if a regular file exists asynchronously."""
    return await aiofiles.os.path.isfile(file_path)


async def _remove_quietly(file_path: pathlib.Path) -> None:
    try:
        if await aiofiles.os.path.exists(file_path):
            await aiofiles.os.remove(file_path)
    except OSError as error:
        log.warning(f"Could not remove partial file {file_path}: {error}")


def _progress(sink: Optional[EventSink], task: DownloadTask, status: DownloadStatus, progress: int,
              downloaded: Optional[int] = None, total: Optional[int] = None, error: Optional[str] = None) -> None:
    emit(sink, DownloadProgressEvent(
        file=task.display_name,
        status=status,
        progress=progress,
        downloaded_bytes=downloaded,
        total_bytes=total,
        error=error,
    ))


async def _fetch(task: DownloadTask, session: aiohttp.ClientSession, sink: Optional[EventSink]) -> int:
    """Streams the task's URL into its destination, returns the number of bytes written."""
    async with session.get(task.url) as response:
        if not 200 <= response.status < 300:
            raise TransportError(f"Failed to download {task.url}: HTTP {response.status} {response.reason}",
                                 url=task.url, status=response.status)
        total = task.size or response.content_length or 0
        downloaded = 0
        last_update = None
        async with aiofiles.open(task.destination, 'wb') as f:
            async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                await f.write(chunk)
                downloaded += len(chunk)
                now = time.monotonic()
                if last_update is None or now - last_update >= PROGRESS_INTERVAL:
                    last_update = now
                    percent = round(downloaded * 100 / total) if total else -1
                    _progress(sink, task, DownloadStatus.DOWNLOADING, percent, downloaded, total or None)
    _progress(sink, task, DownloadStatus.DOWNLOADING, 100 if total else -1, downloaded, total or None)
    return downloaded


async def _validate(task: DownloadTask) -> Optional[str]:
    """Returns a description of the integrity problem, None if the file is fine."""
    if task.size is not None:
        actual_size = (await aiofiles.os.stat(task.destination)).st_size
        if actual_size != task.size:
            return f"Size mismatch (Expected: {task.size}, Got: {actual_size})"
    if task.sha1:
        actual_sha1 = await get_file_sha1(task.destination)
        if actual_sha1.lower() != task.sha1.lower():
            return f"SHA1 mismatch (Expected: {task.sha1}, Got: {actual_sha1})"
    return None


async def download_one(
    task: DownloadTask,
    session: aiohttp.ClientSession,
    sink: Optional[EventSink] = None,
    *,
    attempts: int = MAX_ATTEMPTS,
    retry_delay: float = RETRY_DELAY,
) -> DownloadOutcome:
    """Downloads a single file with validation, retries and progress reporting."""
    label = task.display_name
    try:
        await aiofiles.os.makedirs(task.destination.parent, exist_ok=True)
    except OSError as error:
        message = f"Cannot create directory {task.destination.parent}: {error}"
        log.error(message)
        _progress(sink, task, DownloadStatus.ERROR, 0, error=message)
        return DownloadOutcome(task, fetched=False, validated=False, error=message)

    # --- Validation of an existing file ---
    if task.sha1 and await file_exists(task.destination):
        _progress(sink, task, DownloadStatus.VALIDATING, 0, 0, task.size)
        try:
            current_sha1 = await get_file_sha1(task.destination)
        except OSError as error:
            log.warning(f"Could not hash existing file {task.destination}. Redownloading. Error: {error}")
            current_sha1 = None
        if current_sha1 is not None and current_sha1.lower() == task.sha1.lower():
            log.debug(f"SHA1 valid for existing file {task.destination}. Skipping download.")
            _progress(sink, task, DownloadStatus.VALIDATED, 100, task.size, task.size)
            return DownloadOutcome(task, fetched=False, validated=True)
        if current_sha1 is not None:
            log.info(f"SHA1 mismatch for existing file {label}. Expected {task.sha1}, got {current_sha1}. Redownloading.")

    # --- Download ---
    last_error = None
    integrity_failed = False
    for attempt in range(1, attempts + 1):
        log.debug(f"Starting download ({attempt}/{attempts}): {task.url} -> {task.destination}")
        _progress(sink, task, DownloadStatus.DOWNLOADING, 0, 0, task.size)
        try:
            await _fetch(task, session, sink)
            _progress(sink, task, DownloadStatus.VALIDATING, 100, task.size, task.size)
            problem = await _validate(task)
        except TransportError as error:
            integrity_failed, last_error = False, str(error)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as error:
            integrity_failed, last_error = False, f"Error downloading {task.url}: {type(error).__name__}: {error}"
        else:
            if problem is None:
                status = DownloadStatus.VALIDATED if task.sha1 else DownloadStatus.DOWNLOADED_NO_CHECKSUM
                _progress(sink, task, status, 100, task.size, task.size)
                return DownloadOutcome(task, fetched=True, validated=True, attempts=attempt)
            integrity_failed, last_error = True, f"{problem} for {label}"

        await _remove_quietly(task.destination)
        if attempt < attempts:
            delay = retry_delay * 2 ** (attempt - 1)
            log.warning(f"Attempt {attempt}/{attempts} failed for {label}: {last_error}. Retrying in {delay:g}s.")
            await asyncio.sleep(delay)

    log.error(f"Giving up on {label} after {attempts} attempts: {last_error}")
    final_status = DownloadStatus.VALIDATION_FAILED if integrity_failed else DownloadStatus.ERROR
    _progress(sink, task, final_status, 0, error=last_error)
    return DownloadOutcome(task, fetched=integrity_failed, validated=False, error=last_error, attempts=attempts)


async def download_all(
    tasks: Iterable[DownloadTask],
    concurrency: int,
    sink: Optional[EventSink] = None,
    *,
    session: Optional[aiohttp.ClientSession] = None,
    attempts: int = MAX_ATTEMPTS,
    retry_delay: float = RETRY_DELAY,
) -> AggregateOutcome:
    """
    Downloads every task with at most ``concurrency`` of them in flight.

    Tasks sharing a destination are only run once, two workers never write
    the same file. A session is opened for the call unless one is given.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    queue: asyncio.Queue = asyncio.Queue()
    seen = set()
    for task in tasks:
        if task.destination in seen:
            continue
        seen.add(task.destination)
        queue.put_nowait(task)

    aggregate = AggregateOutcome()
    if queue.empty():
        return aggregate

    async def worker(client: aiohttp.ClientSession) -> None:
        while True:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            outcome = await download_one(task, client, sink, attempts=attempts, retry_delay=retry_delay)
            aggregate.add(outcome)

    client = session if session is not None else open_session()
    try:
        workers = min(concurrency, queue.qsize())
        await asyncio.gather(*(worker(client) for _ in range(workers)))
    finally:
        if session is None:
            await client.close()

    log.info(f"Multi-download complete. Success: {aggregate.success_count}, "
             f"Failures: {aggregate.failure_count}, Validation Failures: {aggregate.validation_failure_count}")
    return aggregate
