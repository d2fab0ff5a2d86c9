import asyncio

import pytest

from conftest import RecordingSink, sha1_of, write_file
from mclauncher import download
from mclauncher.download import CHUNK_SIZE, DownloadTask, download_all
from mclauncher.events import DownloadProgressEvent, DownloadStatus

CONTENT = b'library bytes'


def final_statuses(sink: RecordingSink):
    return [event.status for event in sink.of_type(DownloadProgressEvent) if event.status.is_final]


async def test_download_and_validate(repo, tmp_path, sink):
    url = repo.add('/lib.jar', CONTENT)
    task = DownloadTask(url, tmp_path / 'libs' / 'lib.jar', sha1_of(CONTENT), len(CONTENT))

    outcome = await download_all([task], 2, sink)

    assert outcome.ok
    assert outcome.success_count == 1
    assert outcome.outcomes[0].fetched
    assert task.destination.read_bytes() == CONTENT
    assert final_statuses(sink) == [DownloadStatus.VALIDATED]


async def test_existing_valid_file_is_not_requested(repo, tmp_path, sink):
    url = repo.add('/lib.jar', CONTENT)
    destination = write_file(tmp_path / 'lib.jar', CONTENT)

    outcome = await download_all([DownloadTask(url, destination, sha1_of(CONTENT))], 1, sink)

    assert repo.requests == []
    assert outcome.success_count == 1
    assert not outcome.outcomes[0].fetched
    assert final_statuses(sink) == [DownloadStatus.VALIDATED]


async def test_existing_corrupt_file_is_replaced(repo, tmp_path):
    url = repo.add('/lib.jar', CONTENT)
    destination = write_file(tmp_path / 'lib.jar', b'stale')

    outcome = await download_all([DownloadTask(url, destination, sha1_of(CONTENT))], 1)

    assert outcome.ok
    assert repo.count('/lib.jar') == 1
    assert destination.read_bytes() == CONTENT


async def test_integrity_failure_is_retried_three_times(repo, tmp_path, sink):
    url = repo.add('/lib.jar', b'tampered')
    task = DownloadTask(url, tmp_path / 'lib.jar', sha1_of(CONTENT))

    outcome = await download_all([task], 1, sink, retry_delay=0)

    assert repo.count('/lib.jar') == 3
    assert outcome.validation_failure_count == 1
    assert outcome.failure_count == 0
    assert not outcome.ok
    assert outcome.failures[0].attempts == 3
    assert not task.destination.exists()
    assert final_statuses(sink) == [DownloadStatus.VALIDATION_FAILED]


async def test_size_mismatch_is_an_integrity_failure(repo, tmp_path):
    url = repo.add('/lib.jar', CONTENT)
    task = DownloadTask(url, tmp_path / 'lib.jar', size=len(CONTENT) + 1)

    outcome = await download_all([task], 1, retry_delay=0, attempts=1)

    assert outcome.validation_failure_count == 1


async def test_missing_file_is_a_transport_failure(repo, tmp_path, sink):
    task = DownloadTask(repo.url('/nowhere.jar'), tmp_path / 'nowhere.jar', sha1_of(CONTENT))

    outcome = await download_all([task], 1, sink, retry_delay=0)

    assert repo.count('/nowhere.jar') == 3
    assert outcome.failure_count == 1
    assert outcome.validation_failure_count == 0
    assert '404' in outcome.failures[0].error
    assert final_statuses(sink) == [DownloadStatus.ERROR]


async def test_without_checksum(repo, tmp_path, sink):
    url = repo.add('/options.txt', b'data')
    outcome = await download_all([DownloadTask(url, tmp_path / 'options.txt')], 1, sink)
    assert outcome.ok
    assert final_statuses(sink) == [DownloadStatus.DOWNLOADED_NO_CHECKSUM]


async def test_same_destination_downloaded_once(repo, tmp_path):
    url = repo.add('/lib.jar', CONTENT)
    destination = tmp_path / 'lib.jar'
    tasks = [DownloadTask(url, destination, sha1_of(CONTENT)), DownloadTask(url, destination, sha1_of(CONTENT))]

    outcome = await download_all(tasks, 4)

    assert repo.count('/lib.jar') == 1
    assert len(outcome.outcomes) == 1


async def test_concurrency_is_bounded(repo, tmp_path):
    repo.delay = 0.05
    tasks = []
    for i in range(12):
        content = f"asset {i}".encode()
        tasks.append(DownloadTask(repo.add(f"/objects/{i}", content), tmp_path / str(i), sha1_of(content)))

    outcome = await download_all(tasks, 3)

    assert outcome.success_count == 12
    assert 1 <= repo.max_in_flight <= 3


async def test_invalid_concurrency(tmp_path):
    with pytest.raises(ValueError):
        await download_all([DownloadTask('http://localhost/x', tmp_path / 'x')], 0)


async def test_failing_sink_does_not_break_downloads(repo, tmp_path):
    class BrokenSink(RecordingSink):
        def emit(self, event):
            raise RuntimeError('display went away')

    url = repo.add('/lib.jar', CONTENT)
    outcome = await download_all([DownloadTask(url, tmp_path / 'lib.jar', sha1_of(CONTENT))], 1, BrokenSink())
    assert outcome.ok


async def test_retries_back_off_exponentially(repo, tmp_path, monkeypatch):
    delays = []
    real_sleep = asyncio.sleep

    async def recording_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(download.asyncio, 'sleep', recording_sleep)
    task = DownloadTask(repo.url('/nowhere.jar'), tmp_path / 'nowhere.jar', sha1_of(CONTENT))

    outcome = await download_all([task], 1)

    assert repo.count('/nowhere.jar') == 3
    assert outcome.failure_count == 1
    assert [delay for delay in delays if delay] == [1.0, 2.0]


async def test_unknown_size_reports_indeterminate_progress(repo, tmp_path, sink):
    body = b'x' * (CHUNK_SIZE * 2 + 10)
    url = repo.add('/stream.bin', body)
    repo.chunked.add('/stream.bin')

    outcome = await download_all([DownloadTask(url, tmp_path / 'stream.bin')], 1, sink)

    assert outcome.ok
    assert (tmp_path / 'stream.bin').read_bytes() == body
    downloading = [event for event in sink.of_type(DownloadProgressEvent)
                   if event.status == DownloadStatus.DOWNLOADING]
    streamed = downloading[1:]
    assert streamed
    assert all(event.progress == -1 for event in streamed)
    assert all(event.total_bytes is None for event in streamed)
    assert streamed[-1].downloaded_bytes == len(body)


async def test_progress_is_throttled_per_file(repo, tmp_path, sink, monkeypatch):
    monkeypatch.setattr(download, 'PROGRESS_INTERVAL', 3600.0)
    body = b'y' * (CHUNK_SIZE * 4)
    url = repo.add('/big.bin', body)

    outcome = await download_all([DownloadTask(url, tmp_path / 'big.bin', sha1_of(body), len(body))], 1, sink)

    assert outcome.ok
    downloading = [event for event in sink.of_type(DownloadProgressEvent)
                   if event.status == DownloadStatus.DOWNLOADING]
    # Attempt start, first chunk, end of stream.
    assert len(downloading) == 3
    assert downloading[0].progress == 0
    assert downloading[-1].progress == 100
    assert downloading[-1].downloaded_bytes == len(body)
