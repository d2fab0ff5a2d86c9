import asyncio
import hashlib
import io
import json
import pathlib
import zipfile
from typing import Any, Dict, List, Set

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from mclauncher.config import LauncherPaths
from mclauncher.errors import NotFoundError
from mclauncher.events import EventSink


def sha1_of(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def zip_bytes(members: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for name, content in members.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def write_file(path: pathlib.Path, content: bytes) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


class FakeRepository:
    """HTTP server answering from an in-memory file table and recording every request."""

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.statuses: Dict[str, int] = {}
        self.chunked: Set[str] = set()
        self.requests: List[str] = []
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.server = None

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    def add(self, path: str, content: bytes) -> str:
        self.files[path] = content
        return self.url(path)

    def add_json(self, path: str, data: Any) -> str:
        return self.add(path, json.dumps(data).encode())

    def artifact(self, path: str, content: bytes, repo_path: str = None) -> Dict[str, Any]:
        """Publishes ``content`` and returns the matching download entry of a definition."""
        return {
            'path': repo_path or path.lstrip('/'),
            'url': self.add(path, content),
            'sha1': sha1_of(content),
            'size': len(content),
        }

    def count(self, path: str) -> int:
        return self.requests.count(path)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(request.path)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if request.path in self.statuses:
                return web.Response(status=self.statuses[request.path])
            if request.path not in self.files:
                return web.Response(status=404)
            if request.path in self.chunked:
                return await self._stream(request, self.files[request.path])
            return web.Response(body=self.files[request.path])
        finally:
            self.in_flight -= 1

    async def _stream(self, request: web.Request, body: bytes) -> web.StreamResponse:
        # Chunked transfer: the response carries no Content-Length.
        response = web.StreamResponse()
        response.enable_chunked_encoding()
        await response.prepare(request)
        for start in range(0, len(body), 4096):
            await response.write(body[start:start + 4096])
        await response.write_eof()
        return response


class RecordingSink(EventSink):
    def __init__(self):
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> list:
        return [event for event in self.events if isinstance(event, event_type)]


class FakeFetcher:
    """Serves raw definitions by id, counting lookups."""

    def __init__(self, documents: Dict[str, Dict[str, Any]]):
        self.documents = {version_id: json.dumps(doc).encode() for version_id, doc in documents.items()}
        self.calls: List[str] = []

    async def fetch_version(self, version_id: str) -> bytes:
        self.calls.append(version_id)
        if version_id not in self.documents:
            raise NotFoundError(f"Version \"{version_id}\" not found in the version manifest.")
        return self.documents[version_id]


@pytest.fixture
async def repo():
    repository = FakeRepository()
    app = web.Application()
    app.router.add_route('GET', '/{tail:.*}', repository.handle)
    server = TestServer(app)
    await server.start_server()
    repository.server = server
    yield repository
    await server.close()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def paths(tmp_path) -> LauncherPaths:
    return LauncherPaths(tmp_path / '.minecraft')
