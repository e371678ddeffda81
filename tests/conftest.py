import asyncio
import pytest
import logging

from tmanager.asyncio_thread import AsyncioEventLoopThread


class MockResponse:
    def __init__(self, status, headers=None, chunks=None, body=""):
        self.status = status
        self.headers = headers or {}
        self.content = self
        self.chunks = chunks or []
        self.body = body
        self.exception = None
        self.chunk_delay = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def iter_chunked(self, chunk_size_limit):
        for chunk in self.chunks:
            if self.exception is not None:
                raise self.exception
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            yield chunk

    async def text(self):
        return self.body

    def set_exception(self, exception: Exception):
        self.exception = exception


class MockSession:
    def __init__(self, responses):
        self._responses = responses
        self.requests = []
        self.uploaded = {}
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        pass

    def get(self, url, headers=None, timeout=None):
        self.requests.append(("GET", url, headers))
        return self._responses[url]

    def post(self, url, data=None, headers=None, timeout=None):
        self.requests.append(("POST", url, headers))
        body = b""
        while True:
            chunk = data.read(1024)
            if not chunk:
                break
            body += chunk
        self.uploaded[headers["X-Bz-File-Name"]] = body
        return self._responses[url]

    async def close(self):
        self.closed = True
        return


@pytest.fixture
def async_thread_runner(request):
    runner = AsyncioEventLoopThread()

    def cleanup():
        logging.debug("Async thread fixture shutting down.")
        if runner.thread.is_alive():
            runner.shutdown()

    request.addfinalizer(cleanup)
    return runner


@pytest.fixture
def create_mock_session(monkeypatch):

    def factory(responses: dict):
        session = MockSession(responses)
        monkeypatch.setattr("aiohttp.ClientSession", lambda: session)
        return session

    return factory


@pytest.fixture
def make_files(tmp_path):

    def factory(files: dict):
        for relative_path, content in files.items():
            path = tmp_path / relative_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        return tmp_path

    return factory
