import pytest
from types import SimpleNamespace
from typing import Any, Dict, List, Optional


@pytest.fixture
def mock_env(monkeypatch):
    """Mock environment variables for API keys."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test-anthropic")
    monkeypatch.setenv("GOOGLE_API_KEY", "AIza-test-google")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-test-deepseek")
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
    monkeypatch.delenv("LLM_TIMEOUT_SECONDS", raising=False)


class FakeAsyncStream:
    """Stands in for an SDK stream: async-iterable, closable, optionally failing."""

    def __init__(self, items: List[Any], error: Optional[Exception] = None):
        self._items = list(items)
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._items:
            yield item
        if self._error is not None:
            raise self._error

    async def close(self):
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False


class FakeFileStore:
    """In-memory FileStore keyed by vendor file id."""

    def __init__(self, files: Optional[Dict[str, Dict[str, Any]]] = None, blobs: Optional[Dict[str, bytes]] = None):
        self.files = files or {}
        self.blobs = blobs or {}
        self.downloads: List[str] = []

    async def lookup_file_by_vendor_id(self, vendor_id):
        return self.files.get(vendor_id)

    async def download(self, storage_path):
        self.downloads.append(storage_path)
        if storage_path not in self.blobs:
            raise IOError(f"object not found: {storage_path}")
        return self.blobs[storage_path]


@pytest.fixture
def fake_stream():
    return FakeAsyncStream


@pytest.fixture
def fake_file_store():
    return FakeFileStore


def openai_chunk(content=None, finish_reason=None, usage=None, choices=True):
    """Build an object shaped like an OpenAI ChatCompletionChunk."""
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=SimpleNamespace(content=content), finish_reason=finish_reason)] if choices else [],
        usage=usage,
        model="gpt-4o-mini",
    )


@pytest.fixture
def make_openai_chunk():
    return openai_chunk


async def collect(stream) -> List[Dict[str, Any]]:
    return [chunk async for chunk in stream]


@pytest.fixture
def drain():
    return collect
