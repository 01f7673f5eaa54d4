import asyncio
import json

import httpx
import pytest

from localchat.sessions.store import ConversationStore
from localchat.storage import KeyValueStore


def ndjson(*records: dict) -> bytes:
    return b"".join(json.dumps(r).encode("utf-8") + b"\n" for r in records)


class FakeStreamingClient:
    """Stands in for OllamaClient.open_generate_stream.

    ``chunks`` are yielded as separate network reads. ``error`` is raised
    after all chunks were delivered; ``hang`` blocks forever after them.
    """

    def __init__(self, chunks=(), error: Exception | None = None, hang: bool = False,
                 request_error: Exception | None = None):
        self.chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.request_error = request_error
        self.calls: list[dict] = []

    async def _body(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def open_generate_stream(self, model, prompt, context_length=None):
        self.calls.append({"model": model, "prompt": prompt, "context_length": context_length})
        if self.request_error is not None:
            raise self.request_error
        return httpx.Response(200, content=self._body())


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def session_id(store):
    return store.create_session()


@pytest.fixture
def backend(tmp_path):
    return KeyValueStore(tmp_path / "data")
