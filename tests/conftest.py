"""
Shared test fixtures and fakes.

MemoryBlobStore keeps objects in a dict and hands out signed URLs under
https://blobs.test/ that its httpx.MockTransport serves, so the proxy's
real fetch path (client.send(stream=True)) is exercised without network.
FakeGenerator yields canned chunks and records every call.
"""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

import httpx
import pytest

from tts_relay.core.config import RelayConfig, Settings
from tts_relay.core.errors import GenerationError
from tts_relay.services.speech_proxy import SpeechProxy
from tts_relay.tts.blobstore import AUDIO_CONTENT_TYPE, BlobStore, UploadResult
from tts_relay.tts.generator import SpeechGenerator

BLOB_BASE_URL = "https://blobs.test"


class MemoryBlobStore(BlobStore):
    """In-memory blob store with signed URLs served by a MockTransport."""

    backend = "memory"

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.sign_calls: List[Tuple[str, int]] = []
        self.uploads: List[str] = []
        self.content_types: List[str] = []
        self.fetches: List[str] = []
        self.broken: set = set()          # names whose fetch returns 500
        self.upload_error: Optional[str] = None

    async def signed_url(self, name: str, expires_in: int) -> Optional[str]:
        self.sign_calls.append((name, expires_in))
        if name not in self.objects:
            return None
        return f"{BLOB_BASE_URL}/{name}?token=signed"

    async def upload(self, name, chunks, content_type=AUDIO_CONTENT_TYPE) -> UploadResult:
        self.uploads.append(name)
        self.content_types.append(content_type)
        data = b"".join([chunk async for chunk in chunks])
        if self.upload_error:
            return UploadResult(error=self.upload_error)
        self.objects[name] = data
        return UploadResult(data={"Key": f"audio/{name}"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.lstrip("/")
        self.fetches.append(name)
        if name in self.broken:
            return httpx.Response(500, text="storage unavailable")
        if name not in self.objects:
            return httpx.Response(404, json={"error": "not_found"})
        return httpx.Response(200, content=self.objects[name], headers={"Content-Type": AUDIO_CONTENT_TYPE})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeGenerator(SpeechGenerator):
    """Generator yielding fixed chunks; can fail before or during the stream."""

    model = "fake-tts"

    def __init__(
        self,
        chunks: Sequence[bytes] = (b"ID3", b"audio-", b"bytes"),
        error: Optional[str] = None,
        fail_after: Optional[int] = None,
    ):
        self.chunks = list(chunks)
        self.error = error
        self.fail_after = fail_after
        self.calls: List[Tuple[str, str]] = []

    @property
    def audio(self) -> bytes:
        return b"".join(self.chunks)

    async def generate(self, text: str, voice_id: str):
        self.calls.append((text, voice_id))
        if self.error is not None:
            raise GenerationError(self.error)
        return self._stream()

    async def _stream(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise RuntimeError("upstream connection reset")
            await asyncio.sleep(0)
            yield chunk


def make_config(**sections) -> RelayConfig:
    """RelayConfig from raw section dicts, e.g. make_config(proxy={"max_text_chars": 5})."""
    return RelayConfig.from_settings(Settings(raw=dict(sections)))


@pytest.fixture
def store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def proxy(store, generator) -> SpeechProxy:
    return SpeechProxy(store=store, generator=generator, client=store.client(), config=make_config())
