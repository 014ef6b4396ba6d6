"""
Speech Proxy Service.

This module provides SpeechProxy, the only component with business logic.
It composes the key deriver, blob store, generator, stream forker and job
registry into the cache-fill-and-stream-fork protocol:

    request ─► derive_key ─► signed_url(<key>.mp3)
                                 │
               ┌─────────────────┴────────────────┐
            URL + fetch ok                  no URL / fetch failed
               │                                  │
          HIT: relay cached body           validate text (400)
                                                  │
                                           generate (500 on failure)
                                                  │
                                                fork
                                          ┌───────┴────────┐
                                    caller branch    storage branch
                                          │                │
                                    MISS: relay      persist job (detached)

Guarantees:
    - A cached object is served without validating the request text.
    - Invalid input never reaches the generator or the store.
    - A generation failure before the first byte is surfaced as
      GenerationError; after that the stream itself fails.
    - The caller branch is returned without waiting for the upload, and
      the upload outcome never changes the response.
    - A failed cache fetch degrades to a miss (regenerate + re-upload).

Usage:
    proxy = SpeechProxy.from_config(settings.get_relay_config())
    stream = await proxy.handle(SpeechRequest(text="Hello"))
    async for chunk in stream.chunks:
        ...
    await proxy.aclose()

See Also:
    - api/routes.py: HTTP surface
    - tts/fork.py: StreamForker
    - tts/jobs.py: BackgroundJobs
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from tts_relay.core.config import Defaults, RelayConfig
from tts_relay.core.errors import ErrorCode, GenerationError, InvalidInputError, ProxyError
from tts_relay.core.logging import debug, error, fail, get_logger, info, success, verbose, warn
from tts_relay.core.metrics import metrics
from tts_relay.tts.blobstore import AUDIO_CONTENT_TYPE, BlobStore
from tts_relay.tts.fork import StreamBranch, fork
from tts_relay.tts.generator import OpenAISpeechGenerator, SpeechGenerator
from tts_relay.tts.jobs import BackgroundJobs
from tts_relay.tts.keys import derive_key, object_name
from tts_relay.tts.storage import FileBlobStore
from tts_relay.tts.supabase import SupabaseBlobStore
from tts_relay.utils.streams import ResponseChunks
from tts_relay.utils.timeit import timeit

_LOG = get_logger("tts-relay.proxy")

TEXT_REQUIRED = "Text parameter is required"


# =============================================================================
# Request/Response Dataclasses
# =============================================================================

@dataclass(frozen=True)
class SpeechRequest:
    """
    One text-to-speech request.

    Attributes:
        text: Text to speak. May be None: a cached object for the null-text
            key is still served, validation only happens on a miss.
        voice_id: Voice id, already defaulted.
    """
    text: Optional[str]
    voice_id: str = Defaults.PROXY_DEFAULT_VOICE_ID


@dataclass
class SpeechStream:
    """
    Result of SpeechProxy.handle().

    Attributes:
        key: Cache key of the request.
        cache_status: "hit" or "miss".
        chunks: Audio bytes, to be relayed as they arrive.
        media_type: Content type of the audio.
    """
    key: str
    cache_status: str  # "hit", "miss"
    chunks: AsyncIterator[bytes]
    media_type: str = AUDIO_CONTENT_TYPE

    async def aclose(self) -> None:
        """Release the underlying stream (cached response or fork branch)."""
        closer = getattr(self.chunks, "aclose", None)
        if closer is not None:
            await closer()


# =============================================================================
# Store factory
# =============================================================================

def build_store(config: RelayConfig, client: Optional[httpx.AsyncClient] = None) -> BlobStore:
    """Create the blob store selected by storage.backend."""
    storage = config.storage
    if storage.backend == "local":
        return FileBlobStore(
            base_dir=storage.base_dir,
            public_base_url=storage.public_base_url,
            signing_secret=storage.signing_secret,
        )
    if not storage.supabase_url or not storage.service_role_key:
        warn(_LOG, "supabase_not_configured",
             hint="set APP_SUPABASE_URL and APP_SUPABASE_SERVICE_ROLE_KEY")
    return SupabaseBlobStore(
        url=storage.supabase_url,
        service_role_key=storage.service_role_key,
        bucket=storage.bucket,
        upsert=storage.upsert,
        client=client,
        timeout_s=storage.timeout_s,
    )


# =============================================================================
# Main Service Class
# =============================================================================

class SpeechProxy:
    """
    Cache-backed streaming proxy in front of a speech generator.

    Args:
        store: Blob store holding <key>.mp3 objects.
        generator: Speech generation backend.
        client: AsyncClient used to fetch signed cache URLs.
        jobs: Registry owning persistence tasks.
        config: Validated configuration (defaults if omitted).
    """

    def __init__(
        self,
        store: BlobStore,
        generator: SpeechGenerator,
        client: httpx.AsyncClient,
        jobs: Optional[BackgroundJobs] = None,
        config: Optional[RelayConfig] = None,
    ):
        self.store = store
        self.generator = generator
        self.client = client
        self.jobs = jobs or BackgroundJobs()
        self.config = config or RelayConfig()
        self._owned: list = []

    @classmethod
    def from_config(cls, config: RelayConfig) -> "SpeechProxy":
        """
        Build a proxy and the clients it needs from configuration.

        The clients created here are owned by the proxy and closed by
        aclose().
        """
        fetch_client = httpx.AsyncClient(timeout=config.proxy.fetch_timeout_s)
        storage_client = httpx.AsyncClient(timeout=config.storage.timeout_s)
        generator_client = httpx.AsyncClient(timeout=config.generator.timeout_s)

        proxy = cls(
            store=build_store(config, storage_client),
            generator=OpenAISpeechGenerator(config.generator, generator_client),
            client=fetch_client,
            config=config,
        )
        proxy._owned = [fetch_client, storage_client, generator_client]
        info(_LOG, "proxy_ready", storage=proxy.store.backend, generator=proxy.generator.model)
        return proxy

    def resolve_voice(self, voice_id: Optional[str]) -> str:
        """Fill in the default voice when none was given."""
        return self.config.proxy.default_voice_id if voice_id is None else voice_id

    def validate(self, request: SpeechRequest) -> str:
        """
        Check a request before generation.

        Returns:
            The text to generate.

        Raises:
            InvalidInputError: Missing, empty or too long text.
        """
        if request.text is None or request.text == "":
            raise InvalidInputError(TEXT_REQUIRED)

        max_chars = self.config.proxy.max_text_chars
        if len(request.text) > max_chars:
            raise InvalidInputError(f"Text exceeds maximum length ({len(request.text)} > {max_chars})")
        return request.text

    # =========================================================================
    # Cache lookup
    # =========================================================================

    async def lookup(self, key: str) -> Optional[ResponseChunks]:
        """
        Look up a cached object and open its body.

        Returns:
            Open body stream on a hit, None on a miss. A signed URL whose
            fetch fails counts as "stale" and is also reported as None.
        """
        name = object_name(key)
        with timeit("cache_sign") as t_sign:
            url = await self.store.signed_url(name, self.config.proxy.signed_url_ttl_seconds)
        verbose(_LOG, "stage", event="cache_sign", seconds=t_sign.seconds, found=url is not None)

        if url is None:
            metrics.record_lookup("miss")
            return None

        with timeit("cache_fetch") as t_fetch:
            try:
                response = await self.client.send(self.client.build_request("GET", url), stream=True)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                warn(_LOG, "cache_stale", key=key[:8], code=ErrorCode.CACHE_LOOKUP_FAILED,
                     error=str(e) or type(e).__name__)
                metrics.record_lookup("stale")
                return None

        if not response.is_success:
            await response.aclose()
            warn(_LOG, "cache_stale", key=key[:8], code=ErrorCode.CACHE_LOOKUP_FAILED,
                 status=response.status_code)
            metrics.record_lookup("stale")
            return None

        metrics.record_lookup("hit")
        verbose(_LOG, "stage", event="cache_fetch", seconds=t_fetch.seconds, status=response.status_code)
        return ResponseChunks(response)

    # =========================================================================
    # Request handling
    # =========================================================================

    async def handle(self, request: SpeechRequest) -> SpeechStream:
        """
        Serve a request from cache or generate, relay and persist it.

        Raises:
            InvalidInputError: Cache miss with unusable text.
            GenerationError: The generator failed before the first byte.
        """
        preview_chars = self.config.logging.text_preview_chars
        text = request.text
        info(_LOG, "request",
             chars=len(text) if text is not None else None,
             text_preview=text[:preview_chars] if text and preview_chars > 0 else "",
             voice=request.voice_id)

        key = derive_key(request.text, request.voice_id)
        debug(_LOG, "resolved", cache_key=key, text=request.text, voice=request.voice_id)

        cached = await self.lookup(key)
        if cached is not None:
            info(_LOG, "cache_hit", key=key[:8], cache="hit")
            metrics.record_request("hit")
            return SpeechStream(key=key, cache_status="hit", chunks=cached)

        info(_LOG, "cache_miss", key=key[:8], cache="miss")

        try:
            text = self.validate(request)
        except InvalidInputError as e:
            warn(_LOG, "invalid_input", code=e.code, error=e.message)
            metrics.record_request("invalid")
            raise

        with timeit("generate_start") as t_gen:
            try:
                source = await self.generator.generate(text, request.voice_id)
            except GenerationError as e:
                fail(_LOG, "generation_failed", key=key[:8], code=e.code, error=e.message)
                metrics.record_request("error")
                raise
        metrics.observe_generation_start(t_gen.timing.seconds if t_gen.timing else 0.0)
        info(_LOG, "generate_start", key=key[:8], seconds=t_gen.seconds)

        caller, storage = fork(source, self.config.fork.max_buffered_chunks)
        self.jobs.spawn(f"persist:{key}", self._persist(key, storage))

        metrics.record_request("miss")
        return SpeechStream(key=key, cache_status="miss", chunks=caller)

    async def _persist(self, key: str, branch: StreamBranch) -> None:
        """Upload the storage branch; failures are logged and counted only."""
        name = object_name(key)
        try:
            with timeit("persist") as t:
                result = await self.store.upload(name, branch, AUDIO_CONTENT_TYPE)
        except Exception as e:
            error(_LOG, "persist_failed", key=key[:8], code=ErrorCode.PERSIST_FAILED,
                  error=str(e) or type(e).__name__)
            metrics.record_persist("error")
            return
        finally:
            branch.close()

        if result.ok:
            success(_LOG, "persist_ok", key=key[:8], name=name, seconds=t.seconds)
            metrics.record_persist("ok")
        else:
            warn(_LOG, "persist_failed", key=key[:8], code=ErrorCode.PERSIST_FAILED, error=result.error)
            metrics.record_persist("error")

    # =========================================================================
    # Health / lifecycle
    # =========================================================================

    def get_health_info(self) -> Dict[str, Any]:
        stats = self.jobs.stats()
        return {
            "ok": True,
            "storage": self.store.backend,
            "generator": self.generator.model,
            "jobs": {
                "pending": stats.pending,
                "completed": stats.completed,
                "failed": stats.failed,
                "cancelled": stats.cancelled,
            },
        }

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for in-flight persistence jobs (see BackgroundJobs.drain)."""
        if timeout is None:
            timeout = self.config.jobs.drain_timeout_s
        cancelled = await self.jobs.drain(timeout)
        info(_LOG, "jobs_drained", cancelled=cancelled)
        return cancelled

    async def aclose(self) -> None:
        """Close the store, the generator and any clients this proxy owns."""
        await self.store.aclose()
        await self.generator.aclose()
        for client in self._owned:
            await client.aclose()
        self._owned = []


__all__ = [
    "ErrorCode",
    "ProxyError",
    "InvalidInputError",
    "GenerationError",
    "SpeechRequest",
    "SpeechStream",
    "SpeechProxy",
    "build_store",
    "TEXT_REQUIRED",
]
