"""
Relay API Routes.

Endpoints:
    GET /v1/text-to-speech   - Cached or freshly generated MP3 stream
    GET /v1/blobs/{name}     - Signed reads for the local blob store
    GET /health              - Health check for load balancers and probes
    GET /metrics             - Prometheus metrics

Request Flow (/v1/text-to-speech):
    1. Generate a request id for tracing
    2. Build SpeechRequest (voiceId defaults to the configured voice)
    3. SpeechProxy.handle() -> cached body or caller branch of the fork
    4. Stream it back as audio/mpeg with X-Cache / X-Cache-Key headers

Error Handling:
    Errors before the first byte are JSON:
        400 {"error": "Text parameter is required"}
        500 {"error": "<generation error message>"}
        500 {"error": "Internal server error"}

    Once audio has started the status is already 200; a failure of the
    source stream is logged and re-raised so the server aborts the
    connection and the caller sees a truncated body.

Example Usage:
    curl "http://localhost:8000/v1/text-to-speech?text=Hello" --output hello.mp3

See Also:
    - services/speech_proxy.py: Cache/generate/fork logic
    - api/dependencies.py: Proxy injection
"""
from __future__ import annotations

import asyncio
import uuid
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from tts_relay.api.dependencies import get_proxy
from tts_relay.api.schemas import HealthResponse
from tts_relay.core.errors import ProxyError
from tts_relay.core.logging import error, get_logger, info, set_request_id, verbose
from tts_relay.core.metrics import metrics
from tts_relay.services.speech_proxy import SpeechProxy, SpeechRequest, SpeechStream
from tts_relay.tts.blobstore import AUDIO_CONTENT_TYPE
from tts_relay.tts.storage import FileBlobStore, InvalidBlobName

router = APIRouter()

_LOG = get_logger("tts-relay.api")


def _error_response(status_code: int, message: str, rid: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers={"X-Request-Id": rid})


async def _relay(stream: SpeechStream) -> AsyncIterator[bytes]:
    """
    Relay a SpeechStream to the HTTP response.

    The stream is always closed when the relay ends, which for a miss
    detaches only the caller branch of the fork; the persistence branch
    keeps running when the caller goes away.
    """
    source = "cache" if stream.cache_status == "hit" else "generator"
    sent = 0
    try:
        async for chunk in stream.chunks:
            sent += len(chunk)
            yield chunk
        verbose(_LOG, "relay_done", key=stream.key[:8], bytes=sent, cache=stream.cache_status)
    except asyncio.CancelledError:
        info(_LOG, "relay_cancelled", key=stream.key[:8], bytes=sent)
        raise
    except Exception as e:
        # Headers are out already; aborting the connection is all that's left
        error(_LOG, "relay_aborted", key=stream.key[:8], bytes=sent, error=str(e) or type(e).__name__)
        raise
    finally:
        await stream.aclose()
        metrics.add_audio_bytes(source, sent)


class RelayResponse(StreamingResponse):
    """
    StreamingResponse over a SpeechStream.

    The stream is closed when the response finishes, also when the body was
    never iterated (client gone before the first byte, failed send of the
    response start), so the caller branch always detaches from the fork.
    """

    def __init__(self, stream: SpeechStream, headers: dict):
        self.stream = stream
        super().__init__(_relay(stream), media_type=stream.media_type, headers=headers)

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.stream.aclose()


@router.get("/v1/text-to-speech", response_class=StreamingResponse)
async def text_to_speech(
    text: Optional[str] = Query(None, description="Text to speak"),
    voice_id: Optional[str] = Query(None, alias="voiceId", description="Voice id"),
    proxy: SpeechProxy = Depends(get_proxy),
):
    """
    Stream speech for a text as MP3.

    Returns:
        StreamingResponse: audio/mpeg body with headers:
            - X-Request-Id: Request identifier for tracing
            - X-Cache: HIT or MISS
            - X-Cache-Key: Cache key of the request

    Raises:
        400: Missing/empty/too long text (cache miss only)
        500: Generation failed
    """
    rid = str(uuid.uuid4())[:12]
    set_request_id(rid)

    request = SpeechRequest(text=text, voice_id=proxy.resolve_voice(voice_id))
    try:
        stream = await proxy.handle(request)
    except ProxyError as e:
        return _error_response(e.status_code, e.message, rid)
    except Exception as e:
        # Unexpected errors: details stay in the log
        error(_LOG, "request_failed", error=str(e) or type(e).__name__, exc_info=e)
        metrics.record_request("error")
        return _error_response(500, "Internal server error", rid)

    headers = {
        "X-Request-Id": rid,
        "X-Cache": stream.cache_status.upper(),
        "X-Cache-Key": stream.key,
    }
    return RelayResponse(stream, headers)


@router.get("/v1/blobs/{name}")
async def read_blob(
    name: str,
    expires: Optional[int] = Query(None),
    signature: Optional[str] = Query(None),
    proxy: SpeechProxy = Depends(get_proxy),
):
    """
    Serve an object of the local blob store through a signed URL.

    Returns 403 for a missing, invalid or expired signature and 404 when
    the object does not exist (or the store is not the local one).
    """
    store = proxy.store
    if not isinstance(store, FileBlobStore):
        return JSONResponse(status_code=404, content={"error": "Not found"})

    if expires is None or not signature or not store.verify_signature(name, expires, signature):
        return JSONResponse(status_code=403, content={"error": "Invalid or expired signature"})

    try:
        path = store.path_for(name)
    except InvalidBlobName:
        return JSONResponse(status_code=404, content={"error": "Not found"})
    if not path.is_file():
        return JSONResponse(status_code=404, content={"error": "Not found"})

    return FileResponse(path, media_type=AUDIO_CONTENT_TYPE)


@router.get("/health", response_model=HealthResponse)
def health(proxy: SpeechProxy = Depends(get_proxy)):
    """
    Health check endpoint for load balancers and orchestration.

    Reports the storage backend, generation model and background job
    counters (pending uploads are what shutdown waits for).
    """
    return proxy.get_health_info()


@router.get("/metrics")
def prometheus_metrics():
    """Prometheus metrics in text exposition format."""
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
