"""
tts-relay: Cache-backed streaming proxy for text-to-speech generation.

A request for (text, voiceId) is answered from a blob store when the same
request was generated before; otherwise the audio is generated upstream,
streamed to the caller as it arrives and, at the same time, uploaded to
the blob store for the next caller.

Key Features:
    - Deterministic cache keys (MD5 of the canonical request)
    - Stream fork: one upstream stream, two independent consumers
    - Background persistence that never delays or fails the response
    - Supabase Storage or local disk blob store
    - Structured logging and Prometheus metrics

Example Usage:
    >>> from tts_relay.core.config import load_settings
    >>> from tts_relay.services import SpeechProxy, SpeechRequest
    >>>
    >>> proxy = SpeechProxy.from_config(load_settings().get_relay_config())
    >>> stream = await proxy.handle(SpeechRequest(text="Hello"))
    >>> async for chunk in stream.chunks:
    ...     out.write(chunk)
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
