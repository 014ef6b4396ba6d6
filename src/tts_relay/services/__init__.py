"""
tts-relay Services Layer.

This package provides the business logic layer between the API and the
storage/generation backends.

Components:
    - speech_proxy.py: SpeechProxy (cache lookup, generation, stream fork,
      background persistence)

Errors surfaced to callers live in core/errors.py and are re-exported
here for convenience.
"""
from .speech_proxy import (
    ErrorCode,
    GenerationError,
    InvalidInputError,
    ProxyError,
    SpeechProxy,
    SpeechRequest,
    SpeechStream,
    build_store,
)

__all__ = [
    "SpeechProxy",
    "SpeechRequest",
    "SpeechStream",
    "ProxyError",
    "InvalidInputError",
    "GenerationError",
    "ErrorCode",
    "build_store",
]
