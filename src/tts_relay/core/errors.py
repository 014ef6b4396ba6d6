"""
Relay Error Types.

Only two kinds of failure ever reach a caller: invalid input (400) and a
generation failure before the first byte (500). Everything else either
degrades (a failed cache lookup becomes a miss) or stays in the logs (a
failed upload). The remaining ErrorCode values label those degraded
paths in logs and metrics.

The API turns a ProxyError into:

    HTTP <status_code>
    {"error": "<message>"}
"""
from __future__ import annotations

from typing import Any, Dict


class ErrorCode:
    """Error codes used in logs, metrics and exceptions."""
    INVALID_INPUT = "INVALID_INPUT"               # Missing/too long text
    GENERATION_FAILED = "GENERATION_FAILED"       # Upstream refused or unreachable
    CACHE_LOOKUP_FAILED = "CACHE_LOOKUP_FAILED"   # Signed URL fetch failed, treated as miss
    PERSIST_FAILED = "PERSIST_FAILED"             # Background upload failed
    INTERNAL_ERROR = "INTERNAL_ERROR"             # Unexpected error


class ProxyError(Exception):
    """
    Base exception for errors surfaced to callers.

    Attributes:
        message: Human-readable error message (sent to the caller).
        code: Error code from ErrorCode.
        status_code: HTTP status for the response.
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Response body for the API."""
        return {"error": self.message}


class InvalidInputError(ProxyError):
    """Raised when a request cannot be generated (e.g., missing text)."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCode.INVALID_INPUT, 400)


class GenerationError(ProxyError):
    """Raised when the speech generation backend fails before producing audio."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCode.GENERATION_FAILED, 500)
