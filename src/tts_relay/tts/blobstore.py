"""
Blob Store Interface.

The relay treats storage as an opaque key -> blob store with two
operations:

    signed_url(name, expires_in)        -> time-limited read URL, or None
    upload(name, chunks, content_type)  -> UploadResult

A store never raises for an ordinary miss or a failed write: a missing
object gives None from signed_url(), and a rejected upload comes back as
UploadResult(error=...). This mirrors the {data, error} shape of hosted
storage clients and keeps the request path free of storage exceptions.

Implementations:
    - FileBlobStore (storage.py): local disk, HMAC-signed read URLs
    - SupabaseBlobStore (supabase.py): Supabase Storage REST API

See Also:
    - speech_proxy.py: lookup and persistence built on this interface
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterable, Dict, Optional

AUDIO_CONTENT_TYPE = "audio/mpeg"


@dataclass
class UploadResult:
    """
    Outcome of an upload.

    Attributes:
        data: Backend response (e.g., {"Key": "audio/<name>"}) on success.
        error: Error message on failure.
    """
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BlobStore(ABC):
    """Abstract base for blob store backends."""

    #: Backend name reported by /health
    backend: str = "unknown"

    @abstractmethod
    async def signed_url(self, name: str, expires_in: int) -> Optional[str]:
        """
        Create a time-limited read URL for an object.

        Returns:
            Absolute URL, or None when the object does not exist or the
            store could not sign it.
        """

    @abstractmethod
    async def upload(
        self,
        name: str,
        chunks: AsyncIterable[bytes],
        content_type: str = AUDIO_CONTENT_TYPE,
    ) -> UploadResult:
        """
        Write an object from a stream of chunks.

        The object becomes visible only if the whole stream was consumed;
        a stream that raises leaves no (partial) object behind.
        """

    async def aclose(self) -> None:
        """Release clients held by the store."""
        return None
