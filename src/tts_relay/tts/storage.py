"""
Local Disk Blob Store.

Keeps generated audio on the local filesystem and hands out HMAC-signed,
time-limited read URLs that the relay's own /v1/blobs route serves. Used
for development and single-node deployments (storage.backend: local).

File Organization:
    Objects are stored in a sharded directory structure so no single
    directory grows without bound:

    {base_dir}/
        ab/
            ab12...ef.mp3
        cd/
            cd34...90.mp3

    The first 2 characters of the object name select the shard.

Writes:
    Uploads stream into a uniquely named temp file next to the target and
    are renamed into place only after the last chunk. A source stream that
    fails midway leaves no object behind, and concurrent uploads of the
    same name never share a temp file (last rename wins).

Signed URLs:
    {public_base_url}/v1/blobs/{name}?expires=<unix>&signature=<hex>

    signature = HMAC-SHA256(secret, "<name>:<expires>"). Without a
    configured signing_secret a random per-process secret is used, so URLs
    do not survive a restart (the cache itself does).

Usage:
    store = FileBlobStore("./storage", "http://127.0.0.1:8000", secret)
    result = await store.upload("ab12...ef.mp3", chunks)
    url = await store.signed_url("ab12...ef.mp3", 60)

See Also:
    - blobstore.py: BlobStore interface
    - api/routes.py: /v1/blobs route that verifies signatures
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import re
import secrets
import time
import uuid
from pathlib import Path
from typing import AsyncIterable, Optional
from urllib.parse import urlencode

from tts_relay.core.config import Defaults
from tts_relay.core.logging import get_logger, info, verbose, warn
from tts_relay.utils.timeit import timeit

from .blobstore import AUDIO_CONTENT_TYPE, BlobStore, UploadResult

_LOG = get_logger("tts-relay.storage")

# Object names are "<hex key>.<ext>"; anything else could escape base_dir
_NAME_RE = re.compile(r"^[0-9A-Za-z_-]{2,128}\.[0-9A-Za-z]{1,8}$")


class InvalidBlobName(ValueError):
    pass


class FileBlobStore(BlobStore):
    """Blob store backed by a sharded local directory."""

    backend = "local"

    def __init__(
        self,
        base_dir: str = Defaults.STORAGE_BASE_DIR,
        public_base_url: str = Defaults.STORAGE_PUBLIC_BASE_URL,
        signing_secret: str = "",
    ):
        self.base_dir = Path(base_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self._secret = (signing_secret or secrets.token_hex(32)).encode("utf-8")

    def path_for(self, name: str) -> Path:
        """
        Resolve the on-disk path of an object.

        Raises:
            InvalidBlobName: If the name is not a plain "<key>.<ext>".
        """
        if not _NAME_RE.match(name):
            raise InvalidBlobName(f"invalid blob name: {name!r}")
        return self.base_dir / name[:2] / name

    def exists(self, name: str) -> bool:
        try:
            return self.path_for(name).is_file()
        except InvalidBlobName:
            return False

    # Signing -----------------------------------------------------------------

    def sign(self, name: str, expires: int) -> str:
        message = f"{name}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify_signature(
        self,
        name: str,
        expires: int,
        signature: str,
        now: Optional[float] = None,
    ) -> bool:
        """Check a signed URL's signature and that it has not expired."""
        if expires < (time.time() if now is None else now):
            return False
        return hmac.compare_digest(self.sign(name, expires), signature)

    async def signed_url(self, name: str, expires_in: int) -> Optional[str]:
        if not self.exists(name):
            return None
        expires = int(time.time()) + int(expires_in)
        query = urlencode({"expires": expires, "signature": self.sign(name, expires)})
        return f"{self.public_base_url}/v1/blobs/{name}?{query}"

    # Writes ------------------------------------------------------------------

    async def upload(
        self,
        name: str,
        chunks: AsyncIterable[bytes],
        content_type: str = AUDIO_CONTENT_TYPE,
    ) -> UploadResult:
        try:
            path = self.path_for(name)
        except InvalidBlobName as e:
            return UploadResult(error=str(e))

        tmp = path.with_name(f".{name}.{uuid.uuid4().hex[:8]}.tmp")
        written = 0
        committed = False

        try:
            with timeit("storage_write") as t:
                path.parent.mkdir(parents=True, exist_ok=True)
                with tmp.open("wb") as f:
                    async for chunk in chunks:
                        await asyncio.to_thread(f.write, chunk)
                        written += len(chunk)
                tmp.replace(path)
                committed = True
        except Exception as e:
            warn(_LOG, "storage_write_error", name=name, bytes=written, error=str(e))
            return UploadResult(error=str(e) or type(e).__name__)
        finally:
            if not committed:
                tmp.unlink(missing_ok=True)

        info(_LOG, "saved", name=name, bytes=written, seconds=t.seconds)
        verbose(_LOG, "saved_path", path=str(path), content_type=content_type)
        return UploadResult(data={"Key": name, "path": str(path), "size": written})
